"""Command-line interface (``exar``)."""
