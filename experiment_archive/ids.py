"""Identifier and version tag generation."""

from __future__ import annotations

import hashlib
import logging
import secrets
import string
import subprocess
import sys
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path

logger = logging.getLogger(__name__)

ID_LENGTH = 16
_ID_ALPHABET = string.ascii_letters + string.digits


def gen_unique_id() -> str:
    """Generate a random 16 character alphanumeric identifier.

    Examples:
        >>> len(gen_unique_id())
        16
    """
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(ID_LENGTH))


def utc_now() -> datetime:
    """Current UTC wall clock time (timezone-aware)."""
    return datetime.now(timezone.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert to naive UTC for storage in a TIMESTAMP column.

    Naive input is taken to be UTC already.
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def from_naive_utc(moment: datetime) -> datetime:
    """Attach UTC to a timestamp read back from the store."""
    return moment.replace(tzinfo=timezone.utc)


# ============================================================================
# Version Tag
# ============================================================================


def _git_commit_hash(cwd: Path | None = None) -> str | None:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    commit = result.stdout.strip()
    return commit or None


def _main_script_hash() -> str | None:
    main = sys.modules.get("__main__")
    script = getattr(main, "__file__", None)
    if not script:
        return None
    try:
        content = Path(script).read_bytes()
    except OSError:
        return None
    return hashlib.sha256(content).hexdigest()[:12]


def _package_version() -> str:
    try:
        return metadata.version("experiment-archive")
    except metadata.PackageNotFoundError:
        return "unknown"


def current_version_tag(explicit: str | None = None, cwd: Path | None = None) -> str:
    """Derive the build identity used to tag experiment versions.

    Resolution order:
    1. ``explicit`` (normally ``EXAR_VERSION_TAG``)
    2. git commit hash of the working directory
    3. hash of the running ``__main__`` script
    4. installed package version

    Args:
        explicit: Tag to use verbatim when set
        cwd: Directory to ask git about (defaults to the process cwd)

    Returns:
        Version tag string, e.g. ``"git commit hash 3f2a..."``
    """
    if explicit:
        return explicit

    commit = _git_commit_hash(cwd)
    if commit:
        return f"git commit hash {commit}"

    script_hash = _main_script_hash()
    if script_hash:
        return f"build {script_hash}"

    logger.debug("No git commit or main script found, tagging with package version")
    return f"package {_package_version()}"
