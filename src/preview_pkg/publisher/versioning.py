"""Publish version resolution."""

from __future__ import annotations

import logging
from pathlib import Path
import subprocess
from typing import Sequence

from ..coordinates import validate_segment
from ..errors import PreviewPkgError

SHORT_REVISION_LENGTH = 7

logger = logging.getLogger(__name__)


def resolve_publish_version(
    explicit: str | None,
    *,
    cwd: Path | None = None,
    git_command: Sequence[str] = ("git",),
) -> str:
    """Return the explicit version, or the short hash of the checked-out revision."""
    if explicit:
        version = explicit.strip()
        try:
            return validate_segment(version, what="version")
        except ValueError as exc:
            raise PreviewPkgError("VERSION_INVALID", f"{version!r}: {exc}") from exc

    command = [*git_command, "rev-parse", "HEAD"]
    try:
        result = subprocess.run(command, cwd=cwd, capture_output=True, text=True, check=False)
    except FileNotFoundError as exc:
        raise PreviewPkgError(
            "VERSION_UNRESOLVED",
            "git is not available; pass the version explicitly with --version",
        ) from exc
    revision = (result.stdout or "").strip()
    if result.returncode != 0 or not revision:
        stderr = (result.stderr or "").strip()[:256]
        raise PreviewPkgError(
            "VERSION_UNRESOLVED",
            f"failed to read the git commit hash ({stderr or f'exit {result.returncode}'}); "
            "pass the version explicitly with --version",
        )
    version = revision[:SHORT_REVISION_LENGTH].lower()
    logger.debug("Versioning: resolved version %s from revision %s", version, revision)
    return version
