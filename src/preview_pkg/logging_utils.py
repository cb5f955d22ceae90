"""Logging helpers for the preview-pkg CLI and registry service."""

from __future__ import annotations

import logging
from pathlib import Path


class ProgressFilter(logging.Filter):
    """Keeps the console to warnings plus records flagged as user progress."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        if getattr(record, "progress", False):
            return True
        return False


def configure_logging(level: int = logging.INFO, log_path: str | None = None, *, verbose: bool = True) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = []
    console = logging.StreamHandler()
    if not verbose:
        console.addFilter(ProgressFilter())
    handlers.append(console)

    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
