"""Client-side publish pipeline (discover, rewrite, pack, restore, upload)."""

from .models import OutcomeStatus, PublishOutcome, PublishReport, PublishRequest
from .orchestrator import PublishOrchestrator

__all__ = [
    "OutcomeStatus",
    "PublishOrchestrator",
    "PublishOutcome",
    "PublishReport",
    "PublishRequest",
]
