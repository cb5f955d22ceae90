"""Local persistence of the GitHub OAuth credential."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class GithubCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    scopes: list[str]
    token: str


class CredentialStore:
    """Single JSON file holding `{clientId, scopes, token}`."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> GithubCredentials | None:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return GithubCredentials.model_validate_json(raw)
        except (UnicodeDecodeError, ValidationError):
            logger.warning(
                "Credentials: stored GitHub credentials are corrupted, removing file (path=%s)",
                self.path,
            )
            self.path.unlink(missing_ok=True)
            return None

    def save(self, credentials: GithubCredentials) -> bool:
        payload = credentials.model_dump(by_alias=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "Credentials: failed to save GitHub credentials, check write permissions (path=%s, error=%s)",
                self.path,
                exc,
            )
            return False
        return True

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        return True
