"""Configuration loader for the publisher profile."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..github import DEFAULT_SCOPES, GITHUB_API_URL, GITHUB_LOGIN_URL
from ..profiles import load_profile_payload

DEFAULT_REGISTRY_URL = "https://pkg.rx2.dev"
PROFILE_ENV = "PREVIEW_PKG_PROFILE"


def default_credentials_path() -> str:
    return str(Path.home() / ".config" / "preview-pkg" / "github-credentials.json")


class PublisherProfile(BaseModel):
    profile_id: str = "default"
    registry_url: str = Field(default_factory=lambda: os.getenv("PREVIEW_PKG_REGISTRY_URL") or DEFAULT_REGISTRY_URL)
    github_api_url: str = GITHUB_API_URL
    github_login_url: str = GITHUB_LOGIN_URL
    github_client_id: str = Field(default_factory=lambda: os.getenv("PREVIEW_PKG_GITHUB_CLIENT_ID", ""))
    github_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    credentials_path: str = Field(default_factory=default_credentials_path)
    pack_parallelism: int = Field(default=4, ge=1)
    upload_parallelism: int = Field(default=4, ge=1)
    pack_timeout_seconds: Optional[int] = None
    upload_timeout_seconds: float = 60.0
    identity_timeout_seconds: float = 30.0


def load_publisher_profile(path: Path | None = None) -> PublisherProfile:
    if path is None:
        env_path = (os.getenv(PROFILE_ENV) or "").strip()
        if not env_path:
            return PublisherProfile()
        path = Path(env_path)
    return PublisherProfile(**load_profile_payload(path))
