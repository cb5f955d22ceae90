"""Configuration loader for the registry service profile."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..github import GITHUB_API_URL
from ..profiles import load_profile_payload

DEFAULT_HOMEPAGE_URL = "https://github.com/BlankParticle/preview-pkg"
DEFAULT_MAX_TARBALL_BYTES = 10 * 1024 * 1024
PROFILE_ENV = "PREVIEW_PKG_REGISTRY_PROFILE"


class RegistryProfile(BaseModel):
    profile_id: str = "local"
    object_store_root: str = Field(
        default_factory=lambda: os.getenv("PREVIEW_PKG_OBJECT_STORE_ROOT") or "artefacts/preview-pkg"
    )
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None
    s3_path_style: Optional[bool] = None
    max_tarball_bytes: int = Field(default=DEFAULT_MAX_TARBALL_BYTES, ge=1)
    github_api_url: str = GITHUB_API_URL
    homepage_url: str = DEFAULT_HOMEPAGE_URL
    identity_timeout_seconds: float = 30.0


def load_registry_profile(path: Path | None = None) -> RegistryProfile:
    if path is None:
        env_path = (os.getenv(PROFILE_ENV) or "").strip()
        if not env_path:
            return RegistryProfile()
        path = Path(env_path)
    return RegistryProfile(**load_profile_payload(path))
