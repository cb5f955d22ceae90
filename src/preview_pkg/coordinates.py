"""Package coordinates, publisher identities and storage keys."""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

COORDINATE_MAX_LENGTH = 32
IDENTITY_MAX_LENGTH = 39
STORAGE_KEY_ROOT = "preview-pkg"
SCOPE_SEPARATOR = "__"

_SEGMENT_PATTERN = re.compile(r"^[a-z0-9-]+$")
_IDENTITY_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


def validate_segment(value: str, *, what: str = "segment") -> str:
    if not value:
        raise ValueError(f"{what} must not be empty")
    if len(value) > COORDINATE_MAX_LENGTH:
        raise ValueError(f"{what} must be at most {COORDINATE_MAX_LENGTH} characters")
    if not _SEGMENT_PATTERN.match(value):
        raise ValueError(f"{what} may only contain lowercase letters, digits and dashes")
    return value


def validate_identity(value: str) -> str:
    if not value:
        raise ValueError("identity must not be empty")
    if len(value) > IDENTITY_MAX_LENGTH:
        raise ValueError(f"identity must be at most {IDENTITY_MAX_LENGTH} characters")
    if not _IDENTITY_PATTERN.match(value):
        raise ValueError("identity may only contain letters, digits and dashes")
    return value


class PackageCoordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: Optional[str] = None
    name: str
    version: str

    @field_validator("owner")
    @classmethod
    def _owner(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return validate_segment(value, what="owner")

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return validate_segment(value, what="name")

    @field_validator("version")
    @classmethod
    def _version(cls, value: str) -> str:
        return validate_segment(value, what="version")

    @property
    def package_name(self) -> str:
        if self.owner:
            return f"@{self.owner}/{self.name}"
        return self.name

    @property
    def spec(self) -> str:
        return f"{self.package_name}@{self.version}"


def split_package_name(package_name: str) -> tuple[Optional[str], str]:
    """Split `@owner/name` or `name` into its owner and bare name."""
    if package_name.startswith("@"):
        owner, _, name = package_name[1:].partition("/")
        return owner, name
    return None, package_name


def split_package_spec(spec: str) -> dict[str, Any]:
    """Split `name@version` or `@owner/name@version` without validating segments."""
    if spec.startswith("@"):
        owner, _, rest = spec[1:].partition("/")
        name, _, version = rest.partition("@")
        return {"owner": owner, "name": name, "version": version}
    name, _, version = spec.partition("@")
    return {"name": name, "version": version}


def parse_package_spec(spec: str) -> PackageCoordinate:
    return PackageCoordinate(**split_package_spec(spec))


def storage_key(identity: str, coordinate: PackageCoordinate) -> str:
    """Canonical object key: `preview-pkg/{identity}/{keyname}@{version}`.

    Scoped keynames are `@{owner}__{name}`; the leading `@` cannot appear in an
    unscoped name, so the two key spaces never overlap.
    """
    validate_identity(identity)
    if coordinate.owner:
        keyname = f"@{coordinate.owner}{SCOPE_SEPARATOR}{coordinate.name}"
    else:
        keyname = coordinate.name
    return f"{STORAGE_KEY_ROOT}/{identity}/{keyname}@{coordinate.version}"


def registry_url(base_url: str, identity: str, package_name: str, version: str) -> str:
    return f"{base_url.rstrip('/')}/{identity}/{package_name}@{version}"
