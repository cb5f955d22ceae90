"""Request parameter models for the registry routes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from ..coordinates import PackageCoordinate, split_package_spec, storage_key, validate_identity


class PackageParams(BaseModel):
    username: str
    package: PackageCoordinate

    @field_validator("username")
    @classmethod
    def _username(cls, value: str) -> str:
        return validate_identity(value)

    @property
    def key(self) -> str:
        return storage_key(self.username, self.package)

    @property
    def metadata(self) -> dict[str, str]:
        return {
            "owner": self.package.owner or "",
            "name": self.package.name,
            "version": self.package.version,
        }


def parse_package_params(username: str, package: str) -> PackageParams:
    return PackageParams(username=username, package=split_package_spec(package))


def validation_issues(exc: ValidationError) -> list[dict[str, Any]]:
    issues = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg") or "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        issues.append({"path": path, "message": message})
    return issues
