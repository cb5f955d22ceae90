"""Flask service for the preview package registry."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from flask import Flask, Response, jsonify, redirect, request
from pydantic import ValidationError

from ..checksum import is_digest
from ..errors import ChecksumValidationError, IdentityError, reason_code
from ..github import GithubIdentityClient, bearer_token
from ..logging_utils import configure_logging
from .config import RegistryProfile, load_registry_profile
from .models import PackageParams, parse_package_params, validation_issues
from .storage import build_object_store
from .store import PackageStore

CHECKSUM_HEADER = "X-Checksum-Sha256"
TARBALL_CONTENT_TYPE = "application/tar+gzip"
# Room for the multipart envelope and the sha256 field around the tarball.
FORM_OVERHEAD_BYTES = 64 * 1024

logger = logging.getLogger(__name__)


def create_app(
    profile_path: str | None = None,
    *,
    profile: RegistryProfile | None = None,
    identity_client: GithubIdentityClient | None = None,
    store: PackageStore | None = None,
) -> Flask:
    configure_logging()
    if profile is None:
        profile = load_registry_profile(Path(profile_path) if profile_path else None)
    if store is None:
        store = PackageStore(
            build_object_store(
                profile.object_store_root,
                s3_endpoint_url=profile.s3_endpoint_url,
                s3_region=profile.s3_region,
                s3_path_style=profile.s3_path_style,
            )
        )
    if identity_client is None:
        identity_client = GithubIdentityClient(
            api_url=profile.github_api_url,
            timeout_seconds=profile.identity_timeout_seconds,
        )
    size_limit_message = f"Maximum package size is {_format_size(profile.max_tarball_bytes)}"

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = profile.max_tarball_bytes + FORM_OVERHEAD_BYTES

    @app.errorhandler(413)
    def too_large(_exc: Exception) -> Any:
        return _invalid([{"path": "tarball", "message": size_limit_message}])

    @app.get("/")
    def index() -> Any:
        return redirect(profile.homepage_url)

    @app.get("/<username>/<path:package>")
    def fetch_package(username: str, package: str) -> Any:
        try:
            params = parse_package_params(username, package)
        except ValidationError as exc:
            return _invalid(validation_issues(exc))
        stored = store.get(params.key)
        if stored is None:
            return jsonify({"error": "Package not found"}), 404
        return Response(
            stored.data,
            status=200,
            content_type=TARBALL_CONTENT_TYPE,
            headers={CHECKSUM_HEADER: stored.checksum},
        )

    @app.post("/<username>/<path:package>")
    def publish_package(username: str, package: str) -> Any:
        try:
            params = parse_package_params(username, package)
        except ValidationError as exc:
            return _invalid(validation_issues(exc))

        issues: list[dict[str, Any]] = []
        tarball = request.files.get("tarball")
        data = b""
        if tarball is None:
            issues.append({"path": "tarball", "message": "tarball file is required"})
        else:
            data = tarball.read()
            if len(data) > profile.max_tarball_bytes:
                issues.append({"path": "tarball", "message": size_limit_message})
        sha256 = (request.form.get("sha256") or "").strip().lower()
        if not is_digest(sha256):
            issues.append({"path": "sha256", "message": "sha256 must be 64 hexadecimal characters"})
        if issues:
            return _invalid(issues)

        token = bearer_token(request.headers.get("Authorization"))
        if token is None:
            return jsonify({"error": "Unauthorized: missing GitHub token"}), 401
        try:
            login = identity_client.authenticated_login(token)
        except IdentityError as exc:
            if exc.code == "IDENTITY_REJECTED":
                return jsonify({"error": "Unauthorized: invalid GitHub token"}), 401
            logger.warning("Registry: identity lookup failed (code=%s, detail=%s)", exc.code, exc.detail)
            return jsonify({"error": "Identity provider unavailable"}), 502
        if login != params.username:
            return (
                jsonify(
                    {
                        "error": (
                            f"Unauthorized: You are trying to publish a package for {params.username} "
                            f"but you are logged in as {login}"
                        )
                    }
                ),
                401,
            )

        try:
            result = store.put(params.key, data, sha256, params.metadata)
        except ChecksumValidationError:
            return jsonify({"error": "Invalid SHA-256 checksum"}), 400
        except Exception as exc:
            logger.error(
                "Registry: storage write failed (key=%s, reason=%s)",
                params.key,
                reason_code(exc),
                exc_info=True,
            )
            return jsonify({"error": "Failed to upload package to storage"}), 500
        if not result.created:
            return _already_exists(params, result.existing_checksum)
        return jsonify({"message": "Package created"}), 201

    return app


def _invalid(issues: list[dict[str, Any]]) -> Any:
    return jsonify({"error": "Invalid package format", "issues": issues}), 400


def _already_exists(params: PackageParams, existing_checksum: str | None) -> Any:
    body: dict[str, Any] = {"error": f"Package {params.package.spec} already exists"}
    if existing_checksum:
        body["sha256"] = existing_checksum
    return jsonify(body), 409


def _format_size(size_bytes: int) -> str:
    megabytes = size_bytes / (1024 * 1024)
    if megabytes.is_integer():
        return f"{int(megabytes)}MB"
    return f"{size_bytes} bytes"


def main() -> None:
    parser = argparse.ArgumentParser(description="preview-pkg registry service")
    parser.add_argument("--profile", default=None, help="Path to registry profile YAML")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8787)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    app = create_app(args.profile)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
