"""Publish orchestrator: discover, version, rewrite, pack, restore, upload."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
import logging
from pathlib import Path
import threading
from typing import Callable, Sequence

from ..errors import (
    IdentityError,
    PackingFailed,
    PackingInvariantViolation,
    PreviewPkgError,
    PublishCancelled,
)
from ..github import GithubIdentityClient
from .config import PublisherProfile
from .credentials import CredentialStore
from .discovery import PackageCandidate, discover_packages, expand_paths
from .manifest import build_dependency_map, rewritten_manifests
from .models import OutcomeStatus, PublishOutcome, PublishReport, PublishRequest
from .packer import PackResult, archive_name_for, pack
from .upload import RegistryClient, UploadResult
from .versioning import resolve_publish_version

logger = logging.getLogger(__name__)

Packer = Callable[..., PackResult]


class PublishOrchestrator:
    """Runs one publish batch for a single authenticated identity."""

    def __init__(
        self,
        profile: PublisherProfile,
        *,
        registry: RegistryClient | None = None,
        identity_client: GithubIdentityClient | None = None,
        credentials: CredentialStore | None = None,
        packer: Packer = pack,
        cwd: Path | None = None,
        git_command: Sequence[str] = ("git",),
    ) -> None:
        self.profile = profile
        self.registry = registry or RegistryClient(
            registry_url=profile.registry_url,
            timeout_seconds=profile.upload_timeout_seconds,
        )
        self.identity_client = identity_client or GithubIdentityClient(
            api_url=profile.github_api_url,
            timeout_seconds=profile.identity_timeout_seconds,
        )
        self.credentials = credentials or CredentialStore(Path(profile.credentials_path))
        self.packer = packer
        self.cwd = cwd
        self.git_command = tuple(git_command)

    def publish(
        self,
        request: PublishRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> PublishReport:
        paths, unmatched = expand_paths(request.paths, cwd=self.cwd)
        discovery = discover_packages(paths)
        skipped = (*unmatched, *discovery.skipped)
        candidates = discovery.candidates
        if not candidates:
            raise PreviewPkgError("NO_PACKAGES", "no publishable packages found")

        version = resolve_publish_version(request.version, cwd=self.cwd, git_command=self.git_command)
        token, identity = self._resolve_identity(request.identity)
        logger.info(
            "Publish: %s packages as %s at version %s",
            len(candidates),
            identity,
            version,
            extra={"progress": True},
        )

        dependency_map = build_dependency_map(
            [candidate.manifest for candidate in candidates],
            identity=identity,
            version=version,
            base_url=self.registry.registry_url,
        )
        package_urls = [
            self.registry.package_url(identity, candidate.name, version) for candidate in candidates
        ]

        with rewritten_manifests([candidate.manifest for candidate in candidates], dependency_map):
            packed = self._pack_all(candidates, package_urls, request, cancel_event)

        if cancel_event is not None and cancel_event.is_set():
            raise PublishCancelled("manifests restored, nothing was uploaded")

        outcomes = self._upload_all(candidates, package_urls, packed, token)
        report = PublishReport(
            version=version,
            identity=identity,
            outcomes=tuple(outcomes),
            skipped=tuple(skipped),
        )
        logger.info(
            "Publish: finished (ok=%s, outcomes=%s, skipped=%s)",
            report.ok,
            len(report.outcomes),
            len(report.skipped),
        )
        return report

    def _resolve_identity(self, expected: str | None) -> tuple[str, str]:
        credentials = self.credentials.load()
        if credentials is None:
            raise IdentityError("NOT_LOGGED_IN", "run `preview-pkg login` first")
        identity = self.identity_client.authenticated_login(credentials.token)
        if expected and expected != identity:
            raise IdentityError("IDENTITY_MISMATCH", f"expected={expected} authenticated={identity}")
        return credentials.token, identity

    def _pack_all(
        self,
        candidates: Sequence[PackageCandidate],
        package_urls: Sequence[str],
        request: PublishRequest,
        cancel_event: threading.Event | None,
    ) -> list[PackResult | PublishOutcome]:
        results: list[PackResult | PublishOutcome | None] = [None] * len(candidates)
        max_workers = min(self.profile.pack_parallelism, len(candidates))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="preview-pkg-pack") as executor:
            futures: dict[Future, int] = {
                executor.submit(
                    self._pack_one,
                    candidate,
                    package_urls[index],
                    request,
                    cancel_event,
                ): index
                for index, candidate in enumerate(candidates)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return [result for result in results if result is not None]

    def _pack_one(
        self,
        candidate: PackageCandidate,
        package_url: str,
        request: PublishRequest,
        cancel_event: threading.Event | None,
    ) -> PackResult | PublishOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return self._error_outcome(candidate, package_url, "CANCELLED", "publish cancelled before packing")
        archive_name = archive_name_for(candidate.name, candidate.manifest_version)
        try:
            result = self.packer(
                request.packer,
                candidate.package_dir,
                archive_name,
                keep_file=request.keep_archives,
                timeout_seconds=self.profile.pack_timeout_seconds,
            )
        except PackingInvariantViolation as exc:
            logger.error("Packer: tool integration broken (package=%s, detail=%s)", candidate.name, exc.detail)
            return self._error_outcome(candidate, package_url, exc.code, exc.detail)
        except PackingFailed as exc:
            logger.warning(
                "Packer: failed to pack %s (code=%s, detail=%s)\n%s",
                candidate.name,
                exc.code,
                exc.detail,
                exc.output.strip()[-2048:],
            )
            return self._error_outcome(candidate, package_url, exc.code, exc.detail)
        except PreviewPkgError as exc:
            logger.warning("Packer: failed to pack %s (code=%s, detail=%s)", candidate.name, exc.code, exc.detail)
            return self._error_outcome(candidate, package_url, exc.code, exc.detail)
        except OSError as exc:
            logger.warning("Packer: failed to pack %s (error=%s)", candidate.name, exc)
            return self._error_outcome(candidate, package_url, "PACK_TOOL_ERROR", str(exc)[:256])
        logger.info(
            "Publish: packed %s (%s bytes, sha256=%s)",
            candidate.name,
            result.size_bytes,
            result.digest,
            extra={"progress": True},
        )
        return result

    def _upload_all(
        self,
        candidates: Sequence[PackageCandidate],
        package_urls: Sequence[str],
        packed: Sequence[PackResult | PublishOutcome],
        token: str,
    ) -> list[PublishOutcome]:
        outcomes: list[PublishOutcome | None] = [None] * len(candidates)
        pending: dict[int, PackResult] = {}
        for index, item in enumerate(packed):
            if isinstance(item, PublishOutcome):
                outcomes[index] = item
            else:
                pending[index] = item
        if pending:
            max_workers = min(self.profile.upload_parallelism, len(pending))
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="preview-pkg-upload") as executor:
                futures = {
                    executor.submit(self.registry.upload, package_urls[index], result, token): index
                    for index, result in pending.items()
                }
                for future in as_completed(futures):
                    index = futures[future]
                    outcomes[index] = self._upload_outcome(
                        candidates[index],
                        package_urls[index],
                        pending[index],
                        future.result(),
                    )
        return [outcome for outcome in outcomes if outcome is not None]

    def _upload_outcome(
        self,
        candidate: PackageCandidate,
        package_url: str,
        pack_result: PackResult,
        upload: UploadResult,
    ) -> PublishOutcome:
        if upload.status is OutcomeStatus.CHECKSUM_CONFLICT:
            logger.warning(
                "Publish: %s already exists with different content (expected=%s, actual=%s)",
                candidate.name,
                upload.sha256_expected,
                upload.sha256_got,
            )
        elif upload.status is OutcomeStatus.ERROR:
            logger.warning(
                "Publish: upload failed for %s (code=%s, detail=%s)",
                candidate.name,
                upload.reason_code,
                upload.detail,
            )
        else:
            logger.info("Publish: %s %s", candidate.name, upload.status.value, extra={"progress": True})
        return PublishOutcome(
            package_name=candidate.name,
            package_dir=str(candidate.package_dir),
            status=upload.status,
            package_url=package_url,
            reason_code=upload.reason_code,
            detail=upload.detail,
            sha256_expected=upload.sha256_expected,
            sha256_got=upload.sha256_got or pack_result.digest,
            size_bytes=pack_result.size_bytes,
        )

    @staticmethod
    def _error_outcome(
        candidate: PackageCandidate,
        package_url: str,
        code: str,
        detail: str | None,
    ) -> PublishOutcome:
        return PublishOutcome(
            package_name=candidate.name,
            package_dir=str(candidate.package_dir),
            status=OutcomeStatus.ERROR,
            package_url=package_url,
            reason_code=code,
            detail=detail,
        )
