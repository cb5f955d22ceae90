"""CLI for logging in with GitHub and publishing preview packages."""

from __future__ import annotations

import argparse
from contextlib import contextmanager
import json
import logging
from pathlib import Path
import signal
import sys
import threading
from typing import Iterator, Sequence
import webbrowser

import requests

from ..coordinates import parse_package_spec, validate_identity
from ..errors import IdentityError, PreviewPkgError
from ..github import GithubDeviceFlow, GithubIdentityClient
from ..logging_utils import configure_logging
from .config import PublisherProfile, load_publisher_profile
from .credentials import CredentialStore, GithubCredentials
from .models import OutcomeStatus, PublishReport, PublishRequest
from .orchestrator import PublishOrchestrator
from .packer import PackerKind, archive_filename, archive_name_for, install_hint
from .upload import RegistryClient

EXIT_OK = 0
EXIT_PACKAGE_FAILURES = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--profile", default=None, help="Path to publisher profile YAML")
    base.add_argument("--log-file", default=None, help="Also write logs to this file")
    base.add_argument("--verbose", action="store_true", help="Show debug logs on the console")

    parser = argparse.ArgumentParser(prog="preview-pkg", description="Publish preview packages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", parents=[base], help="Login with GitHub (device flow)")
    login_parser.add_argument("--no-browser", action="store_true", help="Do not open the verification URL")

    subparsers.add_parser("logout", parents=[base], help="Remove stored GitHub credentials")
    subparsers.add_parser("whoami", parents=[base], help="Show the authenticated GitHub login")

    publish_parser = subparsers.add_parser("publish", parents=[base], help="Publish packages")
    publish_parser.add_argument("paths", nargs="*", help="Package directories or glob patterns")
    publish_parser.add_argument(
        "--packer",
        choices=[kind.value for kind in PackerKind],
        default=PackerKind.PNPM.value,
        help="Packaging tool used to build tarballs",
    )
    publish_parser.add_argument("--version", default=None, help="Publish version (default: short git hash)")
    publish_parser.add_argument("--identity", default=None, help="Fail unless logged in as this GitHub user")
    publish_parser.add_argument("--keep-archives", action="store_true", help="Keep packed tarballs on disk")
    publish_parser.add_argument("--json", action="store_true", help="Print the publish report as JSON")

    fetch_parser = subparsers.add_parser("fetch", parents=[base], help="Download a published tarball")
    fetch_parser.add_argument("identity", help="GitHub login of the publisher")
    fetch_parser.add_argument("spec", help="name@version or @owner/name@version")
    fetch_parser.add_argument("--out", default=None, help="Output file (default: <name>-<version>.tgz)")

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_path=args.log_file,
        verbose=args.verbose,
    )
    try:
        profile = _load_profile(args.profile)
        if args.command == "login":
            return _login(profile, open_browser=not args.no_browser)
        if args.command == "logout":
            return _logout(profile)
        if args.command == "whoami":
            return _whoami(profile)
        if args.command == "fetch":
            return _fetch(profile, args.identity, args.spec, args.out)
        return _publish(profile, args)
    except PreviewPkgError as exc:
        _print_error(exc.code, exc.detail)
        return EXIT_FATAL
    except KeyboardInterrupt:
        _print_error("CANCELLED", "interrupted")
        return EXIT_INTERRUPTED


def _load_profile(path: str | None) -> PublisherProfile:
    try:
        return load_publisher_profile(Path(path) if path else None)
    except (OSError, ValueError) as exc:
        raise PreviewPkgError("PROFILE_INVALID", str(exc)) from exc


def _http_session() -> requests.Session:
    return requests.Session()


def _identity_client(profile: PublisherProfile) -> GithubIdentityClient:
    return GithubIdentityClient(
        api_url=profile.github_api_url,
        timeout_seconds=profile.identity_timeout_seconds,
        session=_http_session(),
    )


def _registry_client(profile: PublisherProfile) -> RegistryClient:
    return RegistryClient(
        registry_url=profile.registry_url,
        timeout_seconds=profile.upload_timeout_seconds,
        session=_http_session(),
    )


def _login(profile: PublisherProfile, *, open_browser: bool) -> int:
    flow = GithubDeviceFlow(
        client_id=profile.github_client_id,
        scopes=tuple(profile.github_scopes),
        login_url=profile.github_login_url,
        timeout_seconds=profile.identity_timeout_seconds,
        session=_http_session(),
    )
    verification = flow.request_code()
    print("Login with GitHub using device flow authentication")
    print(f"  Code: {verification.user_code}")
    print(f"  Open: {verification.verification_uri}")
    if open_browser:
        webbrowser.open(verification.verification_uri)
    print("Waiting for authentication...")
    token = flow.poll_token(verification)
    login = _identity_client(profile).authenticated_login(token.token)
    store = CredentialStore(Path(profile.credentials_path))
    store.save(GithubCredentials(client_id=token.client_id, scopes=list(token.scopes), token=token.token))
    print(f"Logged in as {login}")
    return EXIT_OK


def _logout(profile: PublisherProfile) -> int:
    if CredentialStore(Path(profile.credentials_path)).clear():
        print("Logged out")
    else:
        print("Not logged in")
    return EXIT_OK


def _whoami(profile: PublisherProfile) -> int:
    credentials = CredentialStore(Path(profile.credentials_path)).load()
    if credentials is None:
        raise IdentityError("NOT_LOGGED_IN", "run `preview-pkg login` first")
    print(_identity_client(profile).authenticated_login(credentials.token))
    return EXIT_OK


def _fetch(profile: PublisherProfile, identity: str, spec: str, out: str | None) -> int:
    try:
        validate_identity(identity)
        coordinate = parse_package_spec(spec)
    except ValueError as exc:
        # pydantic's ValidationError is a ValueError as well.
        raise PreviewPkgError("COORDINATE_INVALID", f"{identity}/{spec}: {exc}") from exc
    fetched = _registry_client(profile).fetch(identity, coordinate)
    target = Path(out) if out else Path(archive_filename(archive_name_for(coordinate.package_name, coordinate.version)))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(fetched.archive_bytes)
    state = "verified" if fetched.verified else "unverified"
    print(f"Saved {fetched.url} to {target} (sha256={fetched.digest}, {state})")
    return EXIT_OK


def _publish(profile: PublisherProfile, args: argparse.Namespace) -> int:
    request = PublishRequest(
        paths=list(args.paths),
        packer=PackerKind(args.packer),
        version=args.version,
        identity=args.identity,
        keep_archives=args.keep_archives,
    )
    orchestrator = PublishOrchestrator(
        profile,
        registry=_registry_client(profile),
        identity_client=_identity_client(profile),
        credentials=CredentialStore(Path(profile.credentials_path)),
    )
    cancel_event = threading.Event()
    with _cancel_on_sigterm(cancel_event):
        report = orchestrator.publish(request, cancel_event=cancel_event)
    if args.json:
        print(json.dumps(report.as_dict(), sort_keys=True, separators=(",", ":")))
    else:
        _print_report(report, request.packer)
    return EXIT_OK if report.ok else EXIT_PACKAGE_FAILURES


@contextmanager
def _cancel_on_sigterm(cancel_event: threading.Event) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        logger.warning("Publish: SIGTERM received, cancelling after the current packs")
        cancel_event.set()

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _print_report(report: PublishReport, packer: PackerKind) -> None:
    print(f"Published as {report.identity} at version {report.version}")
    for outcome in report.outcomes:
        if outcome.status is OutcomeStatus.PUBLISHED:
            print(f"+ {outcome.package_name} published")
        elif outcome.status is OutcomeStatus.ALREADY_EXISTS:
            print(f"= {outcome.package_name} already exists")
        elif outcome.status is OutcomeStatus.CHECKSUM_CONFLICT:
            print(f"! {outcome.package_name} already exists with different content")
            print(f"   Expected: {outcome.sha256_expected}")
            print(f"   Actual:   {outcome.sha256_got}")
            continue
        else:
            print(f"x {outcome.package_name} failed [{outcome.reason_code}] {outcome.detail or ''}".rstrip())
            continue
        if outcome.package_url:
            print(f"   Tarball URL: {outcome.package_url}")
            print(f"   Install: {install_hint(packer, outcome.package_url)}")
    for skip in report.skipped:
        print(f"- skipped {skip.path} [{skip.reason_code}]")


def _print_error(code: str, detail: str | None) -> None:
    message = f"[{code}] {detail}" if detail else f"[{code}]"
    print(message, file=sys.stderr)


if __name__ == "__main__":
    raise SystemExit(main())
