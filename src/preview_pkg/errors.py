"""Error taxonomy shared by the publisher and the registry."""

from __future__ import annotations


class PreviewPkgError(RuntimeError):
    """Stable, user-safe error surfaced as a reason code."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        message = f"{code}:{detail}" if detail else code
        super().__init__(message)


class PackingFailed(PreviewPkgError):
    """The packaging tool could not produce an archive."""

    def __init__(self, tool: str, output: str, *, code: str = "PACK_FAILED", exit_code: int | None = None) -> None:
        self.tool = tool
        self.output = output
        self.exit_code = exit_code
        detail = f"{tool} exited with status {exit_code}" if exit_code is not None else f"{tool} pack failed"
        super().__init__(code, detail)


class PackingInvariantViolation(PreviewPkgError):
    """The packaging tool reported success but the archive is missing.

    This points at a broken tool integration rather than a user mistake.
    """

    def __init__(self, tool: str, expected_path: str) -> None:
        self.tool = tool
        self.expected_path = expected_path
        super().__init__(
            "PACK_INVARIANT_VIOLATION",
            f"{tool} returned success but no archive was written at {expected_path}",
        )


class ManifestRestoreError(PreviewPkgError):
    def __init__(self, paths: list[str]) -> None:
        self.paths = list(paths)
        super().__init__("MANIFEST_RESTORE_FAILED", ", ".join(self.paths))


class ChecksumValidationError(PreviewPkgError):
    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__("CHECKSUM_INVALID", f"expected={expected} actual={actual}")


class IdentityError(PreviewPkgError):
    """Raised when the identity provider rejects or cannot resolve a credential."""


class PublishCancelled(PreviewPkgError):
    def __init__(self, detail: str | None = None) -> None:
        super().__init__("CANCELLED", detail)


def reason_code(exc: Exception) -> str:
    if isinstance(exc, PreviewPkgError):
        return exc.code
    text = str(exc or "").strip()
    if text.isupper():
        return text
    if ":" in text:
        head = text.split(":", 1)[0].strip()
        if head.isupper():
            return head
    return "INTERNAL_ERROR"
