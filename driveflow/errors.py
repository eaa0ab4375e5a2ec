from __future__ import annotations


class DriveFlowError(RuntimeError):
    """Base class for failures of a single get/put operation."""


class LocalFileNotFoundError(DriveFlowError, FileNotFoundError):
    def __init__(self, path: str, reason: str | None = None) -> None:
        self.path = path
        message = f"Local file not found or unreadable: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class VerificationFailedError(DriveFlowError):
    def __init__(self, name: str, verdict: object) -> None:
        self.name = name
        self.verdict = verdict
        super().__init__(f"Verification failed for {name}: {verdict}")


class DraftStateError(DriveFlowError):
    pass


class IntegrityMismatchError(DriveFlowError):
    def __init__(self, source: str, local_hash: str, remote_hash: str) -> None:
        self.local_hash = local_hash
        self.remote_hash = remote_hash
        super().__init__(
            f"Hash mismatch after uploading {source}. L:{local_hash} != R:{remote_hash}"
        )


class InvariantViolationError(DriveFlowError):
    pass


class NotAFolderError(DriveFlowError):
    pass


class NotAFileError(DriveFlowError):
    pass


class TraversalDepthError(DriveFlowError):
    pass


class RemoteNodeNotFoundError(DriveFlowError):
    pass
