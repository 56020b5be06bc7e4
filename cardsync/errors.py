"""Error types raised by the sync core."""


class SyncError(Exception):
    """Base exception for sync errors."""


class RemoteTimeoutError(SyncError, TimeoutError):
    """A remote operation did not complete within its deadline."""

    def __init__(self, operation: str, key: str | None, timeout: float):
        self.operation = operation
        self.key = key
        self.timeout = timeout
        target = f" {key}" if key else ""
        super().__init__(f"{operation}{target} timed out after {timeout}s")


class BackendError(SyncError):
    """The remote backend reported a failure."""


class BackendUnavailable(BackendError):
    """No remote backend is configured or reachable."""


class CorruptionError(SyncError):
    """Remote metadata references chunks that are missing or unreadable."""


class ConflictError(SyncError):
    """The server holds a newer revision than the local writer."""

    def __init__(self, local_revision: int, server_revision: int):
        self.local_revision = local_revision
        self.server_revision = server_revision
        super().__init__(
            f"server has newer data (server={server_revision}, local={local_revision})"
        )
