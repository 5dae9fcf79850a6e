class StoreError(Exception):
    """Base class for errors raised by the workout store."""


class StorageUnavailable(StoreError):
    """The embedded database could not be opened."""


class MigrationValidationFailed(StoreError):
    """A post-migration check did not hold."""

    def __init__(self, check: str, detail: str = "") -> None:
        self.check = check
        self.detail = detail
        message = f"migration validation failed: {check}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class BackupWriteFailed(StoreError):
    """A snapshot could not be written."""


class BackupCorrupt(StoreError):
    """A snapshot could not be read back."""


class RestoreFailed(StoreError):
    """Reinserting rows from a snapshot did not complete."""

    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        self.original_error = original_error
        super().__init__(message)


class RecordNotFound(StoreError, LookupError):
    def __init__(self, record_id: int | None, kind: str) -> None:
        self.record_id = record_id
        self.kind = kind
        super().__init__(f"{kind} not found: {record_id}")


class VerificationFailed(StoreError):
    """A write was not confirmed by the follow-up read."""
