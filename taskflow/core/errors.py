from __future__ import annotations

from datetime import datetime


class TaskflowError(Exception):
    """Base error for taskflow."""


class BackendError(TaskflowError):
    """Backend store failure."""


class BackendUnavailableError(BackendError):
    """Backend could not be reached or timed out."""


class BackendAuthError(BackendError):
    """Backend rejected the configured credentials."""


class BackendConfigError(BackendError):
    """Missing or invalid backend connection parameters."""


class ResolutionError(TaskflowError):
    """Every resolver fallback step failed for an entity."""

    def __init__(self, entity_id: str, attempted_steps: list[str], message: str | None = None) -> None:
        self.entity_id = entity_id
        self.attempted_steps = list(attempted_steps)
        super().__init__(
            message
            or f"could not resolve a backend for {entity_id} (tried: {', '.join(attempted_steps) or 'none'})"
        )


class NotFoundError(TaskflowError):
    """Ledger record, entity or parent missing; retrying will not help."""

    def __init__(self, resource_type: str, resource_id: str, message: str | None = None) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message or f"{resource_type} {resource_id} not found")


class ExpiredError(TaskflowError):
    """Recovery attempted after the recovery deadline."""

    def __init__(self, record_id: str, recovery_deadline: datetime) -> None:
        self.record_id = record_id
        self.recovery_deadline = recovery_deadline
        super().__init__(
            f"deleted item {record_id} expired at {recovery_deadline.isoformat()} and can no longer be recovered"
        )


class LedgerConflictError(TaskflowError):
    """Ledger record is held by a concurrent recovery."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"deleted item {record_id} is being recovered")


class TooManyItemsError(TaskflowError):
    """Bulk action exceeds the batch ceiling."""

    def __init__(self, action_type: str, count: int, limit: int) -> None:
        self.action_type = action_type
        self.count = count
        self.limit = limit
        super().__init__(f"{action_type} accepts at most {limit} items per batch, got {count}")


class BulkActionValidationError(TaskflowError):
    """Bulk action payload is inconsistent."""


_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (ResolutionError, "RESOLUTION_FAILED"),
    (ExpiredError, "RECOVERY_EXPIRED"),
    (NotFoundError, "NOT_FOUND"),
    (LedgerConflictError, "LEDGER_CONFLICT"),
    (TooManyItemsError, "TOO_MANY_ITEMS"),
    (BulkActionValidationError, "BULK_ACTION_INVALID"),
    (BackendUnavailableError, "BACKEND_UNAVAILABLE"),
    (BackendAuthError, "BACKEND_AUTH_FAILED"),
    (BackendConfigError, "BACKEND_MISCONFIGURED"),
    (BackendError, "BACKEND_ERROR"),
)


def error_code_for(exc: BaseException) -> str:
    # Stable machine-readable code shared by API envelopes and per-item bulk results.
    for error_type, code in _ERROR_CODES:
        if isinstance(exc, error_type):
            return code
    return "INTERNAL_ERROR"
