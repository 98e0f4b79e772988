"""Exception hierarchy for the trigger engine.

- ChurnGuardError (base, carries a `details` dict)
- TriggerLoadError      : active trigger list could not be read (batch-level)
- SnapshotLoadError     : a user's snapshots could not be read (trigger-level)
- TriggerConfigError    : a trigger is unusable as configured (trigger-level)
- EmailSendError        : one send failed (customer-level, always recorded)
- PostHogError          : the analytics provider rejected a request
- ChurnEventNotFound    : refresh requested for an unknown churn event
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ChurnGuardError",
    "TriggerLoadError",
    "SnapshotLoadError",
    "TriggerConfigError",
    "EmailSendError",
    "PostHogError",
    "ChurnEventNotFound",
]


class ChurnGuardError(Exception):
    """Base error. `details` is safe to log and to put into execution data."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TriggerLoadError(ChurnGuardError):
    def __init__(self, message: str = "Could not load active triggers") -> None:
        super().__init__(message)


class SnapshotLoadError(ChurnGuardError):
    def __init__(self, user_id: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Could not load usage analytics for user: {user_id}",
            details={"user_id": user_id},
        )
        self.user_id = user_id


class TriggerConfigError(ChurnGuardError):
    """Raised when a trigger cannot be processed as configured.

    Example: a trigger whose email template was deleted.
    """

    def __init__(self, trigger_id: int, reason: str) -> None:
        super().__init__(
            f"Trigger {trigger_id} is misconfigured: {reason}",
            details={"trigger_id": trigger_id, "reason": reason},
        )
        self.trigger_id = trigger_id
        self.reason = reason


class EmailSendError(ChurnGuardError):
    def __init__(self, message: str, *, recipient: str | None = None) -> None:
        super().__init__(message, details={"recipient": recipient} if recipient else None)
        self.recipient = recipient


class PostHogError(ChurnGuardError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message, details={"status_code": status_code} if status_code else None)
        self.status_code = status_code


class ChurnEventNotFound(ChurnGuardError):
    def __init__(self, churn_event_id: int) -> None:
        super().__init__("Churn event not found", details={"churn_event_id": churn_event_id})
        self.churn_event_id = churn_event_id
