from typing import Any, Dict, Optional


class ReminderServiceError(Exception):
    """Base error for the reminder pipeline; ``code`` is stable and machine readable."""

    code = "internal_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ReminderServiceError):
    code = "not_found"

    @classmethod
    def for_subject(cls, subject: str, identifier: Any) -> "NotFoundError":
        return cls(
            f"The {subject} with id {identifier} does not exist.",
            subject=subject,
            id=identifier,
        )


class InvalidInputError(ReminderServiceError):
    code = "invalid_input"


class InvalidTransitionError(ReminderServiceError):
    code = "invalid_transition"


class DatabaseCorruptedError(ReminderServiceError):
    """An update or delete expected to touch one row touched several."""

    code = "database_corrupted"


class TransportError(ReminderServiceError):
    code = "transport_error"


class DeliveryError(ReminderServiceError):
    code = "delivery_failed"

    def __init__(self, message: str, endpoint: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, endpoint=endpoint, status_code=status_code)
        self.endpoint = endpoint
        self.status_code = status_code


class SubscriptionGoneError(DeliveryError):
    """The push service reports the device endpoint as expired (404/410)."""

    code = "subscription_gone"
