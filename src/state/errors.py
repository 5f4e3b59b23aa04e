from __future__ import annotations


class OpsError(Exception):
    """Base for every error raised by the ministry operations core."""

    code = "ops_error"


class ValidationError(OpsError):
    code = "validation_error"


class ConflictError(OpsError):
    code = "conflict"


class NotFoundError(OpsError):
    code = "not_found"


class StoreUnavailableError(OpsError):
    code = "store_unavailable"


class ConstraintViolationError(OpsError):
    """Raised by a store when a uniqueness or foreign-key constraint fails."""

    code = "constraint_violation"

    def __init__(self, collection: str, fields: tuple[str, ...], message: str | None = None):
        self.collection = collection
        self.fields = fields
        super().__init__(message or f"{collection}: duplicate value for {', '.join(fields)}")


class NotificationDeliveryError(OpsError):
    """Soft failure. Built and logged by the dispatcher, never raised to callers."""

    code = "notification_delivery"

    def __init__(self, channel: str, recipient_id: str, reason: str):
        self.channel = channel
        self.recipient_id = recipient_id
        self.reason = reason
        super().__init__(f"{channel} notification to {recipient_id} failed: {reason}")
