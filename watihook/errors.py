"""
Error taxonomy for webhook ingestion, message storage and outbound sends.

Errors that the webhook acknowledges (malformed events, status updates for
unknown messages) are recorded in the ledger as a processing result. The
rest propagate to the HTTP layer and become 500 responses.
"""

from typing import Any, Optional


class WatihookError(Exception):
    """Base class for all service errors."""

    result_status = "error"

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class MalformedEventError(WatihookError):
    """Event lacks a field required by its classified kind, or carries one of the wrong type."""

    result_status = "malformed_event"


class UpdateTargetMissingError(WatihookError):
    """A status update references a message id with no stored record."""

    result_status = "update_target_missing"

    def __init__(self, message_id: str):
        super().__init__(f"No stored message with id {message_id!r}", detail={"id": message_id})
        self.message_id = message_id


class StoreUnavailableError(WatihookError):
    """Persistence layer is unreachable or failed unexpectedly."""


class IndexNotReadyError(WatihookError):
    """Composite filter+sort query capability is not available yet."""


class OutboundSendFailedError(WatihookError):
    """The messaging API rejected or failed a send."""


class CollaboratorTimeoutError(WatihookError):
    """A store or messaging API call exceeded its time bound."""


class LedgerStateError(WatihookError):
    """Annotation of a missing or already processed ledger entry."""
