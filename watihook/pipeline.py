"""
Webhook ingestion pipeline and outbound send use cases.

One inbound event runs through:
    ledger append -> classify -> project -> persist -> ledger annotate

Malformed events and status updates for unknown messages are acknowledged
and annotated with a failure result. Store failures propagate, leaving the
ledger entry unprocessed.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from watihook.errors import (
    CollaboratorTimeoutError,
    MalformedEventError,
    OutboundSendFailedError,
    StoreUnavailableError,
    UpdateTargetMissingError,
)
from watihook.events import EventKind, classify
from watihook.ledger import WebhookLedger
from watihook.metrics import record_outbound_send, record_webhook_event
from watihook.models import Message
from watihook.projector import Projection, RecordOperation, project
from watihook.store import AttachmentStore, MessageStore
from watihook.timestamps import now_ms
from watihook.wati_client import SendResult, WatiClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ProcessingOutcome:
    kind: EventKind
    status: str
    event_type: Optional[str] = None
    message_id: Optional[str] = None
    detail: Optional[Any] = None

    def as_result(self) -> dict[str, Any]:
        result = {"status": self.status, "kind": self.kind.value, "eventType": self.event_type}
        if self.message_id is not None:
            result["messageId"] = self.message_id
        if self.detail is not None:
            result["detail"] = self.detail
        return result


class Deadline:
    """
    Shared between a request and its worker thread. Expired once the request
    stops waiting, so the worker makes no further writes after the response.
    """

    def __init__(self) -> None:
        self._expired = threading.Event()

    def expire(self) -> None:
        self._expired.set()

    @property
    def expired(self) -> bool:
        return self._expired.is_set()

    def check(self, step: str) -> None:
        if self.expired:
            raise CollaboratorTimeoutError(f"Request timed out before {step}")


async def run_bounded(
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    deadline: Optional[Deadline] = None,
) -> T:
    """
    Run blocking store work in a worker thread, bounded by `timeout` seconds.
    On timeout `deadline` is expired so the worker can stop at its next step.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        if deadline is not None:
            deadline.expire()
        logger.error(f"Store call exceeded {timeout}s: {getattr(func, '__name__', func)}")
        raise CollaboratorTimeoutError(f"Store call timed out after {timeout}s") from e


class WebhookPipeline:

    def __init__(self, ledger: WebhookLedger, messages: MessageStore, attachments: AttachmentStore):
        self.ledger = ledger
        self.messages = messages
        self.attachments = attachments

    def handle(self, raw_event: Any, deadline: Optional[Deadline] = None) -> tuple[str, ProcessingOutcome]:
        """
        Ledger, process and annotate one raw event.

        Returns:
            Tuple of (ledger id, processing outcome)

        Raises:
            StoreUnavailableError: persistence failed; the ledger entry stays
                unprocessed (or the request fails before it is recorded)
            CollaboratorTimeoutError: `deadline` expired; the ledger entry
                stays unprocessed
        """
        deadline = deadline or Deadline()
        ledger_id = self.ledger.append(raw_event)
        deadline.check("processing")
        outcome = self.process(raw_event)
        try:
            deadline.check("ledger annotation")
        except CollaboratorTimeoutError:
            logger.warning(
                "Webhook event processed after request timed out, ledger entry left unprocessed",
                extra={"event_id": ledger_id, "event_kind": outcome.kind.value, "result": outcome.status},
            )
            raise
        self.ledger.annotate(ledger_id, outcome.as_result())
        record_webhook_event(outcome.kind.value, outcome.status)
        logger.info(
            "Webhook event processed",
            extra={"event_id": ledger_id, "event_kind": outcome.kind.value, "result": outcome.status},
        )
        return ledger_id, outcome

    def process(self, raw_event: Any) -> ProcessingOutcome:
        if not isinstance(raw_event, dict):
            logger.warning("Malformed webhook event: body is not a JSON object")
            return ProcessingOutcome(
                kind=EventKind.UNHANDLED,
                status=MalformedEventError.result_status,
                detail="Event body is not a JSON object",
            )

        event_type = raw_event.get("eventType")
        event_type = event_type if isinstance(event_type, str) else None
        kind = classify(raw_event)
        try:
            projection = project(kind, raw_event)
            status = self.apply(projection)
        except MalformedEventError as e:
            logger.warning(f"Malformed webhook event: {e.message}", extra={"event_type": event_type})
            return ProcessingOutcome(kind=kind, status=e.result_status, event_type=event_type, detail=e.message)
        except UpdateTargetMissingError as e:
            logger.warning(
                f"Status update for unknown message: {e.message_id}",
                extra={"event_type": event_type, "message_id": e.message_id},
            )
            return ProcessingOutcome(
                kind=kind,
                status=e.result_status,
                event_type=event_type,
                message_id=e.message_id,
                detail=e.message,
            )

        return ProcessingOutcome(kind=kind, status=status, event_type=event_type, message_id=projection.message_id)

    def apply(self, projection: Projection) -> str:
        """Persist a projection. Returns the result status."""
        if projection.operation is RecordOperation.CREATE_OR_REPLACE:
            self.messages.upsert(projection.message_id, projection.fields)
            if projection.attachment is not None:
                try:
                    self.attachments.upsert(projection.attachment)
                except StoreUnavailableError as e:
                    logger.error(
                        f"Attachment insert failed, message kept: {projection.message_id}: {e.message}"
                    )
                    return "media_insert_failed"
        elif projection.operation is RecordOperation.UPDATE_EXISTING:
            self.messages.patch(projection.message_id, projection.fields)
        return projection.result_status


class OutboundMessenger:
    """Sends messages through WATI and records them once the send succeeds."""

    def __init__(self, client: WatiClient, messages: MessageStore, store_timeout: float = 10.0):
        self.client = client
        self.messages = messages
        self.store_timeout = store_timeout

    async def initiate_chat(self, wa_number: str, template_name: str) -> Message:
        result = await self.client.send_template_message(wa_number, template_name)
        self._check("template", result)
        fields = {
            "counterparty_id": wa_number,
            "kind": "template",
            "template_name": template_name,
            "status": "sent",
            "direction": "outgoing",
            "timestamp": now_ms(),
            "raw_event": {"source": "outbound", "response": result.body},
        }
        return await self._record(result, fields)

    async def send_session_message(self, wa_number: str, text: str) -> Message:
        result = await self.client.send_session_message(wa_number, text)
        self._check("session", result)
        fields = {
            "counterparty_id": wa_number,
            "text": text,
            "kind": "session",
            "status": "sent",
            "direction": "outgoing",
            "timestamp": now_ms(),
            "raw_event": {"source": "outbound", "response": result.body},
        }
        return await self._record(result, fields)

    def _check(self, kind: str, result: SendResult) -> None:
        record_outbound_send(kind, "success" if result.success else "failed")
        if not result.success:
            raise OutboundSendFailedError(f"Failed to send {kind} message", detail=result.error)

    async def _record(self, result: SendResult, fields: dict[str, Any]) -> Message:
        # Provider did not return an id: the local store assigns one
        message_id = result.message_id or uuid.uuid4().hex
        return await run_bounded(self.messages.upsert, message_id, fields, timeout=self.store_timeout)


def ingest_event(
    raw_event: Any,
    deadline: Deadline,
    session_factory: Callable[[], Session],
) -> tuple[str, ProcessingOutcome]:
    """
    Run the pipeline for one event on a session owned by the calling thread,
    so an abandoned worker never shares a session with the request.
    """
    with session_factory() as db:
        pipeline = WebhookPipeline(WebhookLedger(db), MessageStore(db), AttachmentStore(db))
        return pipeline.handle(raw_event, deadline)
