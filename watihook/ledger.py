"""
Webhook ledger: an audit trail of every raw inbound event.

An entry is appended (and committed) before the event is classified or
projected, then annotated exactly once with the processing result. Entries
left unprocessed mark events whose handling never completed.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from watihook.errors import LedgerStateError, StoreUnavailableError
from watihook.models import WebhookEvent

logger = logging.getLogger(__name__)


class WebhookLedger:

    def __init__(self, db: Session):
        self.db = db

    def append(self, raw_event: Any) -> str:
        """Record a raw event as unprocessed. Returns the store-assigned ledger id."""
        ledger_id = uuid.uuid4().hex
        event_type = raw_event.get("eventType") if isinstance(raw_event, dict) else None
        entry = WebhookEvent(
            id=ledger_id,
            event_type=event_type if isinstance(event_type, str) else None,
            raw_event=raw_event,
            received_at=datetime.now(timezone.utc),
            processed=False,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to append webhook event: {e}")
            raise StoreUnavailableError("Failed to record webhook event") from e
        logger.debug(f"Webhook event ledgered: {ledger_id}")
        return ledger_id

    def annotate(self, ledger_id: str, result: dict[str, Any]) -> WebhookEvent:
        """Mark an entry processed with its result. Allowed once per entry."""
        try:
            entry = self.db.get(WebhookEvent, ledger_id)
            if entry is None:
                raise LedgerStateError(f"No ledger entry {ledger_id}")
            if entry.processed:
                raise LedgerStateError(f"Ledger entry {ledger_id} is already processed")
            entry.processed = True
            entry.processing_result = result
            entry.processed_at = datetime.now(timezone.utc)
            self.db.commit()
            return entry
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to annotate webhook event {ledger_id}: {e}")
            raise StoreUnavailableError(f"Failed to annotate webhook event {ledger_id}") from e

    def get(self, ledger_id: str) -> Optional[WebhookEvent]:
        try:
            return self.db.get(WebhookEvent, ledger_id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read webhook event {ledger_id}") from e

    def unprocessed(self, limit: int = 100) -> list[WebhookEvent]:
        """Entries whose handling never completed, oldest first."""
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.processed.is_(False))
            .order_by(WebhookEvent.received_at.asc())
            .limit(limit)
        )
        try:
            return list(self.db.scalars(stmt))
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Failed to list unprocessed webhook events") from e
