"""
Message and attachment persistence.

MessageStore is the reconciliation point for webhook projections:
- upsert: create-or-replace a whole message by id
- patch: merge status fields onto an existing message, never inserting
- query_by_counterparty: ordered thread read with a filter-only fallback
  when the composite index is unavailable
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from watihook.errors import IndexNotReadyError, StoreUnavailableError, UpdateTargetMissingError
from watihook.metrics import record_query_fallback
from watihook.models import Attachment, Message
from watihook.storage import index_ready

logger = logging.getLogger(__name__)

# Columns owned by the message document; store metadata is excluded
MESSAGE_FIELDS = (
    "counterparty_id",
    "text",
    "kind",
    "template_name",
    "media_info",
    "status",
    "direction",
    "timestamp",
    "delivered_at",
    "read_at",
    "raw_event",
    "raw_delivery_event",
    "raw_read_event",
)

ATTACHMENT_FIELDS = ("attachment_id", "caption", "source_url", "mime_kind", "timestamp")

SORT_ORDERS = ("asc", "desc")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def thread_sort_key(message: Message) -> tuple:
    return (message.timestamp, message.id)


class MessageStore:
    """Message records keyed by provider message id."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, message_id: str) -> Optional[Message]:
        try:
            return self.db.get(Message, message_id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read message {message_id}: {e}") from e

    def upsert(self, message_id: str, fields: dict[str, Any]) -> Message:
        """
        Create or fully replace the message at `message_id`.

        Every document field is overwritten; fields absent from `fields`
        are cleared. A concurrent insert of the same id is retried once as
        a replace.
        """
        logger.info(f"Upserting message: id={message_id}")
        try:
            try:
                return self._replace(message_id, fields)
            except IntegrityError:
                self.db.rollback()
                logger.info(f"Concurrent insert detected, replacing: {message_id}")
                return self._replace(message_id, fields)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to upsert message {message_id}: {e}")
            raise StoreUnavailableError(f"Failed to store message {message_id}") from e

    def _replace(self, message_id: str, fields: dict[str, Any]) -> Message:
        now = _utcnow()
        message = self.db.get(Message, message_id)
        if message is None:
            message = Message(id=message_id, created_at=now)
            self.db.add(message)
        for name in MESSAGE_FIELDS:
            setattr(message, name, fields.get(name))
        message.updated_at = now
        self.db.commit()
        return message

    def patch(self, message_id: str, fields: dict[str, Any]) -> Message:
        """
        Merge `fields` onto an existing message.

        Raises:
            UpdateTargetMissingError: no message is stored at `message_id`
        """
        unknown = set(fields) - set(MESSAGE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")

        logger.info(f"Patching message: id={message_id}, fields={sorted(fields)}")
        try:
            message = self.db.get(Message, message_id)
            if message is None:
                raise UpdateTargetMissingError(message_id)
            for name, value in fields.items():
                setattr(message, name, value)
            message.updated_at = _utcnow()
            self.db.commit()
            return message
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to patch message {message_id}: {e}")
            raise StoreUnavailableError(f"Failed to update message {message_id}") from e

    def query_by_counterparty(
        self,
        counterparty_id: str,
        order: str = "desc",
        limit: int = 50,
    ) -> list[Message]:
        """
        Read up to `limit` messages of a conversation thread.

        `order` picks which end of the thread is kept when it holds more
        than `limit` messages ("desc" keeps the latest). The result is
        always returned ascending by timestamp, whichever query path ran.
        """
        if order not in SORT_ORDERS:
            raise ValueError(f"order must be one of {SORT_ORDERS}")

        try:
            try:
                messages = self._query_ordered(counterparty_id, order, limit)
            except IndexNotReadyError:
                logger.warning(
                    "Composite index not ready, serving thread read from fallback query",
                    extra={"counterparty_id": counterparty_id},
                )
                record_query_fallback()
                messages = self._query_unordered(counterparty_id, order, limit)
        except SQLAlchemyError as e:
            logger.error(f"Failed to query messages for {counterparty_id}: {e}")
            raise StoreUnavailableError(f"Failed to fetch messages for {counterparty_id}") from e

        return sorted(messages, key=thread_sort_key)

    def _query_ordered(self, counterparty_id: str, order: str, limit: int) -> list[Message]:
        if not index_ready(self.db):
            raise IndexNotReadyError("Composite thread index is not available")

        if order == "desc":
            ordering = (Message.timestamp.desc(), Message.id.desc())
        else:
            ordering = (Message.timestamp.asc(), Message.id.asc())
        stmt = (
            select(Message)
            .where(Message.counterparty_id == counterparty_id)
            .order_by(*ordering)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    def _query_unordered(self, counterparty_id: str, order: str, limit: int) -> list[Message]:
        stmt = select(Message).where(Message.counterparty_id == counterparty_id)
        matches = sorted(self.db.scalars(stmt), key=thread_sort_key, reverse=(order == "desc"))
        return matches[:limit]


class AttachmentStore:
    """Attachment references keyed by owning message id."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, message_id: str) -> Optional[Attachment]:
        try:
            return self.db.get(Attachment, message_id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read attachment for {message_id}: {e}") from e

    def upsert(self, fields: dict[str, Any]) -> Attachment:
        message_id = fields["message_id"]
        try:
            attachment = self.db.get(Attachment, message_id)
            if attachment is None:
                attachment = Attachment(message_id=message_id, created_at=_utcnow())
                self.db.add(attachment)
            for name in ATTACHMENT_FIELDS:
                setattr(attachment, name, fields.get(name))
            self.db.commit()
            return attachment
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store attachment for {message_id}: {e}")
            raise StoreUnavailableError(f"Failed to store attachment for {message_id}") from e
