"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, JSON, String, Text

from watihook.storage import Base, MESSAGE_THREAD_INDEX


class Message(Base):
    """
    Canonical record of one conversation message.

    Table: whatsapp_messages
    Primary Key: id (provider-assigned, makes upserts idempotent)
    Timestamps are epoch milliseconds.
    """
    __tablename__ = "whatsapp_messages"

    id = Column(String, primary_key=True)
    counterparty_id = Column(String, nullable=True, index=True)
    text = Column(Text, nullable=True)
    kind = Column(String, nullable=False)  # incoming, template, session, media
    template_name = Column(String, nullable=True)
    media_info = Column(JSON, nullable=True)
    status = Column(String, nullable=False)
    direction = Column(String, nullable=False)  # incoming, outgoing
    timestamp = Column(BigInteger, nullable=False)
    delivered_at = Column(BigInteger, nullable=True)
    read_at = Column(BigInteger, nullable=True)
    raw_event = Column(JSON, nullable=True)
    raw_delivery_event = Column(JSON, nullable=True)
    raw_read_event = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


message_thread_index = Index(MESSAGE_THREAD_INDEX, Message.counterparty_id, Message.timestamp)


class Attachment(Base):
    """
    Media reference owned by a media message. Binary content is not stored.

    Table: whatsapp_attachments
    Primary Key: message_id (one attachment per media message)
    """
    __tablename__ = "whatsapp_attachments"

    message_id = Column(String, primary_key=True)
    attachment_id = Column(String, nullable=False)
    caption = Column(Text, nullable=True)
    source_url = Column(Text, nullable=True)
    mime_kind = Column(String, nullable=True)
    timestamp = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class WebhookEvent(Base):
    """
    Ledger entry for one raw inbound webhook event.

    Table: wati_webhook_events
    Created unprocessed on arrival; annotated exactly once with the outcome.
    """
    __tablename__ = "wati_webhook_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=True, index=True)
    raw_event = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    processing_result = Column(JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
