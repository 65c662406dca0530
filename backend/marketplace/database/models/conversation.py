"""
Conversation Models
───────────────────
One search dialogue and everything it produces:

  SearchConversation ─┬─ SearchMessage   (ordered turns, immutable)
                      ├─ SearchIntent    (exactly one, mutated in place)
                      └─ SearchRequest ── SearchResult

The conversation holds pointers to its current intent/request/result so the
latest round can be read without scanning.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.engine import Base
from marketplace.utils.clock import new_id


class ConversationState(str, enum.Enum):
    NEW = "NEW"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    SEARCHING = "SEARCHING"
    DONE = "DONE"


class MessageSender(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    SYSTEM = "SYSTEM"


class SearchConversation(Base):
    __tablename__ = "search_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(ForeignKey("customer_sessions.id"), index=True)
    state: Mapped[str] = mapped_column(String(30), default=ConversationState.NEW.value)
    intent_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    result_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SearchMessage(Base):
    __tablename__ = "search_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(ForeignKey("search_conversations.id"), index=True)
    # 1-based order within the conversation
    position: Mapped[int] = mapped_column(Integer)
    sender: Mapped[str] = mapped_column(String(20))
    text: Mapped[str] = mapped_column(Text, default="")
    # JSON list of attachment ids
    attachment_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class SearchIntent(Base):
    __tablename__ = "search_intents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("search_conversations.id"), index=True, unique=True
    )
    raw_text: Mapped[str] = mapped_column(Text, default="")
    # Sparse JSON object of known slots: {"brand": "A", "packageInfo": null}.
    # A missing key means "not yet known"; a null value means "known to be empty".
    slots_json: Mapped[str] = mapped_column(Text, default="{}")
    # JSON list of candidate product ids, or NULL when nothing is cached
    candidate_ids_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SearchRequest(Base):
    __tablename__ = "search_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(ForeignKey("search_conversations.id"), index=True)
    intent_id: Mapped[str] = mapped_column(ForeignKey("search_intents.id"))
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)
    radius_meters: Mapped[int] = mapped_column(Integer)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class SearchResult(Base):
    __tablename__ = "search_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(ForeignKey("search_requests.id"), index=True, unique=True)
    # JSON list of {product, offers[]} entries, offers nearest first
    items_json: Mapped[str] = mapped_column(Text, default="[]")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
