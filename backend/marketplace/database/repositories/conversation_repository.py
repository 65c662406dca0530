"""
Conversation Repository
───────────────────────
Data access for a search dialogue: the conversation row, its ordered
messages, its single intent, and the request/result pairs it produces.

Every read of a time-bounded row (conversation, request, result) filters out
expired rows, so an expired record is indistinguishable from a missing one.
"""
import json

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.models.conversation import (
    ConversationState,
    SearchConversation,
    SearchIntent,
    SearchMessage,
    SearchRequest,
    SearchResult,
)
from marketplace.utils.clock import expires_in, utcnow
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class ConversationRepository:
    def __init__(self, db: Session):
        self.db = db

    # ── Conversations ─────────────────────────────────────────────────────────

    def create(self, session_id: str) -> SearchConversation:
        conversation = SearchConversation(
            session_id=session_id,
            state=ConversationState.NEW.value,
            expires_at=expires_in(hours=settings.conversation_ttl_hours),
        )
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        logger.info("create — conversation=%s session=%s", conversation.id, session_id)
        return conversation

    def get_active(self, conversation_id: str) -> SearchConversation | None:
        stmt = select(SearchConversation).where(
            SearchConversation.id == conversation_id,
            SearchConversation.expires_at > utcnow(),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def set_state(self, conversation: SearchConversation, state: ConversationState) -> None:
        if conversation.state != state.value:
            logger.info(
                "set_state — conversation=%s %s → %s", conversation.id, conversation.state, state.value
            )
        conversation.state = state.value
        conversation.updated_at = utcnow()
        self.db.add(conversation)
        self.db.commit()

    def list_for_session(self, session_id: str) -> list[SearchConversation]:
        """Active conversations of a session, most recently updated first."""
        stmt = (
            select(SearchConversation)
            .where(
                SearchConversation.session_id == session_id,
                SearchConversation.expires_at > utcnow(),
            )
            .order_by(SearchConversation.updated_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    # ── Messages ──────────────────────────────────────────────────────────────

    def add_message(
        self,
        conversation_id: str,
        *,
        sender: str,
        text: str,
        attachment_ids: list[str] | None = None,
    ) -> SearchMessage:
        count = self.db.execute(
            select(func.count(SearchMessage.id)).where(SearchMessage.conversation_id == conversation_id)
        ).scalar_one()
        message = SearchMessage(
            conversation_id=conversation_id,
            position=count + 1,
            sender=sender,
            text=text,
            attachment_ids_json=json.dumps(attachment_ids or []),
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def list_messages(self, conversation_ids: list[str]) -> list[SearchMessage]:
        if not conversation_ids:
            return []
        stmt = (
            select(SearchMessage)
            .where(SearchMessage.conversation_id.in_(conversation_ids))
            .order_by(SearchMessage.conversation_id.asc(), SearchMessage.position.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    # ── Intent ────────────────────────────────────────────────────────────────

    def get_intent(self, conversation: SearchConversation) -> SearchIntent | None:
        if not conversation.intent_id:
            return None
        return self.db.get(SearchIntent, conversation.intent_id)

    def get_or_create_intent(self, conversation: SearchConversation, raw_text: str) -> SearchIntent:
        """Load the conversation's intent, creating it on first use, and record `raw_text`."""
        intent = self.get_intent(conversation)
        if intent is None:
            intent = SearchIntent(conversation_id=conversation.id, raw_text=raw_text)
            self.db.add(intent)
            self.db.flush()
            conversation.intent_id = intent.id
            self.db.add(conversation)
            logger.debug("get_or_create_intent — new intent=%s conversation=%s", intent.id, conversation.id)
        elif raw_text:
            intent.raw_text = raw_text
        self.db.commit()
        return intent

    def save_intent(self, intent: SearchIntent) -> SearchIntent:
        self.db.add(intent)
        self.db.commit()
        return intent

    # ── Requests / Results ────────────────────────────────────────────────────

    def create_request(
        self,
        conversation: SearchConversation,
        *,
        intent_id: str,
        lat: float,
        lng: float,
        radius_meters: int,
    ) -> SearchRequest:
        request = SearchRequest(
            conversation_id=conversation.id,
            intent_id=intent_id,
            lat=lat,
            lng=lng,
            radius_meters=radius_meters,
            expires_at=expires_in(hours=settings.result_ttl_hours),
        )
        self.db.add(request)
        self.db.flush()
        conversation.request_id = request.id
        self.db.add(conversation)
        self.db.commit()
        return request

    def create_result(
        self, conversation: SearchConversation, request: SearchRequest, items: list[dict]
    ) -> SearchResult:
        result = SearchResult(
            request_id=request.id,
            items_json=json.dumps(items, ensure_ascii=False),
            expires_at=expires_in(hours=settings.result_ttl_hours),
        )
        self.db.add(result)
        self.db.flush()
        conversation.result_id = result.id
        self.db.add(conversation)
        self.db.commit()
        logger.info(
            "create_result — conversation=%s request=%s result=%s items=%d",
            conversation.id, request.id, result.id, len(items),
        )
        return result

    def discard_request(
        self,
        conversation: SearchConversation,
        request_id: str,
        *,
        previous_request_id: str | None,
        previous_result_id: str | None,
    ) -> None:
        """Remove a request whose search never produced a result and restore the conversation pointers."""
        self.db.execute(delete(SearchResult).where(SearchResult.request_id == request_id))
        self.db.execute(delete(SearchRequest).where(SearchRequest.id == request_id))
        conversation.request_id = previous_request_id
        conversation.result_id = previous_result_id
        self.db.add(conversation)
        self.db.commit()
        logger.info("discard_request — conversation=%s request=%s", conversation.id, request_id)

    def get_result(self, result_id: str | None) -> SearchResult | None:
        if not result_id:
            return None
        stmt = select(SearchResult).where(
            SearchResult.id == result_id,
            SearchResult.expires_at > utcnow(),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_result_by_request(self, request_id: str) -> SearchResult | None:
        stmt = (
            select(SearchResult)
            .join(SearchRequest, SearchRequest.id == SearchResult.request_id)
            .where(
                SearchResult.request_id == request_id,
                SearchResult.expires_at > utcnow(),
                SearchRequest.expires_at > utcnow(),
            )
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def count_requests(self, conversation_id: str) -> int:
        return self.db.execute(
            select(func.count(SearchRequest.id)).where(SearchRequest.conversation_id == conversation_id)
        ).scalar_one()

    # ── Purge ─────────────────────────────────────────────────────────────────

    def delete_conversations(self, conversation_ids: list[str]) -> int:
        """Physically delete conversations and everything hanging off them."""
        if not conversation_ids:
            return 0
        request_ids = select(SearchRequest.id).where(SearchRequest.conversation_id.in_(conversation_ids))
        self.db.execute(delete(SearchResult).where(SearchResult.request_id.in_(request_ids)))
        self.db.execute(delete(SearchRequest).where(SearchRequest.conversation_id.in_(conversation_ids)))
        self.db.execute(delete(SearchIntent).where(SearchIntent.conversation_id.in_(conversation_ids)))
        self.db.execute(delete(SearchMessage).where(SearchMessage.conversation_id.in_(conversation_ids)))
        deleted = self.db.execute(
            delete(SearchConversation).where(SearchConversation.id.in_(conversation_ids))
        ).rowcount
        self.db.commit()
        logger.info("delete_conversations — deleted=%d", deleted)
        return deleted

    def conversation_ids_for_session(self, session_id: str) -> list[str]:
        """All conversation ids of a session, expired ones included."""
        stmt = select(SearchConversation.id).where(SearchConversation.session_id == session_id)
        return list(self.db.execute(stmt).scalars().all())

    def expired_conversation_ids(self) -> list[str]:
        stmt = select(SearchConversation.id).where(SearchConversation.expires_at <= utcnow())
        return list(self.db.execute(stmt).scalars().all())

    def purge_expired_searches(self) -> tuple[int, int]:
        """Delete expired results and requests. Returns (results, requests) deleted."""
        now = utcnow()
        expired_requests = select(SearchRequest.id).where(SearchRequest.expires_at <= now)
        results = self.db.execute(
            delete(SearchResult).where(
                (SearchResult.expires_at <= now) | SearchResult.request_id.in_(expired_requests)
            )
        ).rowcount
        # A conversation may still point at a request being removed
        stale = list(self.db.execute(expired_requests).scalars().all())
        if stale:
            self.db.execute(
                update(SearchConversation)
                .where(SearchConversation.request_id.in_(stale))
                .values(request_id=None, result_id=None)
            )
        requests = self.db.execute(delete(SearchRequest).where(SearchRequest.expires_at <= now)).rowcount
        self.db.commit()
        return results, requests
