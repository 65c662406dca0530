"""
Conversation Service
────────────────────
The per-message state machine of the customer search dialogue.

    NEW ──► NEEDS_CLARIFICATION ◄──┐
     │            │                │ (ambiguity persists)
     │            └────────────────┘
     └──────────► SEARCHING ──► DONE ──► (next message reopens the cycle)

SEARCHING only exists inside a single handle_message call: the request,
the offer aggregation and the persisted result all happen before it
returns, so a caller never sees a conversation parked there.

A search only runs once the candidates have converged to one product.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from marketplace.database.models.catalog import Product
from marketplace.database.models.conversation import (
    ConversationState,
    MessageSender,
    SearchConversation,
    SearchIntent,
    SearchMessage,
)
from marketplace.database.repositories.conversation_repository import ConversationRepository
from marketplace.database.repositories.session_repository import CustomerSessionRepository
from marketplace.services.candidate_resolver import CandidateResolver
from marketplace.services.clarification import (
    LOCATION_QUESTION,
    NOT_FOUND_QUESTION,
    REFINE_QUESTION,
    Clarification,
    needs_clarification,
)
from marketplace.services.geocoder import Geocoder
from marketplace.services.intent_extractor import (
    ASK_CLARIFICATION,
    ExtractionError,
    ExtractorDecision,
    IntentExtractor,
)
from marketplace.services.intent_slots import (
    IntentSlots,
    filter_by_intent,
    load_candidate_ids,
    load_slots,
    merge_slots,
    store_candidate_ids,
    store_slots,
)
from marketplace.services.offer_aggregator import OfferAggregator
from marketplace.utils.geo import Coordinates
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class ConversationNotFound(Exception):
    pass


@dataclass
class TurnOutcome:
    state: ConversationState
    message_id: Optional[str]
    questions: Optional[List[str]] = None
    quick_replies: Optional[List[str]] = None
    items: Optional[List[Dict[str, Any]]] = None
    request_id: Optional[str] = None
    result_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"state": self.state.value}
        if self.message_id is not None:
            body["messageId"] = self.message_id
        if self.questions is not None:
            body["questions"] = self.questions
            body["quickReplies"] = self.quick_replies or []
        if self.items is not None:
            body["requestId"] = self.request_id
            body["resultId"] = self.result_id
            body["items"] = self.items
        return body


def candidate_summary(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "brandName": product.brand_name,
        "packageInfo": product.package_info,
        "sku": product.sku,
    }


@dataclass
class _Turn:
    conversation: SearchConversation
    message: SearchMessage
    intent: SearchIntent
    slots: IntentSlots = field(default_factory=IntentSlots)


class ConversationService:
    def __init__(self, db: Session, extractor: IntentExtractor, geocoder: Geocoder):
        self.conversations = ConversationRepository(db)
        self.sessions = CustomerSessionRepository(db)
        self.resolver = CandidateResolver(db)
        self.aggregator = OfferAggregator(db, geocoder)
        self.extractor = extractor

    async def handle_message(
        self,
        conversation_id: str,
        *,
        text: Optional[str],
        attachment_ids: Optional[List[str]],
        geo: Optional[Coordinates],
        radius_meters: int,
    ) -> TurnOutcome:
        conversation = self.conversations.get_active(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        text = text or ""

        message = self.conversations.add_message(
            conversation.id,
            sender=MessageSender.CUSTOMER.value,
            text=text,
            attachment_ids=attachment_ids,
        )
        session = self.sessions.get_active(conversation.session_id)
        if session is not None:
            self.sessions.touch(session)

        intent = self.conversations.get_or_create_intent(conversation, text)
        turn = _Turn(conversation, message, intent, load_slots(intent))
        logger.info(
            "handle_message — conversation=%s state=%s text=%r geo=%s known=%s",
            conversation.id, conversation.state, text, geo, turn.slots.as_dict(),
        )

        # No geo, no search: never spend an extractor call without it
        if geo is None:
            return self._clarify(turn, Clarification([LOCATION_QUESTION]))

        candidates = self._candidates(intent, text)
        if not candidates:
            return self._clarify(turn, Clarification([NOT_FOUND_QUESTION]))

        decision = await self._extract(turn, text, candidates)
        if decision is None:
            fallback = needs_clarification(candidates, turn.slots)
            if fallback:
                return self._clarify(turn, fallback)
        elif decision.action == ASK_CLARIFICATION:
            return self._clarify(turn, Clarification(decision.questions, decision.quick_replies))
        else:
            turn.slots = merge_slots(turn.slots, decision.intent)
            store_slots(intent, turn.slots)

        candidates = filter_by_intent(candidates, turn.slots)
        store_candidate_ids(intent, [p.id for p in candidates])
        self.conversations.save_intent(intent)

        if not candidates:
            return self._clarify(turn, Clarification([REFINE_QUESTION]))
        if len(candidates) > 1:
            narrowed = needs_clarification(candidates, turn.slots)
            if not narrowed:
                narrowed = Clarification([REFINE_QUESTION], narrowed.quick_replies)
            return self._clarify(turn, narrowed)

        return await self._search(turn, candidates, geo, radius_meters)

    async def direct_search(
        self,
        conversation_id: str,
        *,
        text: Optional[str],
        geo: Coordinates,
        radius_meters: int,
        product_limit: int,
    ) -> TurnOutcome:
        """Search straight from text, skipping clarification. Parks the conversation in DONE."""
        conversation = self.conversations.get_active(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        intent = self.conversations.get_or_create_intent(conversation, text or "")
        products = CandidateResolver(self.conversations.db, limit=product_limit).resolve(text)
        request, result, items = await self._run_search(conversation, intent, products, geo, radius_meters)
        return TurnOutcome(
            state=ConversationState.DONE,
            message_id=None,
            items=items,
            request_id=request.id,
            result_id=result.id,
        )

    # ── Steps ─────────────────────────────────────────────────────────────────

    def _candidates(self, intent: SearchIntent, text: str) -> List[Product]:
        """Cached candidate set when there is one, else a fresh text match."""
        cached_ids = load_candidate_ids(intent)
        if cached_ids:
            cached = self.resolver.load(cached_ids)
            if cached:
                logger.debug("_candidates — reusing %d cached candidates", len(cached))
                return cached
        return self.resolver.resolve(text)

    async def _extract(
        self, turn: _Turn, text: str, candidates: List[Product]
    ) -> Optional[ExtractorDecision]:
        try:
            return await self.extractor.extract(
                text=text,
                candidates=[candidate_summary(p) for p in candidates],
                known=turn.slots.as_dict(),
            )
        except ExtractionError as e:
            logger.warning(
                "_extract — conversation=%s extractor unavailable, using clarification policy: %s",
                turn.conversation.id, e,
            )
            return None

    def _clarify(self, turn: _Turn, clarification: Clarification) -> TurnOutcome:
        self.conversations.set_state(turn.conversation, ConversationState.NEEDS_CLARIFICATION)
        self.conversations.add_message(
            turn.conversation.id,
            sender=MessageSender.SYSTEM.value,
            text="\n".join(clarification.questions),
        )
        return TurnOutcome(
            state=ConversationState.NEEDS_CLARIFICATION,
            message_id=turn.message.id,
            questions=list(clarification.questions),
            quick_replies=list(clarification.quick_replies),
        )

    async def _search(
        self,
        turn: _Turn,
        candidates: List[Product],
        geo: Coordinates,
        radius_meters: int,
    ) -> TurnOutcome:
        request, result, items = await self._run_search(
            turn.conversation, turn.intent, candidates, geo, radius_meters
        )
        self.conversations.add_message(
            turn.conversation.id,
            sender=MessageSender.SYSTEM.value,
            text=f"Found {len(items)} product(s) within {radius_meters} m.",
        )
        return TurnOutcome(
            state=ConversationState.DONE,
            message_id=turn.message.id,
            items=items,
            request_id=request.id,
            result_id=result.id,
        )

    async def _run_search(
        self,
        conversation: SearchConversation,
        intent: SearchIntent,
        products: List[Product],
        geo: Coordinates,
        radius_meters: int,
    ):
        previous_request_id, previous_result_id = conversation.request_id, conversation.result_id
        request = self.conversations.create_request(
            conversation, intent_id=intent.id, lat=geo.lat, lng=geo.lng, radius_meters=radius_meters
        )
        request_id = request.id
        self.conversations.set_state(conversation, ConversationState.SEARCHING)
        try:
            items = await self.aggregator.aggregate(products, geo, radius_meters)
            result = self.conversations.create_result(conversation, request, items)
        except Exception:
            logger.exception("_run_search — conversation=%s search failed", conversation.id)
            self.conversations.db.rollback()
            self.conversations.discard_request(
                conversation,
                request_id,
                previous_request_id=previous_request_id,
                previous_result_id=previous_result_id,
            )
            self.conversations.set_state(conversation, ConversationState.NEEDS_CLARIFICATION)
            raise
        self.conversations.set_state(conversation, ConversationState.DONE)
        return request, result, items
