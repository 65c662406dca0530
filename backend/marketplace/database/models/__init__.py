from marketplace.database.models.attachment import Attachment, VoiceInput
from marketplace.database.models.catalog import Category, Offer, Product, Store
from marketplace.database.models.conversation import (
    ConversationState,
    MessageSender,
    SearchConversation,
    SearchIntent,
    SearchMessage,
    SearchRequest,
    SearchResult,
)
from marketplace.database.models.customer_session import CustomerSession

__all__ = [
    "Attachment",
    "VoiceInput",
    "Category",
    "Offer",
    "Product",
    "Store",
    "ConversationState",
    "MessageSender",
    "SearchConversation",
    "SearchIntent",
    "SearchMessage",
    "SearchRequest",
    "SearchResult",
    "CustomerSession",
]
