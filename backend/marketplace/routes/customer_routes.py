import io
import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.engine import get_db
from marketplace.database.models import (
    CustomerSession,
    SearchConversation,
    SearchIntent,
    SearchMessage,
    SearchResult,
)
from marketplace.database.repositories.attachment_repository import AttachmentRepository
from marketplace.database.repositories.conversation_repository import ConversationRepository
from marketplace.database.repositories.session_repository import CustomerSessionRepository
from marketplace.routes.dependencies import (
    get_geocoder,
    get_intent_extractor,
    get_object_storage,
    get_transcription_service,
)
from marketplace.schemas import (
    CreateConversationBody,
    CreateSessionBody,
    DirectSearchBody,
    PostMessageBody,
)
from marketplace.services.conversation_service import ConversationNotFound, ConversationService
from marketplace.services.geocoder import Geocoder
from marketplace.services.intent_extractor import IntentExtractor
from marketplace.services.intent_slots import load_candidate_ids, load_slots
from marketplace.services.storage_service import LocalObjectStorage, StorageError
from marketplace.services.transcription_service import TranscriptionError, TranscriptionService
from marketplace.utils.logger import get_logger

router = APIRouter(prefix="/api/customer", tags=["customer"])
logger = get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
ALLOWED_AUDIO_TYPES = {"audio/mpeg", "audio/mp4", "audio/wav", "audio/ogg", "audio/webm"}


# ─────────────────────────────────────────────────────────────
# Serializers
# ─────────────────────────────────────────────────────────────

def _session_out(session: CustomerSession) -> dict:
    return {
        "sessionId": session.id,
        "expiresAt": session.expires_at.isoformat(),
        "lastSeenAt": session.last_seen_at.isoformat(),
    }


def _conversation_out(conversation: SearchConversation) -> dict:
    return {
        "conversationId": conversation.id,
        "sessionId": conversation.session_id,
        "state": conversation.state,
        "intentId": conversation.intent_id,
        "requestId": conversation.request_id,
        "resultId": conversation.result_id,
        "expiresAt": conversation.expires_at.isoformat(),
        "updatedAt": conversation.updated_at.isoformat(),
    }


def _message_out(message: SearchMessage) -> dict:
    return {
        "messageId": message.id,
        "conversationId": message.conversation_id,
        "sender": message.sender,
        "text": message.text,
        "attachments": json.loads(message.attachment_ids_json or "[]"),
        "createdAt": message.created_at.isoformat(),
    }


def _intent_out(intent: SearchIntent) -> dict:
    slots = load_slots(intent)
    return {
        "intentId": intent.id,
        "rawText": intent.raw_text,
        "slots": slots.as_dict(),
        "candidateProductIds": load_candidate_ids(intent),
        "confidence": intent.confidence,
    }


def _result_out(result: SearchResult) -> dict:
    return {
        "resultId": result.id,
        "requestId": result.request_id,
        "items": json.loads(result.items_json or "[]"),
        "expiresAt": result.expires_at.isoformat(),
    }


def _require_session(db: Session, session_id: Optional[str]) -> CustomerSession:
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")
    session = CustomerSessionRepository(db).get_active(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ─────────────────────────────────────────────────────────────
# Sessions & conversations
# ─────────────────────────────────────────────────────────────

@router.post("/sessions")
def create_session(request: Request, body: Optional[CreateSessionBody] = None, db: Session = Depends(get_db)):
    body = body or CreateSessionBody()
    session = CustomerSessionRepository(db).create(
        device_id=body.device_id,
        user_agent=body.user_agent or request.headers.get("user-agent"),
    )
    return {"sessionId": session.id, "expiresAt": session.expires_at.isoformat()}


@router.get("/sessions/{session_id}")
def get_session(session_id: str, db: Session = Depends(get_db)):
    session = CustomerSessionRepository(db).get_active(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _session_out(session)


@router.post("/conversations")
def create_conversation(body: CreateConversationBody, db: Session = Depends(get_db)):
    session = _require_session(db, body.session_id)
    CustomerSessionRepository(db).touch(session)
    conversation = ConversationRepository(db).create(session.id)
    return {"conversationId": conversation.id, "state": conversation.state}


@router.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str, db: Session = Depends(get_db)):
    repo = ConversationRepository(db)
    conversation = repo.get_active(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    intent = repo.get_intent(conversation)
    result = repo.get_result(conversation.result_id)
    return {
        **_conversation_out(conversation),
        "messages": [_message_out(m) for m in repo.list_messages([conversation.id])],
        "intent": _intent_out(intent) if intent else None,
        "result": _result_out(result) if result else None,
    }


# ─────────────────────────────────────────────────────────────
# Conversational turn
# ─────────────────────────────────────────────────────────────

@router.post("/conversations/{conversation_id}/messages")
async def post_message(
    conversation_id: str,
    body: PostMessageBody,
    db: Session = Depends(get_db),
    extractor: IntentExtractor = Depends(get_intent_extractor),
    geocoder: Geocoder = Depends(get_geocoder),
):
    service = ConversationService(db, extractor, geocoder)
    try:
        outcome = await service.handle_message(
            conversation_id,
            text=body.text,
            attachment_ids=body.attachments,
            geo=body.geo.to_coordinates() if body.geo else None,
            radius_meters=body.radius_meters or settings.conversation_radius_meters,
        )
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return outcome.to_response()


# ─────────────────────────────────────────────────────────────
# Direct search & results
# ─────────────────────────────────────────────────────────────

@router.post("/search")
async def direct_search(
    body: DirectSearchBody,
    db: Session = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
    extractor: IntentExtractor = Depends(get_intent_extractor),
):
    geo = body.geo.to_coordinates() if body.geo else None
    if not body.conversation_id or geo is None:
        raise HTTPException(status_code=400, detail="conversationId and geo {lat, lng} are required")

    service = ConversationService(db, extractor, geocoder)
    try:
        outcome = await service.direct_search(
            body.conversation_id,
            text=body.text,
            geo=geo,
            radius_meters=body.radius_meters or settings.direct_search_radius_meters,
            product_limit=settings.direct_search_product_limit,
        )
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"requestId": outcome.request_id, "resultId": outcome.result_id, "items": outcome.items}


@router.get("/search/{request_id}")
def get_search_result(request_id: str, db: Session = Depends(get_db)):
    result = ConversationRepository(db).get_result_by_request(request_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Search result not found")
    return _result_out(result)


# ─────────────────────────────────────────────────────────────
# Uploads
# ─────────────────────────────────────────────────────────────

async def _read_upload(file: Optional[UploadFile], allowed: set[str]) -> bytes:
    if file is None:
        raise HTTPException(status_code=400, detail="File is required")
    if file.content_type not in allowed:
        raise HTTPException(status_code=400, detail=f"File type not allowed: {file.content_type}")
    content = await file.read(settings.max_upload_bytes + 1)
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File exceeds the upload size limit")
    return content


def _require_conversation(db: Session, session_id: Optional[str], conversation_id: Optional[str]):
    if not session_id or not conversation_id:
        raise HTTPException(status_code=400, detail="sessionId and conversationId are required")
    session = _require_session(db, session_id)
    conversation = ConversationRepository(db).get_active(conversation_id)
    if conversation is None or conversation.session_id != session.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return session, conversation


def _store(storage: LocalObjectStorage, content: bytes, content_type: str, folder: str):
    try:
        return storage.put(content, content_type=content_type, folder=folder)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/attachments", status_code=201)
async def upload_attachment(
    session_id: Optional[str] = Form(None, alias="sessionId"),
    conversation_id: Optional[str] = Form(None, alias="conversationId"),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_object_storage),
):
    session, conversation = _require_conversation(db, session_id, conversation_id)
    content = await _read_upload(file, ALLOWED_IMAGE_TYPES | ALLOWED_AUDIO_TYPES)
    is_image = file.content_type in ALLOWED_IMAGE_TYPES

    metadata = {"size": len(content), "contentType": file.content_type}
    if is_image:
        try:
            with Image.open(io.BytesIO(content)) as img:
                metadata["width"], metadata["height"] = img.size
        except (UnidentifiedImageError, OSError):
            raise HTTPException(status_code=400, detail="Image could not be read")

    stored = _store(storage, content, file.content_type, "customer")
    metadata["key"] = stored.key
    attachment = AttachmentRepository(db).create(
        session_id=session.id,
        conversation_id=conversation.id,
        type="image" if is_image else "audio",
        url=stored.url,
        metadata=metadata,
    )
    return {"attachmentId": attachment.id, "url": attachment.url, "type": attachment.type}


@router.post("/voice", status_code=201)
async def upload_voice(
    session_id: Optional[str] = Form(None, alias="sessionId"),
    conversation_id: Optional[str] = Form(None, alias="conversationId"),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_object_storage),
    transcriber: TranscriptionService = Depends(get_transcription_service),
):
    session, conversation = _require_conversation(db, session_id, conversation_id)
    content = await _read_upload(file, ALLOWED_AUDIO_TYPES)

    stored = _store(storage, content, file.content_type, "customer-audio")
    repo = AttachmentRepository(db)
    attachment = repo.create(
        session_id=session.id,
        conversation_id=conversation.id,
        type="audio",
        url=stored.url,
        metadata={"key": stored.key, "size": len(content), "contentType": file.content_type},
    )

    try:
        transcript = await transcriber.transcribe(content, file.content_type, file.filename or "voice")
    except TranscriptionError as e:
        logger.error("upload_voice — transcription failed for attachment=%s: %s", attachment.id, e)
        raise HTTPException(status_code=502, detail="Voice transcription failed")

    voice = repo.add_voice_input(attachment, transcript=transcript)
    return {
        "attachmentId": attachment.id,
        "url": attachment.url,
        "transcript": voice.transcript,
        "confidence": voice.confidence,
        "language": voice.language,
    }


# ─────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────

@router.get("/history")
def get_history(sessionId: Optional[str] = None, db: Session = Depends(get_db)):
    if not sessionId:
        raise HTTPException(status_code=400, detail="sessionId is required")
    conversations = ConversationRepository(db).list_for_session(sessionId)
    return {"items": [_conversation_out(c) for c in conversations], "total": len(conversations)}


@router.get("/history/export")
def export_history(sessionId: Optional[str] = None, db: Session = Depends(get_db)):
    if not sessionId:
        raise HTTPException(status_code=400, detail="sessionId is required")
    repo = ConversationRepository(db)
    conversations = repo.list_for_session(sessionId)
    messages = repo.list_messages([c.id for c in conversations])
    return {
        "conversations": [_conversation_out(c) for c in conversations],
        "messages": [_message_out(m) for m in messages],
    }


@router.delete("/history")
def delete_history(
    sessionId: Optional[str] = None,
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_object_storage),
):
    if not sessionId:
        raise HTTPException(status_code=400, detail="sessionId is required")

    attachments = AttachmentRepository(db).list_for_session(sessionId)
    for attachment in attachments:
        key = json.loads(attachment.metadata_json or "{}").get("key")
        if key:
            storage.delete(key)
    AttachmentRepository(db).delete_attachments([a.id for a in attachments])

    repo = ConversationRepository(db)
    deleted = repo.delete_conversations(repo.conversation_ids_for_session(sessionId))
    logger.info("delete_history — session=%s conversations=%d attachments=%d", sessionId, deleted, len(attachments))
    return {"ok": True}
