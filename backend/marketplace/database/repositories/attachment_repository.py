import json

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.models.attachment import Attachment, VoiceInput
from marketplace.utils.clock import expires_in, utcnow
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class AttachmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        session_id: str,
        conversation_id: str,
        type: str,
        url: str,
        metadata: dict,
    ) -> Attachment:
        attachment = Attachment(
            session_id=session_id,
            conversation_id=conversation_id,
            type=type,
            url=url,
            metadata_json=json.dumps(metadata),
            expires_at=expires_in(hours=settings.attachment_ttl_hours),
        )
        self.db.add(attachment)
        self.db.commit()
        self.db.refresh(attachment)
        logger.info(
            "create — attachment=%s type=%s conversation=%s size=%s",
            attachment.id, type, conversation_id, metadata.get("size"),
        )
        return attachment

    def add_voice_input(
        self,
        attachment: Attachment,
        *,
        transcript: str,
        confidence: float | None = None,
        language: str | None = None,
    ) -> VoiceInput:
        voice = VoiceInput(
            attachment_id=attachment.id,
            transcript=transcript,
            confidence=confidence,
            language=language,
        )
        self.db.add(voice)
        self.db.commit()
        self.db.refresh(voice)
        return voice

    def delete_attachments(self, attachment_ids: list[str]) -> int:
        if not attachment_ids:
            return 0
        self.db.execute(delete(VoiceInput).where(VoiceInput.attachment_id.in_(attachment_ids)))
        deleted = self.db.execute(delete(Attachment).where(Attachment.id.in_(attachment_ids))).rowcount
        self.db.commit()
        return deleted

    def list_for_session(self, session_id: str) -> list[Attachment]:
        """All attachments of a session, expired ones included."""
        stmt = select(Attachment).where(Attachment.session_id == session_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_expired(self) -> list[Attachment]:
        stmt = select(Attachment).where(Attachment.expires_at <= utcnow())
        return list(self.db.execute(stmt).scalars().all())

    def list_for_conversations(self, conversation_ids: list[str]) -> list[Attachment]:
        if not conversation_ids:
            return []
        stmt = select(Attachment).where(Attachment.conversation_id.in_(conversation_ids))
        return list(self.db.execute(stmt).scalars().all())
