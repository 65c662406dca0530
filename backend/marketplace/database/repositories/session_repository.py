from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.models.customer_session import CustomerSession
from marketplace.utils.clock import expires_in, utcnow
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class CustomerSessionRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, *, device_id: str | None, user_agent: str | None) -> CustomerSession:
        session = CustomerSession(
            device_id=device_id,
            user_agent=user_agent,
            last_seen_at=utcnow(),
            expires_at=expires_in(days=settings.session_ttl_days),
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info("create — session=%s device=%s", session.id, device_id)
        return session

    def get_active(self, session_id: str) -> CustomerSession | None:
        """Return the session unless it does not exist or has expired."""
        stmt = select(CustomerSession).where(
            CustomerSession.id == session_id,
            CustomerSession.expires_at > utcnow(),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def touch(self, session: CustomerSession) -> None:
        session.last_seen_at = utcnow()
        self.db.add(session)
        self.db.commit()

    def expired_ids(self) -> list[str]:
        stmt = select(CustomerSession.id).where(CustomerSession.expires_at <= utcnow())
        return list(self.db.execute(stmt).scalars().all())

    def delete_many(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        deleted = self.db.execute(delete(CustomerSession).where(CustomerSession.id.in_(session_ids))).rowcount
        self.db.commit()
        return deleted
