import uuid
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expires_in(**delta) -> datetime:
    """Absolute expiry `delta` from now, e.g. expires_in(hours=24)."""
    return utcnow() + timedelta(**delta)


def new_id() -> str:
    return str(uuid.uuid4())
