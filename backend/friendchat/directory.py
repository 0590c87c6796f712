"""
Identity directory: unique handle -> account uid.

Handles are trimmed and lowercased before they are stored or looked up, so
"  Alice" and "alice" name the same account.
"""

from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .batch import SERVER_TIMESTAMP, Mutation, WriteBatch
from .errors import ConflictError, ValidationError
from .logs import get_logger
from .models import Directory, User

logger = get_logger(__name__)


def normalize_handle(raw: str) -> str:
    return (raw or "").strip().lower()


def register(
    db: Session,
    handle: str,
    uid: str,
    email: str,
    extra: Iterable[Mutation] = (),
) -> User:
    """Create the directory entry and the account profile in one batch.

    ``extra`` mutations (e.g. the credential row) ride in the same batch so
    that nothing is left behind when the handle turns out to be taken.
    """
    handle = normalize_handle(handle)
    email = (email or "").strip()
    if not handle or not email:
        raise ValidationError("Fill all required fields.", code="MissingFields")

    if db.get(Directory, handle) is not None:
        raise ConflictError("Username is already taken.", code="HandleTaken")

    batch = WriteBatch()
    batch.set(Directory, handle, uid=uid, email=email, username=handle)
    batch.set(User, uid, username=handle, email=email, created_at=SERVER_TIMESTAMP)
    batch.mutations.extend(extra)
    try:
        batch.commit(db)
    except IntegrityError:
        # lost a race with another registration for the same handle
        raise ConflictError("Username is already taken.", code="HandleTaken")

    logger.info("account.registered", uid=uid, handle=handle)
    return db.get(User, uid)


def lookup(db: Session, handle: str) -> Optional[Directory]:
    handle = normalize_handle(handle)
    if not handle:
        return None
    return db.get(Directory, handle)


def resolve(db: Session, handle: str) -> Optional[str]:
    entry = lookup(db, handle)
    return entry.uid if entry else None


def load_profile(db: Session, uid: str) -> Optional[User]:
    return db.get(User, uid)
