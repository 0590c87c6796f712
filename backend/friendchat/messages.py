"""
Per-channel message stream.

Messages are append-only. The server stamps ``created_at`` when the row is
written, so both participants see the same order no matter how their local
clocks drift; rows with the same timestamp keep their arrival order.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .batch import server_now
from .errors import NotFoundError, ValidationError
from .models import Chat, Message
from .schemas import MessageRead

PENDING_LABEL = "sending..."


def post(db: Session, chat_id: str, author_uid: str, author_handle: str, text: str) -> MessageRead:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty.", code="EmptyText")
    if db.get(Chat, chat_id) is None:
        raise NotFoundError("No such chat", code="NoChannel")

    msg = Message(
        chat_id=chat_id,
        author_uid=author_uid,
        author_username=author_handle,
        text=text,
        created_at=server_now(),
    )
    db.add(msg)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(msg)
    return MessageRead.model_validate(msg)


def snapshot(db: Session, chat_id: str) -> tuple[MessageRead, ...]:
    rows = (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    return tuple(MessageRead.model_validate(m) for m in rows)


def order(messages: Iterable[MessageRead]) -> tuple[MessageRead, ...]:
    """Display order: stamped messages by time, then unstamped ones as they came.

    Python's sort is stable, so input order breaks every remaining tie.
    """
    return tuple(
        sorted(
            messages,
            key=lambda m: (m.created_at is None, m.created_at or datetime.min),
        )
    )


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return PENDING_LABEL
    return value.strftime("%H:%M")
