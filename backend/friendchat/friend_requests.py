"""
Friend request lifecycle.

A request moves from ``pending`` to exactly one of ``accepted`` or
``rejected``. Acceptance is the only place the friend graph and the chat
channels are written, and it always writes them together with the status
change in a single batch.
"""

from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import directory, friends
from .batch import SERVER_TIMESTAMP, PreconditionFailed, WriteBatch, server_now
from .channels import channel_id, request_id
from .errors import ConflictError, NotFoundError, ValidationError
from .logs import get_logger
from .models import Chat, Friend, FriendRequest
from .schemas import FriendRequestRead

logger = get_logger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"


def get(db: Session, req_id: str) -> Optional[FriendRequest]:
    return db.get(FriendRequest, req_id, populate_existing=True)


def send(db: Session, from_uid: str, from_handle: str, to_handle: str) -> FriendRequestRead:
    to_handle = directory.normalize_handle(to_handle)
    if not to_handle:
        raise ValidationError("Enter a username.", code="EmptyHandle")
    if to_handle == directory.normalize_handle(from_handle):
        raise ValidationError("You cannot add yourself.", code="SelfRequest")

    to_uid = directory.resolve(db, to_handle)
    if to_uid is None:
        raise NotFoundError("Username not found.", code="HandleNotFound")
    if to_uid == from_uid:
        raise ValidationError("You cannot add yourself.", code="SelfRequest")
    if friends.is_friend(db, from_uid, to_uid):
        raise ConflictError("User is already your friend.", code="AlreadyFriends")

    req_id = request_id(from_uid, to_uid)
    existing = get(db, req_id)
    if existing is not None:
        _check_resendable(existing)

    fields = dict(
        from_uid=from_uid,
        from_username=directory.normalize_handle(from_handle),
        to_uid=to_uid,
        to_username=to_handle,
        status=PENDING,
        created_at=server_now(),
        responded_at=None,
    )
    try:
        if existing is None:
            # insert on the deterministic key: a concurrent duplicate collides
            db.add(FriendRequest(id=req_id, **fields))
            db.commit()
        else:
            # only a rejected request may be reopened
            result = db.execute(
                update(FriendRequest)
                .where(FriendRequest.id == req_id, FriendRequest.status == REJECTED)
                .values(**fields)
            )
            if result.rowcount != 1:
                db.rollback()
                current = get(db, req_id)
                if current is not None:
                    _check_resendable(current)
                raise ConflictError("Friend request already sent.", code="AlreadyPending")
            db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Friend request already sent.", code="AlreadyPending")

    logger.info("friend_request.sent", request_id=req_id, reopened=existing is not None)
    return FriendRequestRead.model_validate(get(db, req_id))


def _check_resendable(existing: FriendRequest) -> None:
    if existing.status == PENDING:
        raise ConflictError("Friend request already sent.", code="AlreadyPending")
    if existing.status == ACCEPTED:
        raise ConflictError("User is already your friend.", code="AlreadyFriends")


def _addressed_to(db: Session, req_id: str, acting_uid: str) -> FriendRequest:
    fr = get(db, req_id)
    if fr is None or fr.to_uid != acting_uid:
        raise NotFoundError("No such friend request", code="RequestNotFound")
    return fr


def acceptance_batch(fr: FriendRequest) -> WriteBatch:
    """The four writes that turn a request into a friendship, as one unit.

    For a request that is already accepted the batch only fills in what is
    missing: the status and the first acceptance times stay as written.
    """
    first_time = fr.status != ACCEPTED
    chat_id = channel_id(fr.from_uid, fr.to_uid)
    batch = WriteBatch()
    if first_time:
        batch.update(
            FriendRequest,
            fr.id,
            only_if={"status": (PENDING,)},
            status=ACCEPTED,
            responded_at=SERVER_TIMESTAMP,
        )
    batch.create(Friend, (fr.from_uid, fr.to_uid), username=fr.to_username, added_at=SERVER_TIMESTAMP)
    batch.create(Friend, (fr.to_uid, fr.from_uid), username=fr.from_username, added_at=SERVER_TIMESTAMP)
    if first_time:
        batch.merge(Chat, chat_id, members=[fr.from_uid, fr.to_uid], updated_at=SERVER_TIMESTAMP)
    else:
        batch.create(Chat, chat_id, members=[fr.from_uid, fr.to_uid], updated_at=SERVER_TIMESTAMP)
    return batch


def accept(db: Session, req_id: str, acting_uid: str) -> FriendRequestRead:
    fr = _addressed_to(db, req_id, acting_uid)
    if fr.status == REJECTED:
        raise ConflictError("This request was already rejected.", code="InvalidTransition")

    # Re-accepting replays the batch, so a retry after a crash can only
    # complete the friendship, never half-apply it.
    try:
        acceptance_batch(fr).commit(db)
    except PreconditionFailed:
        # answered by another writer since we read it
        fr = get(db, req_id)
        if fr.status != ACCEPTED:
            raise ConflictError("This request was already rejected.", code="InvalidTransition")
        acceptance_batch(fr).commit(db)
    logger.info("friend_request.accepted", request_id=req_id, chat_id=channel_id(fr.from_uid, fr.to_uid))
    return FriendRequestRead.model_validate(get(db, req_id))


def reject(db: Session, req_id: str, acting_uid: str) -> FriendRequestRead:
    fr = _addressed_to(db, req_id, acting_uid)
    if fr.status == ACCEPTED:
        raise ConflictError("This request was already accepted.", code="InvalidTransition")

    try:
        WriteBatch().update(
            FriendRequest,
            req_id,
            only_if={"status": (PENDING, REJECTED)},
            status=REJECTED,
            responded_at=SERVER_TIMESTAMP,
        ).commit(db)
    except PreconditionFailed:
        raise ConflictError("This request was already accepted.", code="InvalidTransition")
    logger.info("friend_request.rejected", request_id=req_id)
    return FriendRequestRead.model_validate(get(db, req_id))


def list_incoming(db: Session, uid: str) -> tuple[FriendRequestRead, ...]:
    rows = (
        db.query(FriendRequest)
        .filter_by(to_uid=uid, status=PENDING)
        .order_by(FriendRequest.created_at.asc(), FriendRequest.id.asc())
        .all()
    )
    return tuple(FriendRequestRead.model_validate(r) for r in rows)
