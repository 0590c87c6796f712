from typing import Optional, Sequence

from sqlalchemy.orm import Session

from .channels import channel_id
from .models import Friend
from .schemas import FriendRead


def list_friends(db: Session, uid: str) -> tuple[FriendRead, ...]:
    rows = (
        db.query(Friend)
        .filter(Friend.user_uid == uid)
        .order_by(Friend.username.asc(), Friend.friend_uid.asc())
        .all()
    )
    return tuple(
        FriendRead(
            uid=f.friend_uid,
            username=f.username,
            chat_id=channel_id(uid, f.friend_uid),
            added_at=f.added_at,
        )
        for f in rows
    )


def is_friend(db: Session, uid: str, other_uid: str) -> bool:
    return db.get(Friend, (uid, other_uid)) is not None


def reselect(previous_uid: Optional[str], friends: Sequence[FriendRead]) -> Optional[FriendRead]:
    """Pick the active friend after the list changed.

    The current selection survives if it is still listed; otherwise fall back
    to the first friend, or nobody when the list is empty.
    """
    if previous_uid is not None:
        for friend in friends:
            if friend.uid == previous_uid:
                return friend
    return friends[0] if friends else None
