from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Literal


class Snapshot(BaseModel):
    """Base for everything pushed to subscribers: read-only once built."""
    class Config:
        from_attributes = True
        frozen = True


# Registration payload
class UserCreate(BaseModel):
    username: str
    email: str
    password: str

# What we return when a user signs up or we fetch user info
class UserRead(Snapshot):
    uid: str
    username: str
    email: str

# Friend search result
class UserLookup(Snapshot):
    uid: str
    username: str

# JWT token response
class Token(BaseModel):
    access_token: str
    token_type: str


class FriendRead(Snapshot):
    uid: str
    username: str
    chat_id: str
    added_at: Optional[datetime] = None


class FriendRequestCreate(BaseModel):
    to_username: str

class FriendRequestRead(Snapshot):
    id:            str
    from_uid:      str
    from_username: str
    to_uid:        str
    to_username:   str
    status:        Literal["pending", "accepted", "rejected"]
    created_at:    datetime
    responded_at:  Optional[datetime] = None

class FriendRequestResponse(BaseModel):
    action: Literal["accept", "reject"]


# Payload for sending a message (REST or WS)
class MessageCreate(BaseModel):
    text: str

# What we return when reading messages (REST or WS).
# created_at is None only for a local echo the server has not stamped yet.
class MessageRead(Snapshot):
    id: Optional[int] = None
    chat_id: str
    author_uid: str
    author_username: str
    text: str
    created_at: Optional[datetime] = None
