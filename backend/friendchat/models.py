from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from .database import Base

# One table per store collection. Timestamps are always filled in by the
# server at write time (see batch.server_now), never by clients.


class Directory(Base):
    """usernames/{handle}"""
    __tablename__ = "usernames"
    handle   = Column(String, primary_key=True)
    uid      = Column(String, nullable=False, index=True)
    email    = Column(String, nullable=False)
    username = Column(String, nullable=False)


class User(Base):
    """users/{uid}"""
    __tablename__ = "users"
    uid        = Column(String, primary_key=True)
    username   = Column(String, nullable=False, index=True)
    email      = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)


class Credential(Base):
    __tablename__ = "credentials"
    uid             = Column(String, primary_key=True)
    email           = Column(String, nullable=False)
    hashed_password = Column(String, nullable=False)


class Friend(Base):
    """users/{user_uid}/friends/{friend_uid}"""
    __tablename__ = "friends"
    user_uid   = Column(String, primary_key=True)
    friend_uid = Column(String, primary_key=True)
    username   = Column(String, nullable=False)
    added_at   = Column(DateTime, nullable=False)


class FriendRequest(Base):
    """friendRequests/{from_uid}__{to_uid}"""
    __tablename__ = "friend_requests"
    id            = Column(String, primary_key=True)
    from_uid      = Column(String, nullable=False)
    from_username = Column(String, nullable=False)
    to_uid        = Column(String, nullable=False, index=True)
    to_username   = Column(String, nullable=False)
    status        = Column(String, nullable=False, default="pending")  # pending / accepted / rejected
    created_at    = Column(DateTime, nullable=False)
    responded_at  = Column(DateTime, nullable=True)


class Chat(Base):
    """chats/{chat_id}"""
    __tablename__ = "chats"
    id         = Column(String, primary_key=True)
    members    = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Message(Base):
    """chats/{chat_id}/messages/{id}

    The autoincrement id doubles as arrival order for equal timestamps.
    """
    __tablename__ = "messages"
    id              = Column(Integer, primary_key=True, index=True)
    chat_id         = Column(String, nullable=False, index=True)
    author_uid      = Column(String, nullable=False)
    author_username = Column(String, nullable=False)
    text            = Column(Text, nullable=False)
    created_at      = Column(DateTime, nullable=False)
