"""
Per-connection session state.

A ``ChatSession`` is created when an account signs in and torn down when it
signs out. It owns the live subscriptions for that account (friend list,
incoming requests, the active chat) and the local view state built from them.
"""

from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import directory, friend_requests, friends, messages, realtime
from .channels import channel_id
from .errors import USER_ERRORS, ChatError, TransportError
from .logs import get_logger
from .schemas import FriendRead, FriendRequestRead, MessageRead

logger = get_logger(__name__)

Emit = Callable[[str, object], Awaitable[None]]

SIGNED_OUT = "Please log in"
CONNECTED = "Connected"
LOAD_FAILED = "Failed to load messages."


class ChatSession:
    def __init__(self, uid: str, hub: realtime.Hub, emit: Optional[Emit] = None):
        self.uid = uid
        self.hub = hub
        self.emit = emit
        self.username = ""
        self.status = SIGNED_OUT
        self.error = ""
        self.friends: tuple[FriendRead, ...] = ()
        self.incoming: tuple[FriendRequestRead, ...] = ()
        self.messages: tuple[MessageRead, ...] = ()
        self.active_friend: Optional[FriendRead] = None
        self._pending: list[MessageRead] = []
        self._subscriptions: dict[str, realtime.Subscription] = {}
        # single use: once ended, late snapshots and subscriptions are dropped
        self._closed = False

    @property
    def chat_id(self) -> str:
        if self.active_friend is None:
            return ""
        return channel_id(self.uid, self.active_friend.uid)

    # --- lifecycle ---

    async def start(self) -> None:
        if self._closed:
            return
        profile = self._call(directory.load_profile, self.uid)
        self.username = profile.username if profile else ""

        if not await self._keep("friends", realtime.friend_list(self.uid), self._on_friends):
            return
        if not await self._keep("requests", realtime.incoming_requests(self.uid), self._on_requests):
            return
        if not self.active_friend:
            await self._set_status(CONNECTED)
        logger.info("session.started", uid=self.uid, handle=self.username)

    async def end(self) -> None:
        self._closed = True
        for sub in self._subscriptions.values():
            sub.cancel()
        self._subscriptions.clear()
        self.username = ""
        self.error = ""
        self.friends = ()
        self.incoming = ()
        self.messages = ()
        self._pending = []
        self.active_friend = None
        self.status = SIGNED_OUT
        logger.info("session.ended", uid=self.uid)

    # --- subscription callbacks ---

    async def _on_friends(self, snapshot: tuple[FriendRead, ...]) -> None:
        if self._closed:
            return
        self.friends = snapshot
        await self._emit("friends", [f.model_dump(mode="json") for f in snapshot])
        previous = self.active_friend.uid if self.active_friend else None
        await self._activate(friends.reselect(previous, snapshot))

    async def _on_requests(self, snapshot: tuple[FriendRequestRead, ...]) -> None:
        if self._closed:
            return
        self.incoming = snapshot
        await self._emit("friend_requests", [r.model_dump(mode="json") for r in snapshot])

    async def _on_messages(self, snapshot: tuple[MessageRead, ...]) -> None:
        if self._closed:
            return
        # full replace: the authoritative snapshot supersedes local echoes
        self._pending = []
        self.messages = snapshot
        await self._emit_messages()
        await self._set_status(CONNECTED)

    async def _on_messages_error(self, exc: TransportError) -> None:
        await self._set_status(LOAD_FAILED)

    # --- active chat ---

    async def select_friend(self, friend_uid: str) -> None:
        for friend in self.friends:
            if friend.uid == friend_uid:
                await self._activate(friend)
                return
        await self._fail_user(f"Not a friend: {friend_uid}")

    async def _activate(self, friend: Optional[FriendRead]) -> None:
        if self._closed:
            return
        current = self.active_friend.uid if self.active_friend else None
        target = friend.uid if friend else None
        self.active_friend = friend
        if current == target and (target is None or "messages" in self._subscriptions):
            return

        old = self._subscriptions.pop("messages", None)
        if old is not None:
            old.cancel()
        self.messages = ()
        self._pending = []

        if friend is None:
            await self._emit_messages()
            return
        await self._set_status(f"Chatting with @{friend.username}")
        await self._keep(
            "messages",
            realtime.chat_messages(self.chat_id),
            self._on_messages,
            self._on_messages_error,
        )

    # --- commands ---

    async def send_message(self, text: str) -> Optional[MessageRead]:
        text = (text or "").strip()
        if not self.username or not self.chat_id or not text:
            return None

        chat_id = self.chat_id
        echo = MessageRead(
            chat_id=chat_id,
            author_uid=self.uid,
            author_username=self.username,
            text=text,
        )
        self._pending.append(echo)
        await self._emit_messages()

        try:
            posted = self._call(messages.post, chat_id, self.uid, self.username, text)
        except ChatError as exc:
            if echo in self._pending:
                self._pending.remove(echo)
            await self._emit_messages()
            await self._fail(exc)
            return None
        await self.hub.publish(realtime.chat_messages(chat_id))
        return posted

    async def send_friend_request(self, to_handle: str) -> Optional[FriendRequestRead]:
        self.error = ""
        try:
            fr = self._call(friend_requests.send, self.uid, self.username, to_handle)
        except ChatError as exc:
            await self._fail(exc)
            return None
        await self.hub.publish(realtime.incoming_requests(fr.to_uid))
        return fr

    async def accept(self, req_id: str) -> Optional[FriendRequestRead]:
        return await self._respond(friend_requests.accept, req_id)

    async def reject(self, req_id: str) -> Optional[FriendRequestRead]:
        return await self._respond(friend_requests.reject, req_id)

    async def _respond(self, transition, req_id: str) -> Optional[FriendRequestRead]:
        self.error = ""
        try:
            fr = self._call(transition, req_id, self.uid)
        except ChatError as exc:
            await self._fail(exc)
            return None
        await self.hub.publish(*affected_by(fr))
        return fr

    # --- helpers ---

    async def _keep(self, name: str, resource: realtime.Resource, on_next, on_error=None) -> bool:
        """Subscribe under ``name``; False if the session ended meanwhile."""
        sub = await self.hub.subscribe(resource, on_next, on_error)
        if self._closed:
            sub.cancel()
            return False
        self._subscriptions[name] = sub
        return True

    @property
    def visible_messages(self) -> tuple[MessageRead, ...]:
        return messages.order(self.messages + tuple(self._pending))

    async def _emit_messages(self) -> None:
        await self._emit(
            "messages",
            [
                dict(m.model_dump(mode="json"), time=messages.format_time(m.created_at))
                for m in self.visible_messages
            ],
        )

    def _call(self, operation, *args):
        db = self.hub.session_factory()
        try:
            return operation(db, *args)
        except SQLAlchemyError as exc:
            raise TransportError("Connection failed.", code="Transport") from exc
        finally:
            db.close()

    async def _fail(self, exc: ChatError) -> None:
        if not isinstance(exc, USER_ERRORS):
            logger.error("session.command_failed", uid=self.uid, code=exc.code, error=exc.message)
        await self._fail_user(exc.message, exc.code)

    async def _fail_user(self, message: str, code: str = "Validation") -> None:
        self.error = message
        await self._emit("error", {"detail": message, "code": code})

    async def _set_status(self, status: str) -> None:
        if self._closed:
            return
        self.status = status
        await self._emit("status", status)

    async def _emit(self, event: str, payload) -> None:
        if self.emit is not None and not self._closed:
            await self.emit(event, payload)


def affected_by(fr: FriendRequestRead) -> list[realtime.Resource]:
    """Live queries a request transition can change."""
    resources = [realtime.incoming_requests(fr.to_uid)]
    if fr.status == friend_requests.ACCEPTED:
        resources += [realtime.friend_list(fr.from_uid), realtime.friend_list(fr.to_uid)]
    return resources
