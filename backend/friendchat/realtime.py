"""
Live queries over the store.

Subscribers register for a ``Resource`` and receive the full current snapshot
of it: once when they subscribe and again every time a writer publishes a
change to it. Snapshots are tuples of frozen pydantic models, so a subscriber
can keep one around without it changing underneath.
"""

from collections import defaultdict
from typing import Awaitable, Callable, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import friend_requests, friends, messages
from .database import SessionLocal
from .errors import TransportError
from .logs import get_logger

logger = get_logger(__name__)

OnNext = Callable[[tuple], Awaitable[None]]
OnError = Callable[[TransportError], Awaitable[None]]


class Resource(NamedTuple):
    kind: str  # messages / friends / requests
    key: str


def chat_messages(chat_id: str) -> Resource:
    return Resource("messages", chat_id)


def friend_list(uid: str) -> Resource:
    return Resource("friends", uid)


def incoming_requests(uid: str) -> Resource:
    return Resource("requests", uid)


LOADERS = {
    "messages": messages.snapshot,
    "friends": friends.list_friends,
    "requests": friend_requests.list_incoming,
}


class Subscription:
    """Cancellable token returned by ``Hub.subscribe``."""

    def __init__(self, hub: "Hub", resource: Resource, on_next: OnNext, on_error: Optional[OnError]):
        self.hub = hub
        self.resource = resource
        self.on_next = on_next
        self.on_error = on_error
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.hub._detach(self)

    async def deliver(self, snapshot: tuple) -> None:
        # pushes that race a cancel are dropped, never handed to a stale listener
        if self.active:
            await self.on_next(snapshot)

    async def fail(self, exc: TransportError) -> None:
        if self.active and self.on_error is not None:
            await self.on_error(exc)


class Hub:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory
        self._subscriptions: dict[Resource, list[Subscription]] = defaultdict(list)

    def load(self, resource: Resource) -> tuple:
        db = self.session_factory()
        try:
            return LOADERS[resource.kind](db, resource.key)
        except SQLAlchemyError as exc:
            raise TransportError("Connection failed.", code="Transport") from exc
        finally:
            db.close()

    async def subscribe(
        self,
        resource: Resource,
        on_next: OnNext,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        sub = Subscription(self, resource, on_next, on_error)
        self._subscriptions[resource].append(sub)
        await self._push(resource, [sub])
        return sub

    async def publish(self, *resources: Resource) -> None:
        for resource in dict.fromkeys(resources):
            subs = list(self._subscriptions.get(resource, ()))
            if subs:
                await self._push(resource, subs)

    async def _push(self, resource: Resource, subs: list[Subscription]) -> None:
        try:
            snapshot = self.load(resource)
        except TransportError as exc:
            logger.warning("subscription.failed", kind=resource.kind, key=resource.key, error=str(exc.__cause__))
            for sub in subs:
                await sub.fail(exc)
            return
        for sub in subs:
            await sub.deliver(snapshot)

    def subscriber_count(self, resource: Resource) -> int:
        return len(self._subscriptions.get(resource, ()))

    def _detach(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.resource)
        if not subs:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.resource, None)


hub = Hub()
