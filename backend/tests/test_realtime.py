import asyncio

from sqlalchemy.exc import OperationalError

from friendchat          import friend_requests, messages
from friendchat.channels import channel_id
from friendchat.realtime import Hub, chat_messages, friend_list, incoming_requests


class Recorder:
    def __init__(self):
        self.snapshots = []
        self.errors = []

    async def on_next(self, snapshot):
        self.snapshots.append(snapshot)

    async def on_error(self, exc):
        self.errors.append(exc)


def befriend(db, register):
    alice, bob = register("alice"), register("bob")
    fr = friend_requests.send(db, alice, "alice", "bob")
    friend_requests.accept(db, fr.id, bob)
    return alice, bob


def test_subscribe_delivers_current_snapshot(db_session, register, session_factory):
    alice, bob = befriend(db_session, register)
    hub = Hub(session_factory)
    rec = Recorder()

    asyncio.run(hub.subscribe(friend_list(alice), rec.on_next))

    assert len(rec.snapshots) == 1
    assert [f.username for f in rec.snapshots[0]] == ["bob"]


def test_publish_pushes_full_snapshot(db_session, register, session_factory):
    alice, bob = befriend(db_session, register)
    chat = channel_id(alice, bob)
    hub = Hub(session_factory)
    rec = Recorder()

    async def scenario():
        await hub.subscribe(chat_messages(chat), rec.on_next)
        messages.post(db_session, chat, alice, "alice", "one")
        await hub.publish(chat_messages(chat))
        messages.post(db_session, chat, bob, "bob", "two")
        await hub.publish(chat_messages(chat), chat_messages(chat))

    asyncio.run(scenario())

    # initial + one per distinct publish, each a full snapshot rather than a diff
    assert [[m.text for m in snap] for snap in rec.snapshots] == [[], ["one"], ["one", "two"]]
    assert isinstance(rec.snapshots[-1], tuple)


def test_cancelled_subscription_receives_nothing(db_session, register, session_factory):
    alice, _ = befriend(db_session, register)
    hub = Hub(session_factory)
    rec = Recorder()

    async def scenario():
        sub = await hub.subscribe(incoming_requests(alice), rec.on_next)
        sub.cancel()
        sub.cancel()
        await hub.publish(incoming_requests(alice))
        await sub.deliver(("late push",))

    asyncio.run(scenario())

    assert len(rec.snapshots) == 1
    assert hub.subscriber_count(incoming_requests(alice)) == 0


class UnreachableStore:
    """Session stand-in whose every query fails like a dropped connection."""

    def query(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("store unreachable"))

    def close(self):
        pass


def test_store_failure_reaches_on_error():
    hub = Hub(UnreachableStore)
    rec = Recorder()

    asyncio.run(hub.subscribe(chat_messages("a__b"), rec.on_next, rec.on_error))

    assert rec.snapshots == []
    assert len(rec.errors) == 1
    assert rec.errors[0].code == "Transport"
