import pytest

from friendchat.channels import SEPARATOR, channel_id, members, request_id


@pytest.mark.parametrize("a, b", [
    ("uid-alice", "uid-bob"),
    ("zzz", "aaa"),
    ("B9", "a1"),
])
def test_channel_id_is_order_independent(a, b):
    assert channel_id(a, b) == channel_id(b, a)


def test_channel_id_sorts_and_joins():
    assert SEPARATOR == "__"
    assert channel_id("uid-bob", "uid-alice") == "uid-alice__uid-bob"


def test_request_id_keeps_direction():
    assert request_id("uid-alice", "uid-bob") == "uid-alice__uid-bob"
    assert request_id("uid-bob", "uid-alice") == "uid-bob__uid-alice"


def test_members_splits_channel_id():
    assert members(channel_id("uid-bob", "uid-alice")) == ("uid-alice", "uid-bob")
    with pytest.raises(ValueError):
        members("no-separator")
