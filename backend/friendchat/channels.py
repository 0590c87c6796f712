SEPARATOR = "__"


def channel_id(uid_a: str, uid_b: str) -> str:
    """Shared chat id for a pair; the same whichever side asks."""
    return SEPARATOR.join(sorted([uid_a, uid_b]))


def request_id(from_uid: str, to_uid: str) -> str:
    """One request id per ordered (sender, recipient) pair."""
    return f"{from_uid}{SEPARATOR}{to_uid}"


def members(chat_id: str) -> tuple[str, str]:
    uid_a, sep, uid_b = chat_id.partition(SEPARATOR)
    if not sep or not uid_a or not uid_b:
        raise ValueError(f"Not a channel id: {chat_id!r}")
    return uid_a, uid_b
