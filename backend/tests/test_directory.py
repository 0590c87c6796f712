import pytest

from friendchat        import directory
from friendchat.batch  import Mutation
from friendchat.errors import ConflictError, NotFoundError, ValidationError
from friendchat.models import Directory, User


def test_normalize_handle():
    assert directory.normalize_handle("  Alice ") == "alice"
    assert directory.normalize_handle("") == ""
    assert directory.normalize_handle(None) == ""


def test_register_then_resolve(db_session):
    user = directory.register(db_session, " Bob", "uid-bob", "bob@example.com")
    assert user.username == "bob"
    assert user.created_at is not None

    assert directory.resolve(db_session, "BOB  ") == "uid-bob"
    assert directory.resolve(db_session, "carol") is None
    assert directory.resolve(db_session, "   ") is None
    assert directory.load_profile(db_session, "uid-bob").email == "bob@example.com"


def test_register_twice_is_rejected(db_session):
    directory.register(db_session, "bob", "uid-bob", "bob@example.com")

    with pytest.raises(ConflictError) as exc:
        directory.register(db_session, "Bob", "uid-other", "other@example.com")
    assert exc.value.code == "HandleTaken"

    assert db_session.query(Directory).count() == 1
    assert db_session.query(User).count() == 1
    assert db_session.get(Directory, "bob").uid == "uid-bob"


def test_register_requires_handle_and_email(db_session):
    with pytest.raises(ValidationError):
        directory.register(db_session, "  ", "uid-x", "x@example.com")
    with pytest.raises(ValidationError):
        directory.register(db_session, "x", "uid-x", "")
    assert db_session.query(Directory).count() == 0


def test_register_is_all_or_nothing(db_session):
    # a failing extra write takes the directory entry and profile down with it
    broken = Mutation("update", User, "does-not-exist", {"email": "nope"})

    with pytest.raises(NotFoundError):
        directory.register(db_session, "bob", "uid-bob", "bob@example.com", extra=[broken])

    assert db_session.query(Directory).count() == 0
    assert db_session.query(User).count() == 0
