from fastapi.testclient import TestClient

from friendchat.auth   import get_password_hash, verify_password, create_access_token, decode_access_token
from friendchat.models import Credential, Directory, User


def signup(client, username="alice", email="alice@example.com", password="secret123"):
    return client.post(
        "/users/",
        json={"username": username, "email": email, "password": password},
    )


def login(client, username, password):
    return client.post(
        "/token",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"}
    )


def test_hash_roundtrip():
    hashed = get_password_hash("secret123")
    assert verify_password("secret123", hashed), "Hash/verify failed in test"
    assert not verify_password("wrongpw", hashed)


def test_token_carries_uid():
    token = create_access_token({"sub": "uid-alice"})
    assert decode_access_token(token) == "uid-alice"
    assert decode_access_token("not-a-token") is None


def test_register_normalizes_handle(client: TestClient, db_session):
    response = signup(client, username="  Alice ")
    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "alice"
    assert body["email"] == "alice@example.com"

    entry = db_session.get(Directory, "alice")
    assert entry.uid == body["uid"]
    assert db_session.get(User, body["uid"]).username == "alice"
    assert db_session.get(Credential, body["uid"]) is not None


def test_register_duplicate_handle(client: TestClient, db_session):
    first = signup(client, username="alice")
    assert first.status_code == 200

    second = signup(client, username="ALICE", email="other@example.com")
    assert second.status_code == 409
    assert second.json()["code"] == "HandleTaken"

    assert db_session.query(Directory).count() == 1
    assert db_session.query(User).count() == 1
    assert db_session.query(Credential).count() == 1
    assert db_session.get(Directory, "alice").email == "alice@example.com"


def test_register_missing_fields(client: TestClient):
    response = signup(client, email="   ")
    assert response.status_code == 400
    assert response.json()["detail"] == "Fill all required fields."

    response2 = signup(client, password="")
    assert response2.status_code == 400


def test_token_happy_path(client: TestClient):
    uid = signup(client).json()["uid"]

    # handle lookup applies the same normalization as registration
    response = login(client, " Alice", "secret123")
    assert response.status_code == 200
    body = response.json()
    assert body.get("token_type") == "bearer"
    assert decode_access_token(body["access_token"]) == uid

    me = client.get("/users/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "alice"


def test_token_bad_password(client: TestClient):
    signup(client)
    response = login(client, "alice", "wrongpw")
    assert response.status_code == 401


def test_token_unknown_user(client: TestClient):
    # No such user in DB
    response = login(client, "bob", "doesntmatter")
    assert response.status_code == 401


def test_token_missing_fields(client: TestClient):
    # Missing password
    response = client.post(
        "/token",
        data={"username": "alice"},
        headers={"Content-Type": "application/x-www-form-urlencoded"}
    )
    assert response.status_code == 422

    # Missing username
    response2 = client.post(
        "/token",
        data={"password": "whatever"},
        headers={"Content-Type": "application/x-www-form-urlencoded"}
    )
    assert response2.status_code == 422


def test_me_requires_token(client: TestClient):
    assert client.get("/users/me").status_code == 401
    bad = client.get("/users/me", headers={"Authorization": "Bearer garbage"})
    assert bad.status_code == 401
