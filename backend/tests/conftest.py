import os

# keep the app's own engine in memory; tests use the engine below
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# 1) Import the app and the real get_db
from friendchat.main     import app
from friendchat.database import Base, get_db
from friendchat.realtime import hub
from friendchat          import directory

# 2) Build a *test* engine & session factory, one shared in-memory connection
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

# 3) Fresh schema for every test; the realtime hub reads the same store
@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(hub, "session_factory", TestingSessionLocal)
    yield
    hub._subscriptions.clear()
    Base.metadata.drop_all(bind=engine)

# 4) Provide the raw SQLAlchemy session to tests
@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# 5) Override FastAPI's get_db with a session on the test engine
@pytest.fixture()
def client():
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

# 6) Seed accounts straight through the directory: uid is "uid-<handle>"
@pytest.fixture()
def register(db_session):
    def _register(handle: str) -> str:
        name = directory.normalize_handle(handle)
        uid = f"uid-{name}"
        directory.register(db_session, handle, uid, f"{name}@example.com")
        return uid
    return _register

@pytest.fixture()
def session_factory():
    return TestingSessionLocal
