import io

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from filevault.core.config import Settings, get_settings
from filevault.core.security import DatabaseSessionStore
from filevault.core.storage import LocalBlobStorage, get_storage
from filevault.main import app
from filevault.models import Base, User
from filevault.models.database import get_db
from filevault.services.files import IncomingFile


@pytest.fixture
def engine():
    """In-memory sqlite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        storage_dir=tmp_path / "uploads",
        max_upload_bytes=10 * 1024 * 1024,
    )


@pytest.fixture
def storage(settings):
    return LocalBlobStorage(settings.storage_dir)


@pytest.fixture
def users(db):
    u1 = User(username="u1", password="!")
    u2 = User(username="u2", password="!")
    db.add_all([u1, u2])
    db.commit()
    return u1, u2


@pytest.fixture
def client(session_factory, storage, settings):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(db, settings):
    """Open a session for a user and put its cookie on the client."""

    def _login(client: TestClient, user: User) -> str:
        token = DatabaseSessionStore(db, settings.session_ttl_seconds).open(user.id)
        client.cookies.set(settings.session_cookie_name, token)
        return token

    return _login


@pytest.fixture
def make_incoming():
    def _make(content: bytes, name: str = "hello.txt", content_type: str | None = "text/plain") -> IncomingFile:
        return IncomingFile(original_name=name, content_type=content_type, stream=io.BytesIO(content))

    return _make
