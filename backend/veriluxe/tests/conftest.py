"""
Pytest configuration and fixtures for testing.
"""
import os

# Settings are read at import time; provide the required values first.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("MINIO_ACCESS_KEY", "test-access-key")
os.environ.setdefault("MINIO_SECRET_KEY", "test-secret-key")

from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from veriluxe.api.deps import get_session_factory, get_storage, get_token_store
from veriluxe.core.database import Base, get_db
from veriluxe.main import app
from veriluxe.models import Analysis, AnalysisVisibility, User, UserRole
from veriluxe.services.auth_service import hash_password
from veriluxe.tests.pipeline_fakes import make_png

# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "TestPass123!"


class InMemoryTokenStore:
    """Dict-backed stand-in for the Redis token store."""

    def __init__(self):
        self.tokens = {}
        self.counter = 0

    def create_token(self, user_id, user_data):
        self.counter += 1
        token = f"token-{self.counter}"
        self.tokens[token] = {"user_id": str(user_id), **user_data}
        return token

    def get_token(self, token):
        return self.tokens.get(token)

    def delete_token(self, token):
        return self.tokens.pop(token, None) is not None

    def delete_user_tokens(self, user_id):
        doomed = [t for t, data in self.tokens.items() if data["user_id"] == str(user_id)]
        for token in doomed:
            del self.tokens[token]
        return len(doomed)


@pytest.fixture(scope="function")
def db_session():
    """Create a new database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Factory for sessions that write alongside db_session."""
    return TestingSessionLocal


@pytest.fixture
def token_store():
    return InMemoryTokenStore()


@pytest.fixture
def mock_storage():
    """StorageService double keeping uploaded objects in a dict."""
    storage = Mock()
    storage.objects = {}

    def upload_bytes(object_name, data, content_type="image/png", metadata=None):
        storage.objects[object_name] = data
        return {"object_name": object_name, "etag": "etag", "url": f"http://storage.test/{object_name}"}

    def download_bytes(object_name):
        return storage.objects[object_name]

    storage.upload_bytes.side_effect = upload_bytes
    storage.download_bytes.side_effect = download_bytes
    storage.file_exists.side_effect = lambda object_name: object_name in storage.objects
    storage.generate_object_path.side_effect = lambda user_id, filename: f"{user_id}/1700000000000.png"
    storage.analysis_object_path.side_effect = lambda analysis_id, name: f"{analysis_id}/{name}"
    return storage


@pytest.fixture(scope="function")
def client(db_session, token_store, mock_storage):
    """Create a test client with database, token store and storage overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_store] = lambda: token_store
    app.dependency_overrides[get_storage] = lambda: mock_storage
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal

    with patch("veriluxe.main.run_startup_tasks"):
        with TestClient(app) as test_client:
            yield test_client
    app.dependency_overrides.clear()


def _create_user(db_session, email, role=UserRole.USER, is_active=True):
    user = User(
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_user(db_session):
    """Create a regular test user in the database."""
    return _create_user(db_session, "test@example.com")


@pytest.fixture
def other_user(db_session):
    return _create_user(db_session, "other@example.com")


@pytest.fixture
def admin_user(db_session):
    return _create_user(db_session, "admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def inactive_user(db_session):
    """Create an inactive test user."""
    return _create_user(db_session, "inactive@example.com", is_active=False)


def _auth_headers(token_store, user):
    token = token_store.create_token(user.id, {"email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(token_store, test_user):
    return _auth_headers(token_store, test_user)


@pytest.fixture
def other_headers(token_store, other_user):
    return _auth_headers(token_store, other_user)


@pytest.fixture
def admin_headers(token_store, admin_user):
    return _auth_headers(token_store, admin_user)


@pytest.fixture
def source_image():
    return make_png()


@pytest.fixture
def test_analysis(db_session, test_user, mock_storage, source_image):
    """Analysis owned by test_user whose source image sits in mock storage."""
    image_path = f"{test_user.id}/1700000000000.png"
    mock_storage.objects[image_path] = source_image
    analysis = Analysis(
        user_id=test_user.id,
        image_path=image_path,
        image_url=f"http://storage.test/{image_path}",
        visibility=AnalysisVisibility.PRIVATE,
    )
    db_session.add(analysis)
    db_session.commit()
    db_session.refresh(analysis)
    return analysis
