from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cdn_console.main as main_module
from cdn_console.database import Base, get_db
from cdn_console.dependencies import get_storage
from cdn_console.main import app
from cdn_console.middleware.rate_limit import invite_rate_limiter, limiter
from cdn_console.models.cdn import Cdn
from cdn_console.models.user import UserRole
from cdn_console.schemas.invite import InviteCreate
from cdn_console.services.identity_service import create_user
from cdn_console.services.invite_service import create_invite
from cdn_console.services.storage_service import UploadPolicy


def utcnow():
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


class FakeStorage:
    """Records storage calls instead of talking to S3."""

    def __init__(self):
        self.policies = []
        self.download_urls = []

    async def issue_upload_policy(self, *, bucket, key, content_type, max_bytes, ttl):
        self.policies.append(
            {
                "bucket": bucket,
                "key": key,
                "content_type": content_type,
                "max_bytes": max_bytes,
                "ttl": ttl,
            }
        )
        return UploadPolicy(
            url=f"https://storage.test/{bucket}",
            fields={"key": key, "Content-Type": content_type, "policy": "cG9saWN5"},
        )

    async def issue_download_url(self, *, bucket, key, ttl):
        self.download_urls.append({"bucket": bucket, "key": key, "ttl": ttl})
        return f"https://storage.test/{bucket}/{key}?X-Amz-Signature=test"


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def client(db_session, fake_storage):
    """Test client on the test database with fake storage and admin rate limits off."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: fake_storage

    limiter.enabled = False
    invite_rate_limiter.reset()

    # Override the engine used by check_database_tables() so it checks the test database
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
    invite_rate_limiter.reset()
    main_module.engine = original_engine


@pytest.fixture
def cdn(db_session):
    cdn = Cdn(name="assets", bucket="assets-bucket", public_base="https://cdn.example.com")
    db_session.add(cdn)
    db_session.commit()
    db_session.refresh(cdn)
    return cdn


@pytest.fixture
def private_cdn(db_session):
    cdn = Cdn(name="private", bucket="private-bucket", public_base=None)
    db_session.add(cdn)
    db_session.commit()
    db_session.refresh(cdn)
    return cdn


@pytest.fixture
def admin_key(db_session):
    _, raw_key = create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    return raw_key


@pytest.fixture
def admin_headers(admin_key):
    return {"Authorization": f"Bearer {admin_key}"}


@pytest.fixture
def make_invite(db_session, cdn):
    """Factory for invites. Returns (invite, raw_token)."""

    def _make(**overrides):
        fields = {
            "label": "kit",
            "cdn_id": cdn.id,
            "allowed_mime_types": ["image/png"],
            "allowed_extensions": ["png"],
            "max_size_bytes": 1000,
            "max_uses": 1,
            "upload_prefix": "invites/{label}/",
        }
        fields.update(overrides)
        return create_invite(db_session, InviteCreate(**fields), created_by="admin-id")

    return _make
