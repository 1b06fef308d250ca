"""
Pytest configuration and fixtures for Postflow API tests.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import get_password_hash, create_access_token
from app.clock import utcnow
from app.config import Settings
from app.database import Base, get_db
from app.limiter import limiter
from app.main import app
from app.models.post import Post
from app.models.social_account import SocialAccount
from app.models.user import User
from app.worker.platforms.base import (
    ContentResult,
    MediaAsset,
    MediaHandle,
    MediaUploadResult,
    Platform,
    ProfileData,
    ProfileResult,
    PublishResult,
    TokenRefreshResult,
    classify_status,
)
from app.worker.publisher import PublishOrchestrator
from app.worker.retry import RetryPolicy

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    global _test_session
    try:
        yield _test_session
    finally:
        pass


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    # Override the get_db dependency
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test user."""
    user = User(
        email="test@example.com",
        hashed_password=get_password_hash("testpassword123"),
        display_name="Test User",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def auth_token(test_user):
    """Get an auth token for the test user."""
    return create_access_token({"sub": str(test_user.id)})


@pytest.fixture(scope="function")
def auth_headers(auth_token):
    """Get auth headers for the test user."""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def settings(tmp_path):
    """Settings with fast timeouts and an isolated uploads directory."""
    return Settings(
        uploads_dir=str(tmp_path),
        provider_timeout_seconds=5,
        media_upload_timeout_seconds=5,
        competitor_batch_delay_seconds=0,
        competitor_fetch_timeout_seconds=5,
        ai_service_url=None,
    )


# ============================================================
# CONNECTED ACCOUNTS & POSTS
# ============================================================

@pytest.fixture
def connect_account(db, test_user):
    """Factory storing a SocialAccount for the test user."""
    def _connect(platform: str, expired: bool = False, refresh_token="refresh-token", **fields):
        account = SocialAccount(
            user_id=test_user.id,
            platform=platform,
            access_token=fields.pop("access_token", f"{platform}-token"),
            refresh_token=refresh_token,
            expires_at=utcnow() + (timedelta(hours=-1) if expired else timedelta(hours=1)),
            account_id=fields.pop("account_id", f"{platform}-account"),
            username=fields.pop("username", "postflow"),
            extra=fields.pop("extra", {}),
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account
    return _connect


@pytest.fixture
def make_post(db, test_user):
    """Factory storing a Post owned by the test user."""
    def _make(platform: str = "twitter", post_type: str = "tweet", **fields):
        post = Post(
            user_id=test_user.id,
            title=fields.pop("title", None),
            content=fields.pop("content", {"text": "Hello from the test suite"}),
            platform=platform,
            post_type=post_type,
            status=fields.pop("status", "draft"),
            media=fields.pop("media", []),
            platform_content=fields.pop("platform_content", {}),
            **fields,
        )
        db.add(post)
        db.commit()
        db.refresh(post)
        return post
    return _make


# ============================================================
# FAKE ADAPTERS
# ============================================================

class FakeAdapter:
    """Adapter double whose provider calls are AsyncMocks returning successes."""

    requires_media = False
    supports_thumbnails = False

    def __init__(self, platform: Platform):
        self.platform = platform
        self.requires_media = platform in (Platform.INSTAGRAM, Platform.YOUTUBE)
        self.supports_thumbnails = platform == Platform.YOUTUBE
        self.publish = AsyncMock(return_value=PublishResult(
            success=True,
            external_id=f"{platform.value}-post-1",
            url=f"https://example.com/{platform.value}/1",
        ))
        self.upload_media = AsyncMock(side_effect=self._uploaded)
        self.refresh_token = AsyncMock(return_value=TokenRefreshResult(
            success=True,
            access_token="fresh-token",
            refresh_token="fresh-refresh",
            expires_in=3600,
        ))
        self.get_profile = AsyncMock(return_value=ProfileResult(
            success=True,
            profile=ProfileData(platform=platform.value, id="profile-1", username="competitor", followers=1000),
        ))
        self.get_content = AsyncMock(return_value=ContentResult(success=True, items=[]))

    async def _uploaded(self, credentials, asset: MediaAsset) -> MediaUploadResult:
        media_id = f"media-{asset.filename}"
        return MediaUploadResult(
            success=True,
            media_id=media_id,
            handle=MediaHandle(media_id, asset.media_type, asset.mime_type, asset.public_url),
        )

    def is_configured(self) -> bool:
        return True

    def classify_failure(self, result):
        return result.category or classify_status(result.status_code)


@pytest.fixture
def fake_adapters():
    return {platform: FakeAdapter(platform) for platform in Platform}


@pytest.fixture
def media_loader():
    """MediaLoader double resolving every item to a small image."""
    loader = AsyncMock()
    loader.load.side_effect = _asset_for
    loader.load_thumbnail.side_effect = _thumbnail_for
    return loader


async def _asset_for(item):
    filename = item.get("filename") or "image.jpg"
    mime_type = item.get("mime_type") or ("video/mp4" if item.get("type") == "video" else "image/jpeg")
    return MediaAsset(
        data=b"\x89fake-bytes",
        mime_type=mime_type,
        filename=filename,
        public_url=item.get("url") or f"https://cdn.example.com/{filename}",
        declared_type=item.get("type"),
    )


async def _thumbnail_for(item):
    if not item.get("thumbnail"):
        return None
    return MediaAsset(data=b"\xff\xd8thumb", mime_type="image/jpeg", filename=item["thumbnail"], declared_type="image")


@pytest.fixture
def orchestrator(db, fake_adapters, media_loader, settings):
    return PublishOrchestrator(
        db,
        adapters=fake_adapters,
        media_loader=media_loader,
        retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0, max_backoff_seconds=0),
        settings=settings,
    )
