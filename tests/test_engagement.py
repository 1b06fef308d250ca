"""
Tests for engagement sync on the user's own accounts.
"""
import pytest

from app.main import app
from app.routes.engagement import get_engagement_sync
from app.worker.engagement_sync import EngagementSync
from app.worker.platforms.base import (
    ContentItem,
    ContentResult,
    EngagementMetrics,
    ErrorCode,
    Platform,
    ProfileResult,
)


@pytest.fixture
def sync(db, fake_adapters, settings):
    return EngagementSync(db, adapters=fake_adapters, settings=settings)


class TestEngagementSync:
    """Per-platform and combined sync."""

    @pytest.mark.asyncio
    async def test_not_connected(self, sync, test_user):
        result = await sync.sync_platform(test_user, Platform.TWITTER)

        assert result["success"] is False
        assert result["error_code"] == ErrorCode.ACCOUNT_NOT_CONNECTED
        assert result["requires_reconnection"] is True

    @pytest.mark.asyncio
    async def test_updates_published_posts(self, sync, test_user, connect_account, make_post, fake_adapters, db):
        connect_account("twitter")
        post = make_post(status="published", platform_post_id="tw-1")
        fake_adapters[Platform.TWITTER].get_content.return_value = ContentResult(success=True, items=[
            ContentItem(id="tw-1", metrics=EngagementMetrics(likes=10, comments=2, shares=1, views=300)),
            ContentItem(id="tw-2", metrics=EngagementMetrics(likes=5)),
        ])

        result = await sync.sync_platform(test_user, Platform.TWITTER)

        assert result["success"] is True
        assert result["posts_synced"] == 1
        assert result["metrics"]["total_likes"] == 15
        db.refresh(post)
        assert post.analytics["likes"] == 10
        assert post.analytics["engagement"] == 13
        assert "synced_at" in post.analytics

    @pytest.mark.asyncio
    async def test_own_profile_lookup(self, sync, test_user, connect_account, fake_adapters):
        connect_account("facebook", account_id="page-9")

        await sync.sync_platform(test_user, Platform.FACEBOOK)

        ref, credentials = fake_adapters[Platform.FACEBOOK].get_profile.await_args.args
        assert ref.is_self is True
        assert credentials.access_token == "facebook-token"
        assert credentials.account_id == "page-9"
        content_ref = fake_adapters[Platform.FACEBOOK].get_content.await_args.args[0]
        assert content_ref.resolved_id == "profile-1"

    @pytest.mark.asyncio
    async def test_profile_failure(self, sync, test_user, connect_account, fake_adapters):
        connect_account("instagram")
        fake_adapters[Platform.INSTAGRAM].get_profile.return_value = ProfileResult.fail(
            "Invalid OAuth access token", ErrorCode.TOKEN_INVALID, requires_reconnection=True
        )

        result = await sync.sync_platform(test_user, Platform.INSTAGRAM)

        assert result["success"] is False
        assert result["requires_reconnection"] is True

    @pytest.mark.asyncio
    async def test_sync_all_totals(self, sync, test_user, connect_account, fake_adapters, db):
        connect_account("twitter")
        connect_account("linkedin")
        fake_adapters[Platform.TWITTER].get_content.return_value = ContentResult(success=True, items=[
            ContentItem(id="a", metrics=EngagementMetrics(likes=3, views=10)),
        ])
        fake_adapters[Platform.LINKEDIN].get_content.return_value = ContentResult.unsupported("LinkedIn post listings")
        db.refresh(test_user)

        result = await sync.sync_all(test_user)

        assert sorted(result["connected_platforms"]) == ["linkedin", "twitter"]
        assert result["totals"]["likes"] == 3
        assert result["totals"]["views"] == 10
        assert result["totals"]["posts"] == 1
        linkedin = next(entry for entry in result["platforms"] if entry["platform"] == "linkedin")
        assert linkedin["success"] is True
        assert linkedin["warnings"]


class TestEngagementRoutes:
    """HTTP surface for engagement."""

    @pytest.fixture(autouse=True)
    def override_sync(self, sync):
        app.dependency_overrides[get_engagement_sync] = lambda: sync

    def test_all(self, client, auth_headers, connect_account):
        connect_account("twitter")

        response = client.get("/api/engagement", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["connected_platforms"] == ["twitter"]

    def test_single_platform(self, client, auth_headers, connect_account):
        connect_account("youtube")

        response = client.get("/api/engagement/youtube", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["platform"] == "youtube"

    def test_not_connected(self, client, auth_headers):
        response = client.get("/api/engagement/linkedin", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "ACCOUNT_NOT_CONNECTED"

    def test_unknown_platform(self, client, auth_headers):
        response = client.get("/api/engagement/myspace", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "UNSUPPORTED_PLATFORM"
