"""
Tests for posts endpoints.
"""
from datetime import timedelta

import pytest

from app.auth import get_password_hash
from app.clock import isoformat, utcnow
from app.config import Settings
from app.models.post import Post
from app.models.user import User
from app.routes import posts as posts_routes
from app.routes.posts import get_orchestrator
from app.main import app
from app.worker.platforms.base import ErrorCategory, PublishResult, Platform


@pytest.fixture
def use_orchestrator(orchestrator):
    """Route publishing through the fake-adapter orchestrator."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return orchestrator


class TestPostsEndpoints:
    """Test posts CRUD endpoints."""

    def test_create_post(self, client, auth_headers):
        """Test creating a draft post."""
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={
                "title": "Launch",
                "content": {"caption": "Test post content"},
                "platform": "instagram",
                "postType": "reel",
                "tags": ["launch"],
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["content"] == {"caption": "Test post content"}
        assert data["platform"] == "instagram"
        assert data["post_type"] == "reel"
        assert data["status"] == "draft"

    def test_create_post_plain_text_content(self, client, auth_headers):
        """Test a plain string is stored as text content."""
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"content": "Just text", "platform": "twitter", "post_type": "tweet"},
        )
        assert response.status_code == 200
        assert response.json()["content"] == {"text": "Just text"}

    def test_create_post_invalid_type(self, client, auth_headers):
        """Test a post type the platform does not offer is rejected."""
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"content": "Hi", "platform": "linkedin", "post_type": "reel"},
        )
        assert response.status_code == 422

    def test_create_post_unknown_platform(self, client, auth_headers):
        """Test an unknown platform is rejected."""
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"content": "Hi", "platform": "myspace", "post_type": "post"},
        )
        assert response.status_code == 422

    def test_create_post_unauthenticated(self, client):
        """Test creating a post without auth fails."""
        response = client.post(
            "/api/posts",
            json={"content": "Test content", "platform": "twitter", "post_type": "tweet"},
        )
        assert response.status_code == 401

    def test_get_posts_empty(self, client, auth_headers):
        """Test getting posts when none exist."""
        response = client.get("/api/posts", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == []

    def test_get_posts_filtered(self, client, auth_headers, make_post):
        """Test filtering posts by platform and status."""
        make_post(platform="twitter", post_type="tweet")
        make_post(platform="facebook", post_type="post", status="failed")

        response = client.get("/api/posts?platform=facebook", headers=auth_headers)
        assert [p["platform"] for p in response.json()] == ["facebook"]

        response = client.get("/api/posts?status=draft", headers=auth_headers)
        assert [p["platform"] for p in response.json()] == ["twitter"]

    def test_get_post_by_id(self, client, auth_headers, make_post):
        """Test getting a specific post."""
        post = make_post(title="One")

        response = client.get(f"/api/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["title"] == "One"

    def test_get_post_not_found(self, client, auth_headers):
        """Test getting a non-existent post returns 404."""
        response = client.get("/api/posts/99999", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_update_post(self, client, auth_headers, make_post):
        """Test updating a post."""
        post = make_post()

        response = client.patch(
            f"/api/posts/{post.id}",
            headers=auth_headers,
            json={"content": {"text": "Updated content"}, "postType": "thread"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["content"] == {"text": "Updated content"}
        assert data["post_type"] == "thread"

    def test_update_post_invalid_type(self, client, auth_headers, make_post):
        """Test the new post type must suit the post's platform."""
        post = make_post()

        response = client.patch(f"/api/posts/{post.id}", headers=auth_headers, json={"post_type": "reel"})
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_update_published_post(self, client, auth_headers, make_post):
        """Test published posts are read-only."""
        post = make_post(status="published")

        response = client.patch(f"/api/posts/{post.id}", headers=auth_headers, json={"title": "New"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "POST_PUBLISHED"

    def test_delete_post(self, client, auth_headers, make_post):
        """Test deleting a post."""
        post = make_post()

        response = client.delete(f"/api/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 200

        response = client.get(f"/api/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 404

    def test_data_isolation(self, client, db):
        """Test that users can only see their own posts."""
        user1 = User(email="user1@example.com", hashed_password=get_password_hash("password1"), display_name="User 1")
        user2 = User(email="user2@example.com", hashed_password=get_password_hash("password2"), display_name="User 2")
        db.add_all([user1, user2])
        db.commit()

        post1 = Post(user_id=user1.id, content={"text": "User 1 post"}, platform="twitter", post_type="tweet")
        post2 = Post(user_id=user2.id, content={"text": "User 2 post"}, platform="twitter", post_type="tweet")
        db.add_all([post1, post2])
        db.commit()

        login = client.post("/api/auth/login/json", json={"email": "user1@example.com", "password": "password1"})
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        response = client.get("/api/posts", headers=headers)
        data = response.json()
        assert len(data) == 1
        assert data[0]["content"] == {"text": "User 1 post"}

        response = client.get(f"/api/posts/{post2.id}", headers=headers)
        assert response.status_code == 404


class TestValidateEndpoint:
    """Test the content validation endpoint."""

    def test_valid_tweet(self, client, auth_headers):
        response = client.post(
            "/api/posts/validate",
            headers=auth_headers,
            json={"platform": "twitter", "content": {"text": "short"}},
        )
        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": [], "warnings": []}

    def test_long_tweet(self, client, auth_headers):
        response = client.post(
            "/api/posts/validate",
            headers=auth_headers,
            json={"platform": "twitter", "content": "x" * 300},
        )
        assert response.json()["valid"] is False

    def test_youtube_needs_video(self, client, auth_headers):
        response = client.post(
            "/api/posts/validate",
            headers=auth_headers,
            json={"platform": "youtube", "title": "My video"},
        )
        data = response.json()
        assert data["valid"] is False
        assert "media" in data["errors"][0]


class TestPublishEndpoints:
    """Test publishing and scheduling endpoints."""

    def test_publish_existing_post(self, client, auth_headers, make_post, connect_account, use_orchestrator):
        """Test publishing a draft returns the platform result."""
        connect_account("twitter")
        post = make_post()

        response = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Post published to Twitter"
        assert data["platformResult"]["id"] == "twitter-post-1"
        assert data["post"]["status"] == "published"

    def test_publish_twice(self, client, auth_headers, make_post, connect_account, use_orchestrator):
        """Test publishing an already-published post is a no-op."""
        connect_account("twitter")
        post = make_post()

        client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
        response = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
        assert response.json()["alreadyPublished"] is True
        use_orchestrator.adapters[Platform.TWITTER].publish.assert_awaited_once()

    def test_publish_failure(self, client, auth_headers, make_post, connect_account, use_orchestrator):
        """Test a provider rejection surfaces as a 400 with the platform error."""
        connect_account("facebook")
        use_orchestrator.adapters[Platform.FACEBOOK].publish.return_value = PublishResult.fail(
            "(#200) Permissions error", category=ErrorCategory.AUTHENTICATION,
            status_code=403, requires_reconnection=True,
        )
        post = make_post(platform="facebook", post_type="post")

        response = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["platformError"] == "(#200) Permissions error"
        assert data["requiresReconnection"] is True
        assert data["post"]["status"] == "failed"

    def test_publish_not_connected(self, client, auth_headers, use_orchestrator):
        """Test create-and-publish without a connected account."""
        response = client.post(
            "/api/posts/publish",
            headers=auth_headers,
            json={"content": "Hello", "platform": "linkedin", "post_type": "post"},
        )
        assert response.status_code == 400
        assert response.json()["errorCode"] == "ACCOUNT_NOT_CONNECTED"

    def test_schedule_future(self, client, auth_headers, use_orchestrator):
        """Test scheduling for later stores the post as scheduled."""
        when = utcnow() + timedelta(days=1)
        response = client.post(
            "/api/posts/schedule",
            headers=auth_headers,
            json={
                "content": "Later",
                "platform": "twitter",
                "post_type": "tweet",
                "scheduledAt": isoformat(when),
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["publishedImmediately"] is False
        assert data["post"]["status"] == "scheduled"

    def test_schedule_past_publishes_now(self, client, auth_headers, make_post, connect_account, use_orchestrator):
        """Test a past schedule time publishes immediately."""
        connect_account("twitter")
        post = make_post()

        response = client.post(
            f"/api/posts/{post.id}/schedule",
            headers=auth_headers,
            json={"scheduled_at": isoformat(utcnow() - timedelta(minutes=10))},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["publishedImmediately"] is True
        assert data["post"]["status"] == "published"

    def test_publish_due_requires_key(self, client, monkeypatch, use_orchestrator):
        """Test the due-post trigger rejects a missing or wrong key."""
        monkeypatch.setattr(posts_routes, "get_settings", lambda: Settings(scheduler_api_key="cron-key"))

        assert client.post("/api/posts/publish-due").status_code == 403
        response = client.post("/api/posts/publish-due", headers={"X-Scheduler-Key": "wrong"})
        assert response.status_code == 403

    def test_publish_due(self, client, monkeypatch, make_post, connect_account, use_orchestrator):
        """Test the due-post trigger publishes posts whose time has come."""
        monkeypatch.setattr(posts_routes, "get_settings", lambda: Settings(scheduler_api_key="cron-key"))
        connect_account("twitter")
        make_post(status="scheduled", scheduled_at=utcnow() - timedelta(minutes=1))

        response = client.post("/api/posts/publish-due", headers={"X-Scheduler-Key": "cron-key"})
        assert response.status_code == 200
        assert response.json()["published"] == 1
