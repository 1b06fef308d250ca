"""
Tests for social account endpoints and the Twitter OAuth flow.
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.main import app
from app.models.social_account import SocialAccount
from app.routes.social_accounts import get_twitter_adapter
from app.worker.cache_store import PkceStateStore
from app.worker.platforms.twitter import TwitterAdapter


class TestSocialAccountEndpoints:
    """Connect, list and disconnect."""

    def test_connect_and_list(self, client, auth_headers):
        response = client.put(
            "/api/social-accounts/linkedin",
            headers=auth_headers,
            json={"access_token": "li-token", "expires_in": 3600, "account_id": "abc", "username": "jane"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["platform"] == "linkedin"
        assert data["is_expired"] is False
        assert "access_token" not in data

        listed = client.get("/api/social-accounts", headers=auth_headers).json()["data"]
        assert [account["platform"] for account in listed] == ["linkedin"]

    def test_reconnect_replaces_tokens(self, client, auth_headers, connect_account, db):
        account = connect_account("facebook", expired=True)
        account.requires_reconnection = True
        db.commit()

        response = client.put(
            "/api/social-accounts/facebook",
            headers=auth_headers,
            json={"access_token": "new-token", "account_id": "page-1"},
        )
        assert response.status_code == 200
        assert db.query(SocialAccount).count() == 1
        db.refresh(account)
        assert account.access_token == "new-token"
        assert account.requires_reconnection is False

    def test_unsupported_platform(self, client, auth_headers):
        response = client.put("/api/social-accounts/myspace", headers=auth_headers, json={"access_token": "t"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "UNSUPPORTED_PLATFORM"

    def test_empty_token_rejected(self, client, auth_headers):
        response = client.put("/api/social-accounts/twitter", headers=auth_headers, json={"access_token": ""})
        assert response.status_code == 422

    def test_disconnect(self, client, auth_headers, connect_account):
        connect_account("twitter")

        response = client.delete("/api/social-accounts/twitter", headers=auth_headers)
        assert response.status_code == 200
        response = client.delete("/api/social-accounts/twitter", headers=auth_headers)
        assert response.status_code == 404


class TestTwitterOAuth:
    """PKCE authorize and callback."""

    @pytest.fixture
    def twitter_adapter(self, settings):
        def handler(request):
            if request.url.path == "/2/oauth2/token":
                form = parse_qs(request.content.decode())
                assert form["grant_type"] == ["authorization_code"]
                assert form["code_verifier"] == ["verifier-1"]
                return httpx.Response(200, json={
                    "access_token": "tw-access",
                    "refresh_token": "tw-refresh",
                    "expires_in": 7200,
                    "scope": "tweet.read tweet.write",
                })
            return httpx.Response(200, json={"data": {"id": "99", "username": "acme", "name": "Acme"}})

        adapter = TwitterAdapter(
            settings.model_copy(update={"twitter_client_id": "client-id", "twitter_client_secret": "secret"}),
            transport=httpx.MockTransport(handler),
        )
        app.dependency_overrides[get_twitter_adapter] = lambda: adapter
        return adapter

    def test_authorize(self, client, auth_headers, twitter_adapter, db):
        response = client.get("/api/social-accounts/twitter/authorize", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]

        params = parse_qs(urlparse(data["authorize_url"]).query)
        assert params["state"] == [data["state"]]
        assert params["code_challenge_method"] == ["S256"]
        assert params["client_id"] == ["client-id"]
        assert PkceStateStore(db, 600).pop(data["state"])["platform"] == "twitter"

    def test_authorize_not_configured(self, client, auth_headers, settings):
        app.dependency_overrides[get_twitter_adapter] = lambda: TwitterAdapter(settings)

        response = client.get("/api/social-accounts/twitter/authorize", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "NOT_CONFIGURED"

    def test_callback_stores_account(self, client, auth_headers, twitter_adapter, test_user, db):
        PkceStateStore(db, 600).put("state-1", "verifier-1", test_user.id, "twitter")

        response = client.post(
            "/api/social-accounts/twitter/callback",
            headers=auth_headers,
            json={"code": "auth-code", "state": "state-1"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["username"] == "acme"

        account = db.query(SocialAccount).filter(SocialAccount.user_id == test_user.id).one()
        assert account.access_token == "tw-access"
        assert account.refresh_token == "tw-refresh"
        assert account.account_id == "99"
        assert account.extra == {"scopes": ["tweet.read", "tweet.write"]}

    def test_callback_state_is_single_use(self, client, auth_headers, twitter_adapter, test_user, db):
        PkceStateStore(db, 600).put("state-1", "verifier-1", test_user.id, "twitter")
        body = {"code": "auth-code", "state": "state-1"}

        client.post("/api/social-accounts/twitter/callback", headers=auth_headers, json=body)
        response = client.post("/api/social-accounts/twitter/callback", headers=auth_headers, json=body)
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_OAUTH_STATE"

    def test_callback_other_users_state(self, client, auth_headers, twitter_adapter, test_user, db):
        PkceStateStore(db, 600).put("state-1", "verifier-1", test_user.id + 1, "twitter")

        response = client.post(
            "/api/social-accounts/twitter/callback",
            headers=auth_headers,
            json={"code": "auth-code", "state": "state-1"},
        )
        assert response.status_code == 400
