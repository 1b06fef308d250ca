"""
Tests for the platform adapters against mocked provider APIs.
"""
import json
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import httpx
import pytest
from googleapiclient.errors import HttpError

from app.worker.platforms import build_adapters, configured_platforms
from app.worker.platforms.base import (
    AccountCredentials,
    ErrorCategory,
    ErrorCode,
    MediaAsset,
    MediaHandle,
    NormalizedContent,
    Platform,
    ProfileRef,
    classify_status,
)
from app.worker.platforms.facebook import FacebookAdapter
from app.worker.platforms.instagram import InstagramAdapter
from app.worker.platforms.linkedin import LinkedInAdapter
from app.worker.platforms.twitter import TwitterAdapter, pkce_pair, validate_poll
from app.worker.platforms.youtube import YouTubeAdapter, parse_duration


class Recorder:
    """MockTransport handler that records requests and replays queued responses."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        return response(request) if callable(response) else response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.fixture
def app_settings(settings):
    return settings.model_copy(update={
        "twitter_client_id": "client-id",
        "twitter_client_secret": "client-secret",
        "facebook_app_id": "fb-app",
        "facebook_app_secret": "fb-secret",
        "linkedin_client_id": "li-id",
        "linkedin_client_secret": "li-secret",
    })


CREDENTIALS = AccountCredentials(access_token="user-token", account_id="12345")


class TestSharedHelpers:
    """Status classification and the adapter registry."""

    def test_classify_status(self):
        assert classify_status(429) == ErrorCategory.RATE_LIMITED
        assert classify_status(503) == ErrorCategory.TRANSIENT
        assert classify_status(None) == ErrorCategory.TRANSIENT
        assert classify_status(401) == ErrorCategory.AUTHENTICATION
        assert classify_status(400) == ErrorCategory.REJECTED

    def test_registry_covers_every_platform(self, settings):
        adapters = build_adapters(settings)
        assert set(adapters) == set(Platform)
        assert configured_platforms(adapters) == {platform.value: False for platform in Platform}

    def test_parse_duration(self):
        assert parse_duration("PT1M30S") == 90
        assert parse_duration("PT2H") == 7200
        assert parse_duration("P1DT1S") == 86401
        assert parse_duration("garbage") is None

    def test_pkce_pair(self):
        verifier, challenge = pkce_pair()
        assert 43 <= len(verifier) <= 128
        assert "=" not in challenge


class TestTwitterAdapter:
    """Tweets, threads, polls and chunked uploads."""

    @pytest.mark.asyncio
    async def test_tweet(self, app_settings):
        recorder = Recorder(httpx.Response(201, json={"data": {"id": "t1", "text": "hi"}}))
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "tweet", NormalizedContent(text="hi"), [])

        assert result.success is True
        assert result.external_id == "t1"
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer user-token"
        assert json.loads(request.content) == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_thread_chains_replies(self, app_settings):
        recorder = Recorder(
            httpx.Response(201, json={"data": {"id": "t1"}}),
            httpx.Response(201, json={"data": {"id": "t2"}}),
            httpx.Response(201, json={"data": {"id": "t3"}}),
        )
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)
        adapter.thread_delay = 0
        content = NormalizedContent(text="first", options={"thread": ["first", "second", "third"]})
        media = [MediaHandle("m1", "image")]

        result = await adapter.publish(CREDENTIALS, "thread", content, media)

        assert result.success is True
        assert result.external_id == "t1"
        bodies = [json.loads(request.content) for request in recorder.requests]
        assert bodies[0] == {"text": "first", "media": {"media_ids": ["m1"]}}
        assert bodies[1]["reply"] == {"in_reply_to_tweet_id": "t1"}
        assert bodies[2]["reply"] == {"in_reply_to_tweet_id": "t2"}
        assert [tweet["id"] for tweet in result.raw["tweets"]] == ["t1", "t2", "t3"]

    @pytest.mark.asyncio
    async def test_thread_partial_failure_is_not_retryable(self, app_settings):
        recorder = Recorder(
            httpx.Response(201, json={"data": {"id": "t1"}}),
            httpx.Response(503, json={"title": "Service Unavailable"}),
        )
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)
        adapter.thread_delay = 0
        content = NormalizedContent(text="a", options={"thread": ["a", "b", "c"]})

        result = await adapter.publish(CREDENTIALS, "thread", content, [])

        assert result.success is False
        assert result.retryable is False
        assert "1 of 3" in result.error

    @pytest.mark.asyncio
    async def test_poll(self, app_settings):
        recorder = Recorder(httpx.Response(201, json={"data": {"id": "p1"}}))
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)
        content = NormalizedContent(text="Which?", options={"poll": {"options": ["A", "B"], "duration_minutes": 60}})

        result = await adapter.publish(CREDENTIALS, "poll", content, [])

        assert result.success is True
        assert json.loads(recorder.requests[0].content)["poll"] == {"options": ["A", "B"], "duration_minutes": 60}

    @pytest.mark.asyncio
    async def test_invalid_poll_makes_no_request(self, app_settings):
        recorder = Recorder()
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)
        content = NormalizedContent(text="Which?", options={"poll": {"options": ["only one"]}})

        result = await adapter.publish(CREDENTIALS, "poll", content, [])

        assert result.error_code == ErrorCode.INVALID_CONTENT
        assert recorder.requests == []

    def test_validate_poll(self):
        assert validate_poll({"options": ["a", "b"]}) is None
        assert validate_poll({"options": ["a", "b", "c", "d", "e"]}) is not None
        assert validate_poll({"options": ["a", "x" * 26]}) is not None
        assert validate_poll({"options": ["a", "b"], "duration_minutes": 1}) is not None

    @pytest.mark.asyncio
    async def test_chunked_video_upload(self, app_settings):
        commands = []

        def upload(request):
            body = request.content
            for command in ("FINALIZE", "APPEND", "INIT"):
                if command.encode() in body:
                    commands.append(command)
                    break
            if commands[-1] == "FINALIZE":
                return httpx.Response(200, json={"media_id_string": "v1", "processing_info": {"state": "succeeded"}})
            if commands[-1] == "APPEND":
                return httpx.Response(204)
            return httpx.Response(202, json={"media_id_string": "v1"})

        recorder = Recorder(upload, upload, upload)
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)
        asset = MediaAsset(data=b"v" * 1024, mime_type="video/mp4", filename="clip.mp4")

        result = await adapter.upload_media(CREDENTIALS, asset)

        assert result.success is True
        assert result.media_id == "v1"
        assert commands == ["INIT", "APPEND", "FINALIZE"]

    @pytest.mark.asyncio
    async def test_unauthorized_requires_reconnection(self, app_settings):
        recorder = Recorder(httpx.Response(401, json={"title": "Unauthorized", "detail": "Unauthorized"}))
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "tweet", NormalizedContent(text="hi"), [])

        assert result.category == ErrorCategory.AUTHENTICATION
        assert result.requires_reconnection is True

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, app_settings):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = TwitterAdapter(app_settings, transport=httpx.MockTransport(boom))

        result = await adapter.publish(CREDENTIALS, "tweet", NormalizedContent(text="hi"), [])

        assert result.error_code == ErrorCode.NETWORK_ERROR
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_unconfigured_lookup_makes_no_request(self, settings):
        recorder = Recorder()
        adapter = TwitterAdapter(settings, transport=recorder.transport)

        result = await adapter.get_profile(ProfileRef(Platform.TWITTER, "someone"))

        assert result.error_code == ErrorCode.NOT_CONFIGURED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_profile_lookup(self, app_settings):
        recorder = Recorder(httpx.Response(200, json={"data": {
            "id": "42",
            "username": "acme",
            "name": "Acme",
            "public_metrics": {"followers_count": 1200, "following_count": 10, "tweet_count": 300},
        }}))
        adapter = TwitterAdapter(app_settings, transport=recorder.transport)

        result = await adapter.get_profile(ProfileRef(Platform.TWITTER, "acme"), CREDENTIALS)

        assert result.profile.followers == 1200
        assert recorder.requests[0].url.path == "/2/users/by/username/acme"


class TestInstagramAdapter:
    """Container publishing on business accounts."""

    @pytest.mark.asyncio
    async def test_basic_display_account_rejected(self, app_settings):
        recorder = Recorder()
        adapter = InstagramAdapter(app_settings, transport=recorder.transport)
        credentials = AccountCredentials(access_token="t", account_id="1", extra={"is_basic_display": True})

        result = await adapter.publish(
            credentials, "post", NormalizedContent(text="hi"), [MediaHandle(None, "image", url="https://x/y.jpg")]
        )

        assert result.success is False
        assert result.requires_reconnection is True
        assert "Business or Creator" in result.error
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_image_post(self, app_settings):
        recorder = Recorder(
            httpx.Response(200, json={"id": "container-1"}),
            httpx.Response(200, json={"id": "ig-media-1"}),
        )
        adapter = InstagramAdapter(app_settings, transport=recorder.transport)
        handle = MediaHandle(None, "image", "image/jpeg", "https://cdn.example.com/a.jpg")

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="caption"), [handle])

        assert result.success is True
        assert result.external_id == "ig-media-1"
        container, published = recorder.requests
        assert container.url.path == "/v19.0/12345/media"
        assert form(container)["image_url"] == "https://cdn.example.com/a.jpg"
        assert form(container)["caption"] == "caption"
        assert form(published)["creation_id"] == "container-1"

    @pytest.mark.asyncio
    async def test_reel_needs_video(self, app_settings):
        adapter = InstagramAdapter(app_settings, transport=Recorder().transport)
        handle = MediaHandle(None, "image", "image/jpeg", "https://cdn.example.com/a.jpg")

        result = await adapter.publish(CREDENTIALS, "reel", NormalizedContent(text="c"), [handle])

        assert result.error_code == ErrorCode.INVALID_CONTENT

    @pytest.mark.asyncio
    async def test_staging_needs_public_url(self, app_settings):
        adapter = InstagramAdapter(app_settings)
        asset = MediaAsset(data=b"x", mime_type="image/jpeg", filename="a.jpg", public_url=None)

        result = await adapter.upload_media(CREDENTIALS, asset)

        assert result.success is False


class TestFacebookAdapter:
    """Page resolution and photo fallbacks."""

    @pytest.mark.asyncio
    async def test_posts_to_connected_page(self, app_settings):
        recorder = Recorder(
            httpx.Response(200, json={"data": [
                {"id": "111", "name": "Other", "access_token": "other-token"},
                {"id": "12345", "name": "Mine", "access_token": "page-token"},
            ]}),
            httpx.Response(200, json={"id": "12345_9"}),
        )
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="hello"), [])

        assert result.success is True
        assert result.external_id == "12345_9"
        feed = recorder.requests[1]
        assert feed.url.path == "/v19.0/12345/feed"
        assert form(feed) == {"message": "hello", "access_token": "page-token"}

    @pytest.mark.asyncio
    async def test_falls_back_to_first_page(self, app_settings):
        recorder = Recorder(
            httpx.Response(200, json={"data": [{"id": "777", "access_token": "first-token"}]}),
            httpx.Response(200, json={"id": "777_1"}),
        )
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="hello"), [])

        assert result.success is True
        assert recorder.requests[1].url.path == "/v19.0/777/feed"

    @pytest.mark.asyncio
    async def test_no_pages(self, app_settings):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="hello"), [])

        assert result.error_code == ErrorCode.ACCOUNT_NOT_CONNECTED
        assert result.requires_reconnection is True

    @pytest.mark.asyncio
    async def test_rejected_photo_url_uploads_bytes(self, app_settings):
        recorder = Recorder(
            httpx.Response(200, json={"data": [{"id": "12345", "access_token": "page-token"}]}),
            httpx.Response(400, json={"error": {"code": 324, "message": "Missing or invalid image file"}}),
            httpx.Response(200, json={"id": "photo-1", "post_id": "12345_2"}),
        )
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)
        handle = MediaHandle(None, "image", "image/jpeg", "https://cdn.example.com/a.jpg", data=b"jpeg-bytes")

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="pic"), [handle])

        assert result.success is True
        assert result.external_id == "12345_2"
        assert b'name="source"' in recorder.requests[2].content

    @pytest.mark.asyncio
    async def test_graph_rate_limit_code(self, app_settings):
        recorder = Recorder(
            httpx.Response(200, json={"data": [{"id": "12345", "access_token": "page-token"}]}),
            httpx.Response(400, json={"error": {"code": 4, "message": "Application request limit reached"}}),
        )
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="hello"), [])

        assert result.category == ErrorCategory.RATE_LIMITED
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_token_exchange(self, app_settings):
        recorder = Recorder(httpx.Response(200, json={"access_token": "long-lived", "expires_in": 5184000}))
        adapter = FacebookAdapter(app_settings, transport=recorder.transport)

        result = await adapter.refresh_token("short-lived")

        assert result.access_token == "long-lived"
        assert recorder.requests[0].url.params["grant_type"] == "fb_exchange_token"


class TestLinkedInAdapter:
    """UGC share bodies."""

    @pytest.mark.asyncio
    async def test_text_share(self, app_settings):
        recorder = Recorder(httpx.Response(201, headers={"x-restli-id": "urn:li:share:1"}, json={}))
        adapter = LinkedInAdapter(app_settings, transport=recorder.transport)

        result = await adapter.publish(CREDENTIALS, "post", NormalizedContent(text="update"), [])

        assert result.external_id == "urn:li:share:1"
        body = json.loads(recorder.requests[0].content)
        assert body["author"] == "urn:li:person:12345"
        share = body["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["shareMediaCategory"] == "NONE"
        assert share["shareCommentary"] == {"text": "update"}

    @pytest.mark.asyncio
    async def test_missing_member_id(self, app_settings):
        adapter = LinkedInAdapter(app_settings, transport=Recorder().transport)

        result = await adapter.publish(AccountCredentials(access_token="t"), "post", NormalizedContent(text="x"), [])

        assert result.error_code == ErrorCode.ACCOUNT_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_member_profiles_unsupported(self, app_settings):
        adapter = LinkedInAdapter(app_settings)

        result = await adapter.get_profile(ProfileRef(Platform.LINKEDIN, "jane", kind="personal"))

        assert result.category == ErrorCategory.UNSUPPORTED


class TestYouTubeAdapter:
    """Publishing through a mocked google client."""

    @pytest.mark.asyncio
    async def test_live_unsupported(self, settings):
        adapter = YouTubeAdapter(settings)

        result = await adapter.publish(CREDENTIALS, "live", NormalizedContent(text="x"), [])

        assert result.error_code == ErrorCode.UNSUPPORTED_FEATURE

    @pytest.mark.asyncio
    async def test_video_required(self, settings):
        adapter = YouTubeAdapter(settings)

        result = await adapter.publish(CREDENTIALS, "video", NormalizedContent(text="x"), [])

        assert result.error_code == ErrorCode.MEDIA_REQUIRED

    @pytest.fixture
    def youtube(self, monkeypatch, settings):
        service = MagicMock()
        service.videos.return_value.update.return_value.execute.return_value = {"id": "vid-1"}
        adapter = YouTubeAdapter(settings)
        monkeypatch.setattr(adapter, "_service", lambda credentials=None: service)
        return adapter, service

    @pytest.mark.asyncio
    async def test_publish_sets_thumbnail(self, youtube):
        adapter, service = youtube
        thumbnail = MediaAsset(data=b"\xff\xd8thumb", mime_type="image/jpeg", filename="cover.jpg")
        video = MediaHandle("vid-1", "video", "video/mp4", thumbnail=thumbnail)

        result = await adapter.publish(CREDENTIALS, "video", NormalizedContent(text="Launch day"), [video])

        assert result.success is True
        assert result.raw["thumbnail_set"] is True
        assert service.thumbnails.return_value.set.call_args.kwargs["videoId"] == "vid-1"

    @pytest.mark.asyncio
    async def test_rejected_thumbnail_keeps_video(self, youtube):
        adapter, service = youtube
        service.thumbnails.return_value.set.return_value.execute.side_effect = HttpError(
            MagicMock(status=403, reason="Forbidden"),
            b'{"error": {"message": "Custom thumbnails are not enabled for this channel"}}',
        )
        thumbnail = MediaAsset(data=b"\xff\xd8thumb", mime_type="image/jpeg", filename="cover.jpg")
        video = MediaHandle("vid-1", "video", "video/mp4", thumbnail=thumbnail)

        result = await adapter.publish(CREDENTIALS, "video", NormalizedContent(text="Launch day"), [video])

        assert result.success is True
        assert result.external_id == "vid-1"
        assert result.raw["thumbnail_set"] is False

    @pytest.mark.asyncio
    async def test_no_thumbnail_no_call(self, youtube):
        adapter, service = youtube

        result = await adapter.publish(CREDENTIALS, "video", NormalizedContent(text="x"), [MediaHandle("vid-1", "video")])

        assert result.success is True
        assert "thumbnail_set" not in result.raw
        service.thumbnails.assert_not_called()
