"""
Twitter/X adapter: API v2 for tweets and lookups, v1.1 media upload endpoint.
"""

import asyncio
import base64
import hashlib
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from ...clock import isoformat, parse_timestamp, utcnow
from ...config import is_placeholder
from .base import (
    AccountCredentials,
    BaseAdapter,
    ContentItem,
    ContentResult,
    EngagementMetrics,
    ErrorCategory,
    ErrorCode,
    MediaAsset,
    MediaHandle,
    MediaUploadResult,
    NormalizedContent,
    Platform,
    ProfileData,
    ProfileRef,
    ProfileResult,
    PublishResult,
    TokenRefreshResult,
    dig,
    first_defined,
    tagged,
)

API_URL = "https://api.twitter.com/2"
UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"

SCOPES = ["tweet.read", "tweet.write", "users.read", "offline.access", "media.write"]
USER_FIELDS = "created_at,description,location,profile_image_url,public_metrics,url,verified"
TWEET_FIELDS = "created_at,public_metrics,attachments,referenced_tweets,entities"

MAX_TWEET_LENGTH = 280
MAX_TWEET_MEDIA = 4
MAX_THREAD_LENGTH = 25
CHUNK_SIZE = 5 * 1024 * 1024
SIMPLE_UPLOAD_LIMIT = 5 * 1024 * 1024

POLL_MIN_OPTIONS, POLL_MAX_OPTIONS = 2, 4
POLL_OPTION_MAX_LENGTH = 25
POLL_MIN_MINUTES, POLL_MAX_MINUTES = 5, 10080


def truncate(text: str, limit: int = MAX_TWEET_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit]


def pkce_pair() -> Tuple[str, str]:
    """(code_verifier, S256 code_challenge)"""
    verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def validate_poll(poll: Dict[str, Any]) -> Optional[str]:
    options = poll.get("options") or []
    if not POLL_MIN_OPTIONS <= len(options) <= POLL_MAX_OPTIONS:
        return f"Polls need between {POLL_MIN_OPTIONS} and {POLL_MAX_OPTIONS} options"
    for option in options:
        if not isinstance(option, str) or not option.strip():
            return "Poll options must be non-empty text"
        if len(option) > POLL_OPTION_MAX_LENGTH:
            return f"Poll option '{option}' exceeds {POLL_OPTION_MAX_LENGTH} characters"
    duration = poll.get("duration_minutes", 1440)
    if not isinstance(duration, int) or not POLL_MIN_MINUTES <= duration <= POLL_MAX_MINUTES:
        return f"Poll duration must be between {POLL_MIN_MINUTES} and {POLL_MAX_MINUTES} minutes"
    return None


class TwitterAdapter(BaseAdapter):
    platform = Platform.TWITTER

    thread_delay = 1.0
    max_status_checks = 30
    max_status_wait = 10.0

    def is_configured(self) -> bool:
        return not is_placeholder(self.settings.twitter_client_id) and not is_placeholder(
            self.settings.twitter_client_secret
        )

    def _read_token(self, credentials: Optional[AccountCredentials]) -> Optional[str]:
        if credentials:
            return credentials.access_token
        bearer = self.settings.twitter_bearer_token
        return None if is_placeholder(bearer) else bearer

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def provider_error(self, payload: Dict[str, Any]):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            return first.get("message") or first.get("detail"), first.get("code")
        if payload.get("detail") or payload.get("title"):
            return payload.get("detail") or payload.get("title"), payload.get("type")
        return super().provider_error(payload)

    # ---- OAuth 2.0 PKCE --------------------------------------------------

    def authorize_url(self, state: str, code_challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.twitter_client_id,
            "redirect_uri": self.settings.twitter_redirect_uri,
            "scope": " ".join(SCOPES),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    @tagged(TokenRefreshResult, "Twitter code exchange")
    async def exchange_code(self, code: str, code_verifier: str) -> TokenRefreshResult:
        if not self.is_configured():
            return TokenRefreshResult.not_configured(self.platform)
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.twitter_redirect_uri,
            "code_verifier": code_verifier,
            "client_id": self.settings.twitter_client_id,
        })

    @tagged(TokenRefreshResult, "Twitter token refresh")
    async def refresh_token(self, refresh_token: str) -> TokenRefreshResult:
        if not self.is_configured():
            return TokenRefreshResult.not_configured(self.platform)
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.settings.twitter_client_id,
        })

    async def _token_request(self, data: Dict[str, str]) -> TokenRefreshResult:
        async with self.client() as client:
            response = await client.post(
                TOKEN_URL,
                data=data,
                auth=(self.settings.twitter_client_id, self.settings.twitter_client_secret),
            )
        if response.is_error:
            result = self.failure_from_response(response, TokenRefreshResult, "Twitter token request")
            if result.category == ErrorCategory.REJECTED:
                result.category = ErrorCategory.AUTHENTICATION
                result.requires_reconnection = True
            return result
        body = response.json()
        return TokenRefreshResult(
            success=True,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
            raw={"scope": body.get("scope")},
        )

    # ---- media -------------------------------------------------------------

    @tagged(MediaUploadResult, "Twitter media upload")
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        if asset.media_type not in ("image", "video"):
            return MediaUploadResult.unsupported(f"Twitter {asset.media_type} attachments")

        headers = self._headers(credentials.access_token)
        async with self.client(timeout=self.settings.media_upload_timeout_seconds) as client:
            if asset.media_type == "video" or asset.size > SIMPLE_UPLOAD_LIMIT:
                return await self._chunked_upload(client, headers, asset)

            response = await client.post(
                UPLOAD_URL,
                headers=headers,
                files={"media": (asset.filename, asset.data, asset.mime_type)},
            )
            response.raise_for_status()
            media_id = response.json()["media_id_string"]

        return MediaUploadResult(
            success=True,
            media_id=media_id,
            handle=MediaHandle(media_id, asset.media_type, asset.mime_type, asset.public_url),
        )

    async def _chunked_upload(self, client, headers: Dict[str, str], asset: MediaAsset) -> MediaUploadResult:
        """INIT, APPEND in 5 MB segments, FINALIZE, then poll STATUS until processed."""
        category = "tweet_video" if asset.media_type == "video" else "tweet_image"
        init = await client.post(UPLOAD_URL, headers=headers, data={
            "command": "INIT",
            "total_bytes": str(asset.size),
            "media_type": asset.mime_type,
            "media_category": category,
        })
        init.raise_for_status()
        media_id = init.json()["media_id_string"]

        for segment_index, offset in enumerate(range(0, asset.size, CHUNK_SIZE)):
            append = await client.post(
                UPLOAD_URL,
                headers=headers,
                data={"command": "APPEND", "media_id": media_id, "segment_index": str(segment_index)},
                files={"media": ("chunk", asset.data[offset:offset + CHUNK_SIZE], "application/octet-stream")},
            )
            append.raise_for_status()

        finalize = await client.post(UPLOAD_URL, headers=headers, data={"command": "FINALIZE", "media_id": media_id})
        finalize.raise_for_status()
        processing = finalize.json().get("processing_info")

        checks = 0
        while processing and processing.get("state") in ("pending", "in_progress"):
            if checks >= self.max_status_checks:
                return MediaUploadResult.fail(
                    "Twitter media processing did not finish in time",
                    ErrorCode.TIMEOUT,
                    ErrorCategory.TRANSIENT,
                )
            await asyncio.sleep(min(processing.get("check_after_secs", 1), self.max_status_wait))
            status = await client.get(UPLOAD_URL, headers=headers, params={"command": "STATUS", "media_id": media_id})
            status.raise_for_status()
            processing = status.json().get("processing_info")
            checks += 1

        if processing and processing.get("state") == "failed":
            message = dig(processing, "error", "message") or "Twitter rejected the media during processing"
            return MediaUploadResult.fail(message, ErrorCode.INVALID_CONTENT, ErrorCategory.REJECTED)

        self.log.info("Chunked media upload finished", media_id=media_id, size=asset.size)
        return MediaUploadResult(
            success=True,
            media_id=media_id,
            handle=MediaHandle(media_id, asset.media_type, asset.mime_type, asset.public_url),
        )

    # ---- publish -----------------------------------------------------------

    @tagged(PublishResult, "Tweet")
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        media_ids = [handle.media_id for handle in media if handle.media_id][:MAX_TWEET_MEDIA]

        if post_type == "thread":
            return await self._publish_thread(credentials, content, media_ids)
        if post_type == "poll":
            return await self._publish_poll(credentials, content)
        if post_type != "tweet":
            return PublishResult.unsupported(f"Twitter post type '{post_type}'")

        payload: Dict[str, Any] = {"text": truncate(content.text)}
        if media_ids:
            payload["media"] = {"media_ids": media_ids}

        async with self.client() as client:
            response = await client.post(f"{API_URL}/tweets", headers=self._headers(credentials.access_token), json=payload)
        if response.is_error:
            return self.failure_from_response(response, PublishResult, "Tweet")
        data = response.json()["data"]
        return PublishResult(success=True, external_id=data["id"], url=self._tweet_url(data["id"]), raw=data)

    async def _publish_poll(self, credentials: AccountCredentials, content: NormalizedContent) -> PublishResult:
        poll = content.options.get("poll") or {}
        problem = validate_poll(poll)
        if problem:
            return PublishResult.fail(problem, ErrorCode.INVALID_CONTENT, ErrorCategory.REJECTED)

        payload = {
            "text": truncate(content.text),
            "poll": {
                "options": [option.strip() for option in poll["options"]],
                "duration_minutes": poll.get("duration_minutes", 1440),
            },
        }
        async with self.client() as client:
            response = await client.post(f"{API_URL}/tweets", headers=self._headers(credentials.access_token), json=payload)
        if response.is_error:
            return self.failure_from_response(response, PublishResult, "Poll tweet")
        data = response.json()["data"]
        return PublishResult(success=True, external_id=data["id"], url=self._tweet_url(data["id"]), raw=data)

    async def _publish_thread(
        self,
        credentials: AccountCredentials,
        content: NormalizedContent,
        media_ids: List[str],
    ) -> PublishResult:
        parts = [part for part in (content.options.get("thread") or [content.text]) if part and part.strip()]
        if not 1 <= len(parts) <= MAX_THREAD_LENGTH:
            return PublishResult.fail(
                f"Threads need between 1 and {MAX_THREAD_LENGTH} tweets",
                ErrorCode.INVALID_CONTENT,
                ErrorCategory.REJECTED,
            )

        posted: List[Dict[str, Any]] = []
        headers = self._headers(credentials.access_token)
        async with self.client() as client:
            for index, part in enumerate(parts):
                payload: Dict[str, Any] = {"text": truncate(part)}
                if index == 0 and media_ids:
                    payload["media"] = {"media_ids": media_ids}
                if posted:
                    payload["reply"] = {"in_reply_to_tweet_id": posted[-1]["id"]}
                    await asyncio.sleep(self.thread_delay)

                response = await client.post(f"{API_URL}/tweets", headers=headers, json=payload)
                if response.is_error:
                    failure = self.failure_from_response(response, PublishResult, "Thread tweet")
                    if posted:
                        # Reposting would duplicate the tweets that already went out
                        failure.error = f"Thread stopped after {len(posted)} of {len(parts)} tweets: {failure.error}"
                        failure.category = ErrorCategory.REJECTED
                        failure.raw = {"posted": posted}
                    return failure
                posted.append(response.json()["data"])

        thread_id = posted[0]["id"]
        return PublishResult(
            success=True,
            external_id=thread_id,
            url=self._tweet_url(thread_id),
            raw={"thread_id": thread_id, "tweets": posted},
        )

    @staticmethod
    def _tweet_url(tweet_id: str) -> str:
        return f"https://twitter.com/i/web/status/{tweet_id}"

    # ---- read path -----------------------------------------------------------

    @tagged(ProfileResult, "Twitter profile lookup")
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        token = self._read_token(credentials)
        if not token:
            return ProfileResult.not_configured(self.platform)

        if ref.is_self:
            url = f"{API_URL}/users/me"
        else:
            url = f"{API_URL}/users/by/username/{ref.username}"

        async with self.client() as client:
            response = await client.get(url, headers=self._headers(token), params={"user.fields": USER_FIELDS})
        if response.is_error:
            return self.failure_from_response(response, ProfileResult, "Twitter profile lookup")

        user = response.json().get("data")
        if not user:
            return ProfileResult.fail(f"Twitter user '{ref.username}' not found", ErrorCode.NOT_FOUND)

        metrics = user.get("public_metrics") or {}
        return ProfileResult(success=True, profile=ProfileData(
            platform=self.platform.value,
            id=user["id"],
            username=user.get("username"),
            name=user.get("name"),
            bio=user.get("description") or "",
            followers=first_defined(metrics.get("followers_count")),
            following=first_defined(metrics.get("following_count")),
            posts_count=first_defined(metrics.get("tweet_count")),
            verified=bool(user.get("verified")),
            website=user.get("url"),
            location=user.get("location"),
            profile_image=user.get("profile_image_url"),
            created_at=user.get("created_at"),
        ))

    @tagged(ContentResult, "Twitter timeline lookup")
    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        token = self._read_token(credentials)
        if not token:
            return ContentResult.not_configured(self.platform)

        user_id = ref.resolved_id
        if not user_id:
            profile = await self.get_profile(ref, credentials)
            if not profile.success:
                return ContentResult.fail(profile.error, profile.error_code, profile.category)
            user_id = profile.profile.id

        params = {
            "max_results": max(5, min(limit, 100)),
            "tweet.fields": TWEET_FIELDS,
            "start_time": isoformat(utcnow() - timedelta(days=since_days)),
        }
        async with self.client() as client:
            response = await client.get(f"{API_URL}/users/{user_id}/tweets", headers=self._headers(token), params=params)
        if response.is_error:
            return self.failure_from_response(response, ContentResult, "Twitter timeline lookup")

        items = [self._content_item(tweet) for tweet in response.json().get("data") or []]
        return ContentResult(success=True, items=items[:limit])

    def _content_item(self, tweet: Dict[str, Any]) -> ContentItem:
        if dig(tweet, "attachments", "media_keys"):
            content_type = "media"
        elif tweet.get("referenced_tweets"):
            content_type = "retweet"
        else:
            content_type = "text"
        return ContentItem(
            id=tweet["id"],
            text=tweet.get("text") or "",
            created_at=parse_timestamp(tweet.get("created_at")),
            content_type=content_type,
            metrics=self.normalize_metrics(tweet),
            url=self._tweet_url(tweet["id"]),
        )

    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        public = raw.get("public_metrics") or {}
        return EngagementMetrics(
            likes=first_defined(public.get("like_count"), raw.get("like_count"), raw.get("likes"), raw.get("likeCount")),
            comments=first_defined(public.get("reply_count"), raw.get("comment_count"), raw.get("comments"), raw.get("commentCount")),
            shares=first_defined(public.get("retweet_count"), raw.get("retweet_count"), raw.get("shares")),
            views=first_defined(public.get("impression_count"), raw.get("view_count")),
        )
