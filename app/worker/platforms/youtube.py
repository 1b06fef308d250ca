"""
YouTube Data API v3 adapter.

Uploads use the google client's resumable protocol and land as private
videos; ``publish`` then sets the real title, description and privacy.
The client library is blocking, so every ``execute``/``next_chunk`` runs in a
worker thread.
"""

import asyncio
import io
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

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

TOKEN_URL = "https://oauth2.googleapis.com/token"
UPLOAD_CHUNK_SIZE = 10 * 1024 * 1024
DEFAULT_CATEGORY_ID = "22"  # People & Blogs
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
SHORTS_MAX_SECONDS = 60

QUOTA_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded"}

_DURATION = re.compile(r"P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?")


def parse_duration(value: Optional[str]) -> Optional[int]:
    """ISO-8601 duration (PT1M30S) to seconds."""
    if not value:
        return None
    match = _DURATION.fullmatch(value)
    if not match:
        return None
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


class YouTubeAdapter(BaseAdapter):
    platform = Platform.YOUTUBE
    requires_media = True
    supports_thumbnails = True

    def is_configured(self) -> bool:
        return not is_placeholder(self.settings.youtube_api_key)

    def oauth_configured(self) -> bool:
        return not is_placeholder(self.settings.youtube_client_id) and not is_placeholder(
            self.settings.youtube_client_secret
        )

    def _service(self, credentials: Optional[AccountCredentials] = None):
        if credentials:
            return build("youtube", "v3", credentials=Credentials(token=credentials.access_token), cache_discovery=False)
        return build("youtube", "v3", developerKey=self.settings.youtube_api_key, cache_discovery=False)

    @staticmethod
    async def _execute(request) -> Dict[str, Any]:
        return await asyncio.to_thread(request.execute)

    def failure_from_exception(self, exc, result_cls, action):
        if isinstance(exc, HttpError):
            status = exc.resp.status if exc.resp is not None else None
            reasons = {detail.get("reason") for detail in (exc.error_details or []) if isinstance(detail, dict)}
            if reasons & QUOTA_REASONS:
                category = ErrorCategory.RATE_LIMITED
            else:
                category = self.category_for(status, None)
            return result_cls.fail(
                exc.reason or f"{action} failed with HTTP {status}",
                ErrorCode.RATE_LIMITED if category == ErrorCategory.RATE_LIMITED else ErrorCode.PROVIDER_ERROR,
                category,
                status_code=status,
                provider_code=next(iter(reasons), None),
                requires_reconnection=category == ErrorCategory.AUTHENTICATION,
            )
        return super().failure_from_exception(exc, result_cls, action)

    # ---- auth ----------------------------------------------------------------

    @tagged(TokenRefreshResult, "YouTube token refresh")
    async def refresh_token(self, refresh_token: str) -> TokenRefreshResult:
        if not self.oauth_configured():
            return TokenRefreshResult.not_configured(self.platform)

        async with self.client() as client:
            response = await client.post(TOKEN_URL, data={
                "client_id": self.settings.youtube_client_id,
                "client_secret": self.settings.youtube_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            })
        if response.is_error:
            return self.failure_from_response(response, TokenRefreshResult, "YouTube token refresh")
        body = response.json()
        return TokenRefreshResult(
            success=True,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
        )

    # ---- media -------------------------------------------------------------

    @tagged(MediaUploadResult, "YouTube upload")
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        if asset.media_type != "video":
            return MediaUploadResult.unsupported(f"YouTube {asset.media_type} uploads")

        youtube = self._service(credentials)
        body = {
            "snippet": {
                "title": Path(asset.filename).stem[:MAX_TITLE_LENGTH] or "Upload",
                "categoryId": DEFAULT_CATEGORY_ID,
            },
            "status": {"privacyStatus": "private", "selfDeclaredMadeForKids": False},
        }
        media = MediaIoBaseUpload(io.BytesIO(asset.data), mimetype=asset.mime_type, chunksize=UPLOAD_CHUNK_SIZE, resumable=True)
        request = youtube.videos().insert(part="snippet,status", body=body, media_body=media)

        response = None
        while response is None:
            status, response = await asyncio.to_thread(request.next_chunk)
            if status:
                self.log.debug("YouTube upload progress", progress=int(status.progress() * 100))

        video_id = response["id"]
        self.log.info("YouTube upload complete", video_id=video_id, size=asset.size)
        return MediaUploadResult(
            success=True,
            media_id=video_id,
            handle=MediaHandle(video_id, "video", asset.mime_type, f"https://www.youtube.com/watch?v={video_id}"),
        )

    # ---- publish -----------------------------------------------------------

    @tagged(PublishResult, "YouTube publish")
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        if post_type == "live":
            return PublishResult.unsupported("YouTube live broadcasts")
        if post_type == "post":
            return PublishResult.unsupported("YouTube community posts")
        if post_type != "video":
            return PublishResult.unsupported(f"YouTube post type '{post_type}'")

        video = next((handle for handle in media if handle.media_type == "video" and handle.media_id), None)
        if video is None:
            return PublishResult.fail(
                "YouTube posts require a video file",
                ErrorCode.MEDIA_REQUIRED,
                ErrorCategory.REJECTED,
            )

        options = content.options
        title = options.get("title") or content.title or content.text
        if options.get("is_short") and "#shorts" not in title.lower():
            title = f"{title} #Shorts"
        body = {
            "id": video.media_id,
            "snippet": {
                "title": title[:MAX_TITLE_LENGTH],
                "description": (options.get("description") or content.text)[:MAX_DESCRIPTION_LENGTH],
                "tags": options.get("tags") or content.tags,
                "categoryId": str(options.get("category_id") or DEFAULT_CATEGORY_ID),
            },
            "status": {
                "privacyStatus": options.get("privacy_status") or "public",
                "selfDeclaredMadeForKids": False,
            },
        }
        youtube = self._service(credentials)
        response = await self._execute(youtube.videos().update(part="snippet,status", body=body))
        raw = {"id": response["id"], "privacy_status": body["status"]["privacyStatus"]}
        if video.thumbnail is not None:
            raw["thumbnail_set"] = await self._set_thumbnail(youtube, response["id"], video.thumbnail)
        return PublishResult(
            success=True,
            external_id=response["id"],
            url=f"https://www.youtube.com/watch?v={response['id']}",
            raw=raw,
        )

    async def _set_thumbnail(self, youtube, video_id: str, thumbnail: MediaAsset) -> bool:
        """Custom thumbnails need a verified channel; a refusal leaves the video published."""
        media = MediaIoBaseUpload(io.BytesIO(thumbnail.data), mimetype=thumbnail.mime_type)
        try:
            await self._execute(youtube.thumbnails().set(videoId=video_id, media_body=media))
        except HttpError as exc:
            self.log.warning("YouTube thumbnail rejected", video_id=video_id, reason=exc.reason)
            return False
        self.log.info("YouTube thumbnail set", video_id=video_id)
        return True

    # ---- read path -----------------------------------------------------------

    async def _find_channel(self, youtube, ref: ProfileRef) -> Optional[Dict[str, Any]]:
        part = "snippet,statistics,brandingSettings"
        if ref.is_self:
            lookups = [{"mine": True}]
        elif ref.kind == "channel":
            lookups = [{"id": ref.username}]
        elif ref.kind == "handle":
            lookups = [{"forHandle": ref.username}]
        elif ref.kind == "user":
            lookups = [{"forUsername": ref.username}]
        else:
            lookups = []

        for params in lookups:
            found = await self._execute(youtube.channels().list(part=part, **params))
            if found.get("items"):
                return found["items"][0]

        if ref.is_self or ref.kind == "channel":
            return None
        search = await self._execute(youtube.search().list(part="snippet", q=ref.username, type="channel", maxResults=1))
        channel_id = dig((search.get("items") or [{}])[0], "snippet", "channelId")
        if not channel_id:
            return None
        found = await self._execute(youtube.channels().list(part=part, id=channel_id))
        return (found.get("items") or [None])[0]

    @tagged(ProfileResult, "YouTube channel lookup")
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        if not (ref.is_self and credentials) and not self.is_configured():
            return ProfileResult.not_configured(self.platform)

        youtube = self._service(credentials if ref.is_self else None)
        channel = await self._find_channel(youtube, ref)
        if channel is None:
            return ProfileResult.fail(f"YouTube channel '{ref.username}' not found", ErrorCode.NOT_FOUND)

        snippet = channel.get("snippet") or {}
        stats = channel.get("statistics") or {}
        followers = 0 if stats.get("hiddenSubscriberCount") else first_defined(stats.get("subscriberCount"))
        return ProfileResult(success=True, profile=ProfileData(
            platform=self.platform.value,
            id=channel["id"],
            username=snippet.get("customUrl") or ref.username,
            name=snippet.get("title"),
            bio=snippet.get("description") or "",
            followers=followers,
            posts_count=first_defined(stats.get("videoCount")),
            location=snippet.get("country"),
            niche=dig(channel, "brandingSettings", "channel", "keywords"),
            profile_image=dig(snippet, "thumbnails", "high", "url"),
            created_at=snippet.get("publishedAt"),
            extra={"total_views": first_defined(stats.get("viewCount"))},
        ))

    @tagged(ContentResult, "YouTube videos lookup")
    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        if not (ref.is_self and credentials) and not self.is_configured():
            return ContentResult.not_configured(self.platform)

        channel_id = ref.resolved_id
        if not channel_id:
            profile = await self.get_profile(ref, credentials)
            if not profile.success:
                return ContentResult.fail(profile.error, profile.error_code, profile.category)
            channel_id = profile.profile.id

        youtube = self._service(credentials if ref.is_self else None)
        search = await self._execute(youtube.search().list(
            part="id",
            channelId=channel_id,
            type="video",
            order="date",
            maxResults=min(limit, 50),
            publishedAfter=isoformat(utcnow() - timedelta(days=since_days)),
        ))
        video_ids = [dig(item, "id", "videoId") for item in search.get("items") or []]
        video_ids = [video_id for video_id in video_ids if video_id]
        if not video_ids:
            return ContentResult(success=True, items=[])

        videos = await self._execute(youtube.videos().list(part="snippet,statistics,contentDetails", id=",".join(video_ids)))
        items = [self._content_item(video) for video in videos.get("items") or []]
        return ContentResult(success=True, items=items[:limit])

    def _content_item(self, video: Dict[str, Any]) -> ContentItem:
        snippet = video.get("snippet") or {}
        duration = parse_duration(dig(video, "contentDetails", "duration"))
        text = "\n".join(part for part in (snippet.get("title"), snippet.get("description")) if part)
        return ContentItem(
            id=video["id"],
            text=text,
            created_at=parse_timestamp(snippet.get("publishedAt")),
            content_type="short" if duration is not None and duration <= SHORTS_MAX_SECONDS else "video",
            metrics=self.normalize_metrics(video.get("statistics") or {}),
            url=f"https://www.youtube.com/watch?v={video['id']}",
            duration_seconds=duration,
        )

    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        return EngagementMetrics(
            likes=first_defined(raw.get("likeCount"), raw.get("like_count"), raw.get("likes")),
            comments=first_defined(raw.get("commentCount"), raw.get("comment_count"), raw.get("comments")),
            shares=first_defined(raw.get("shares")),
            views=first_defined(raw.get("viewCount"), raw.get("view_count")),
        )
