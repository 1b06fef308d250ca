"""
Instagram Graph API adapter (business and creator accounts).

Instagram pulls media from a public URL when a container is created, so
``upload_media`` only stages a handle; the container, its processing poll and
``media_publish`` happen in ``publish``.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ...clock import parse_timestamp
from ...config import is_placeholder
from .base import (
    AccountCredentials,
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
    first_defined,
    tagged,
)
from .meta import GRAPH_URL, MetaGraphAdapter

PROFILE_FIELDS = "id,username,name,biography,followers_count,follows_count,media_count,profile_picture_url,website"
MEDIA_FIELDS = "id,caption,media_type,timestamp,like_count,comments_count,permalink"
MAX_CAPTION_LENGTH = 2200


class InstagramAdapter(MetaGraphAdapter):
    platform = Platform.INSTAGRAM
    requires_media = True

    container_poll_interval = 3.0
    max_container_checks = 20

    def is_configured(self) -> bool:
        """Public lookups go through business discovery on our own account."""
        return not is_placeholder(self.settings.instagram_access_token) and not is_placeholder(
            self.settings.instagram_account_id
        )

    def category_for(self, status_code, provider_code) -> ErrorCategory:
        # GraphMethodException code 100 means the business account link is gone
        if provider_code == 100 and status_code in (400, 403):
            return ErrorCategory.AUTHENTICATION
        return super().category_for(status_code, provider_code)

    @tagged(MediaUploadResult, "Instagram media staging")
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        if asset.media_type not in ("image", "video"):
            return MediaUploadResult.unsupported(f"Instagram {asset.media_type} attachments")
        if not asset.public_url or not asset.public_url.startswith("http"):
            return MediaUploadResult.fail(
                "Instagram needs a publicly reachable media URL",
                ErrorCode.INVALID_CONTENT,
                ErrorCategory.REJECTED,
            )
        return MediaUploadResult(
            success=True,
            media_id=None,
            handle=MediaHandle(None, asset.media_type, asset.mime_type, asset.public_url),
        )

    @tagged(PublishResult, "Instagram publish")
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        if credentials.extra.get("is_basic_display"):
            return PublishResult.fail(
                "Instagram Basic Display accounts cannot publish. "
                "Please reconnect with an Instagram Business or Creator account.",
                ErrorCode.INVALID_CONTENT,
                ErrorCategory.CONFIGURATION,
                requires_reconnection=True,
            )
        if not credentials.account_id:
            return PublishResult.fail(
                "Instagram business account id missing. Please reconnect your Instagram account.",
                ErrorCode.ACCOUNT_NOT_CONNECTED,
                ErrorCategory.CONFIGURATION,
                requires_reconnection=True,
            )
        if post_type == "carousel":
            return PublishResult.unsupported("Instagram carousel publishing")
        if post_type not in ("post", "story", "reel"):
            return PublishResult.unsupported(f"Instagram post type '{post_type}'")
        if not media:
            return PublishResult.fail(
                "Instagram posts require at least one image or video",
                ErrorCode.MEDIA_REQUIRED,
                ErrorCategory.REJECTED,
            )

        handle = media[0]
        if post_type == "reel" and handle.media_type != "video":
            return PublishResult.fail("Reels require a video", ErrorCode.INVALID_CONTENT, ErrorCategory.REJECTED)

        params: Dict[str, Any] = {"access_token": credentials.access_token}
        if post_type != "story":
            params["caption"] = content.text[:MAX_CAPTION_LENGTH]
        if handle.media_type == "video":
            params["video_url"] = handle.url
            params["media_type"] = "STORIES" if post_type == "story" else "REELS"
        else:
            params["image_url"] = handle.url
            if post_type == "story":
                params["media_type"] = "STORIES"

        async with self.client(timeout=self.settings.media_upload_timeout_seconds) as client:
            container = await client.post(f"{GRAPH_URL}/{credentials.account_id}/media", data=params)
            if container.is_error:
                return self.failure_from_response(container, PublishResult, "Instagram container creation")
            container_id = container.json()["id"]

            if handle.media_type == "video":
                waiting = await self._wait_for_container(client, container_id, credentials.access_token)
                if waiting is not None:
                    return waiting

            published = await client.post(
                f"{GRAPH_URL}/{credentials.account_id}/media_publish",
                data={"creation_id": container_id, "access_token": credentials.access_token},
            )
            if published.is_error:
                return self.failure_from_response(published, PublishResult, "Instagram media_publish")
            media_id = published.json()["id"]

        return PublishResult(
            success=True,
            external_id=media_id,
            raw={"id": media_id, "container_id": container_id, "media_type": params.get("media_type", "IMAGE")},
        )

    async def _wait_for_container(self, client, container_id: str, token: str) -> Optional[PublishResult]:
        """None once the container is FINISHED, otherwise the failure to report."""
        for _ in range(self.max_container_checks):
            response = await client.get(
                f"{GRAPH_URL}/{container_id}",
                params={"fields": "status_code,status", "access_token": token},
            )
            if response.is_error:
                return self.failure_from_response(response, PublishResult, "Instagram container status")
            status = response.json().get("status_code")
            if status in (None, "FINISHED", "PUBLISHED"):
                return None
            if status in ("ERROR", "EXPIRED"):
                return PublishResult.fail(
                    f"Instagram could not process the media ({response.json().get('status') or status})",
                    ErrorCode.INVALID_CONTENT,
                    ErrorCategory.REJECTED,
                )
            await asyncio.sleep(self.container_poll_interval)
        return PublishResult.fail("Instagram media processing timed out", ErrorCode.TIMEOUT, ErrorCategory.TRANSIENT)

    # ---- read path -----------------------------------------------------------

    def _lookup(self, ref: ProfileRef, credentials: Optional[AccountCredentials]):
        """(account id, token, discovery username or None)"""
        if ref.is_self and credentials:
            return credentials.account_id, credentials.access_token, None
        if not self.is_configured():
            return None, None, None
        return self.settings.instagram_account_id, self.settings.instagram_access_token, ref.username

    @tagged(ProfileResult, "Instagram profile lookup")
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        account_id, token, discover = self._lookup(ref, credentials)
        if not account_id:
            return ProfileResult.not_configured(self.platform)

        fields = f"business_discovery.username({discover}){{{PROFILE_FIELDS}}}" if discover else PROFILE_FIELDS
        async with self.client() as client:
            response = await client.get(f"{GRAPH_URL}/{account_id}", params={"fields": fields, "access_token": token})
        if response.is_error:
            return self.failure_from_response(response, ProfileResult, "Instagram profile lookup")

        body = response.json()
        user = body.get("business_discovery") if discover else body
        if not user:
            return ProfileResult.fail(f"Instagram account '{ref.username}' not found", ErrorCode.NOT_FOUND)

        return ProfileResult(success=True, profile=ProfileData(
            platform=self.platform.value,
            id=user.get("id"),
            username=user.get("username"),
            name=user.get("name"),
            bio=user.get("biography") or "",
            followers=first_defined(user.get("followers_count")),
            following=first_defined(user.get("follows_count")),
            posts_count=first_defined(user.get("media_count")),
            website=user.get("website"),
            profile_image=user.get("profile_picture_url"),
        ))

    @tagged(ContentResult, "Instagram media lookup")
    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        account_id, token, discover = self._lookup(ref, credentials)
        if not account_id:
            return ContentResult.not_configured(self.platform)

        async with self.client() as client:
            if discover:
                fields = f"business_discovery.username({discover}){{media.limit({limit}){{{MEDIA_FIELDS}}}}}"
                response = await client.get(f"{GRAPH_URL}/{account_id}", params={"fields": fields, "access_token": token})
            else:
                response = await client.get(
                    f"{GRAPH_URL}/{account_id}/media",
                    params={"fields": MEDIA_FIELDS, "limit": limit, "access_token": token},
                )
        if response.is_error:
            return self.failure_from_response(response, ContentResult, "Instagram media lookup")

        body = response.json()
        media = (body.get("business_discovery") or {}).get("media", {}).get("data") if discover else body.get("data")
        items = [self._content_item(entry) for entry in media or []]
        return ContentResult(success=True, items=items[:limit])

    def _content_item(self, entry: Dict[str, Any]) -> ContentItem:
        return ContentItem(
            id=entry["id"],
            text=entry.get("caption") or "",
            created_at=parse_timestamp(entry.get("timestamp")),
            content_type=(entry.get("media_type") or "post").lower(),
            metrics=self.normalize_metrics(entry),
            url=entry.get("permalink"),
        )

    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        return EngagementMetrics(
            likes=first_defined(raw.get("like_count"), raw.get("likes"), raw.get("likeCount")),
            comments=first_defined(raw.get("comments_count"), raw.get("comment_count"), raw.get("comments")),
            shares=first_defined(raw.get("shares_count"), raw.get("shares")),
            views=first_defined(raw.get("video_views"), raw.get("plays")),
        )
