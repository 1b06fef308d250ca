"""
Facebook Pages adapter.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from ...clock import parse_timestamp, utcnow
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
    dig,
    first_defined,
    tagged,
)
from .meta import GRAPH_URL, MetaGraphAdapter

PAGE_FIELDS = "id,name,username,about,category,fan_count,followers_count,website,location,picture,verification_status"
POST_FIELDS = (
    "id,message,created_time,permalink_url,status_type,"
    "likes.summary(true).limit(0),comments.summary(true).limit(0),shares"
)
MAX_MESSAGE_LENGTH = 63206

# Graph rejects some remote URLs; retry those as a direct binary upload
URL_FETCH_ERROR_CODE = 324
URL_FETCH_ERROR_SUBCODE = 2069019


class FacebookAdapter(MetaGraphAdapter):
    platform = Platform.FACEBOOK

    def is_configured(self) -> bool:
        return self.app_configured()

    def _app_token(self) -> str:
        return f"{self.settings.facebook_app_id}|{self.settings.facebook_app_secret}"

    async def _resolve_page(
        self,
        client,
        credentials: AccountCredentials,
        preferred_page_id: Optional[str] = None,
    ) -> Tuple[Optional[Dict[str, Any]], Optional[Any]]:
        """(page, None) or (None, failure). Picks the preferred page, else the first one."""
        response = await client.get(
            f"{GRAPH_URL}/me/accounts",
            params={"fields": "id,name,access_token", "access_token": credentials.access_token},
        )
        if response.is_error:
            return None, response
        pages = response.json().get("data") or []
        if not pages:
            return None, None
        wanted = preferred_page_id or credentials.account_id
        for page in pages:
            if wanted and page.get("id") == wanted:
                return page, None
        return pages[0], None

    @tagged(MediaUploadResult, "Facebook media staging")
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        if asset.media_type not in ("image", "video"):
            return MediaUploadResult.unsupported(f"Facebook {asset.media_type} attachments")
        # Bytes ride along for the binary fallback
        return MediaUploadResult(
            success=True,
            handle=MediaHandle(None, asset.media_type, asset.mime_type, asset.public_url, data=asset.data),
        )

    @tagged(PublishResult, "Facebook publish")
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        if post_type != "post":
            return PublishResult.unsupported(f"Facebook post type '{post_type}'")

        message = content.text[:MAX_MESSAGE_LENGTH]
        async with self.client(timeout=self.settings.media_upload_timeout_seconds) as client:
            page, failure = await self._resolve_page(client, credentials, content.options.get("page_id"))
            if failure is not None:
                return self.failure_from_response(failure, PublishResult, "Facebook page lookup")
            if page is None:
                return PublishResult.fail(
                    "No Facebook pages found for this account. Please reconnect your Facebook account "
                    "and grant access to at least one page.",
                    ErrorCode.ACCOUNT_NOT_CONNECTED,
                    ErrorCategory.CONFIGURATION,
                    requires_reconnection=True,
                )

            page_id, page_token = page["id"], page.get("access_token") or credentials.access_token
            handle = media[0] if media else None

            if handle is not None and handle.media_type == "video":
                response = await client.post(f"{GRAPH_URL}/{page_id}/videos", data={
                    "file_url": handle.url,
                    "description": message,
                    "access_token": page_token,
                })
                if response.is_error:
                    return self.failure_from_response(response, PublishResult, "Facebook video post")
                return self._published(response.json(), page_id, "video")

            if handle is not None:
                photo = await self._publish_photo(client, page_id, page_token, message, handle)
                if photo.success or photo.retryable:
                    return photo
                self.log.warning("Photo post rejected, posting text only", page_id=page_id, error=photo.error)

            response = await client.post(f"{GRAPH_URL}/{page_id}/feed", data={"message": message, "access_token": page_token})
            if response.is_error:
                return self.failure_from_response(response, PublishResult, "Facebook feed post")
            result = self._published(response.json(), page_id, "text")
            if handle is not None:
                result.raw["media_skipped"] = True
            return result

    async def _publish_photo(self, client, page_id: str, page_token: str, message: str, handle: MediaHandle) -> PublishResult:
        response = await client.post(f"{GRAPH_URL}/{page_id}/photos", data={
            "url": handle.url,
            "caption": message,
            "access_token": page_token,
        })
        if not response.is_error:
            return self._published(response.json(), page_id, "photo")

        failure = self.failure_from_response(response, PublishResult, "Facebook photo post")
        url_rejected = failure.provider_code == URL_FETCH_ERROR_CODE or (
            self.error_subcode(failure.raw) == URL_FETCH_ERROR_SUBCODE
        )
        if not url_rejected or not handle.data:
            return failure

        response = await client.post(
            f"{GRAPH_URL}/{page_id}/photos",
            data={"caption": message, "access_token": page_token},
            files={"source": ("upload", handle.data, handle.mime_type or "image/jpeg")},
        )
        if response.is_error:
            return self.failure_from_response(response, PublishResult, "Facebook photo upload")
        return self._published(response.json(), page_id, "photo")

    @staticmethod
    def _published(body: Dict[str, Any], page_id: str, kind: str) -> PublishResult:
        post_id = body.get("post_id") or body.get("id")
        return PublishResult(
            success=True,
            external_id=post_id,
            url=f"https://www.facebook.com/{post_id}",
            raw={"id": post_id, "page_id": page_id, "kind": kind},
        )

    # ---- read path -----------------------------------------------------------

    async def _read_target(self, client, ref: ProfileRef, credentials: Optional[AccountCredentials]):
        """(node id, token) or (None, failure result)"""
        if ref.is_self and credentials:
            page, failure = await self._resolve_page(client, credentials)
            if failure is not None:
                return None, self.failure_from_response(failure, ProfileResult, "Facebook page lookup")
            if page is None:
                return None, ProfileResult.fail("No Facebook pages connected", ErrorCode.NOT_FOUND)
            return page["id"], page.get("access_token") or credentials.access_token
        if not self.is_configured():
            return None, ProfileResult.not_configured(self.platform)
        return ref.resolved_id or ref.username, self._app_token()

    @tagged(ProfileResult, "Facebook page lookup")
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        async with self.client() as client:
            node, token = await self._read_target(client, ref, credentials)
            if node is None:
                return token
            response = await client.get(f"{GRAPH_URL}/{node}", params={"fields": PAGE_FIELDS, "access_token": token})
        if response.is_error:
            return self.failure_from_response(response, ProfileResult, "Facebook page lookup")

        page = response.json()
        location = page.get("location") or {}
        return ProfileResult(success=True, profile=ProfileData(
            platform=self.platform.value,
            id=page.get("id"),
            username=page.get("username") or ref.username,
            name=page.get("name"),
            bio=page.get("about") or "",
            followers=first_defined(page.get("followers_count"), page.get("fan_count")),
            verified=page.get("verification_status") in ("blue_verified", "gray_verified"),
            website=page.get("website"),
            location=", ".join(str(location[key]) for key in ("city", "country") if location.get(key)) or None,
            niche=page.get("category"),
            profile_image=dig(page, "picture", "data", "url"),
        ))

    @tagged(ContentResult, "Facebook posts lookup")
    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        since = int((utcnow() - timedelta(days=since_days)).timestamp())
        async with self.client() as client:
            node, token = await self._read_target(client, ref, credentials)
            if node is None:
                return ContentResult.fail(token.error, token.error_code, token.category)
            response = await client.get(f"{GRAPH_URL}/{node}/posts", params={
                "fields": POST_FIELDS,
                "limit": min(limit, 100),
                "since": since,
                "access_token": token,
            })
        if response.is_error:
            return self.failure_from_response(response, ContentResult, "Facebook posts lookup")

        items = [self._content_item(post) for post in response.json().get("data") or []]
        return ContentResult(success=True, items=items[:limit])

    def _content_item(self, post: Dict[str, Any]) -> ContentItem:
        return ContentItem(
            id=post["id"],
            text=post.get("message") or "",
            created_at=parse_timestamp(post.get("created_time")),
            content_type=post.get("status_type") or "post",
            metrics=self.normalize_metrics(post),
            url=post.get("permalink_url"),
        )

    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        likes = raw.get("likes")
        comments = raw.get("comments")
        shares = raw.get("shares")
        return EngagementMetrics(
            likes=first_defined(dig(likes, "summary", "total_count"), raw.get("like_count"), likes if isinstance(likes, int) else None),
            comments=first_defined(dig(comments, "summary", "total_count"), raw.get("comment_count"), comments if isinstance(comments, int) else None),
            shares=first_defined(dig(shares, "count"), shares if isinstance(shares, int) else None),
        )
