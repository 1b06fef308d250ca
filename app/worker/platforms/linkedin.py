"""
LinkedIn adapter (UGC posts on a member's feed).
"""

from typing import Any, Dict, List, Optional

from ...config import is_placeholder
from .base import (
    AccountCredentials,
    BaseAdapter,
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
    first_defined,
    tagged,
)

API_URL = "https://api.linkedin.com/v2"
TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
MAX_COMMENTARY_LENGTH = 3000

UPLOAD_RECIPES = {
    "image": "urn:li:digitalmediaRecipe:feedshare-image",
    "video": "urn:li:digitalmediaRecipe:feedshare-video",
}
UPLOAD_MECHANISM = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"


class LinkedInAdapter(BaseAdapter):
    platform = Platform.LINKEDIN

    def is_configured(self) -> bool:
        return not is_placeholder(self.settings.linkedin_client_id) and not is_placeholder(
            self.settings.linkedin_client_secret
        )

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-Restli-Protocol-Version": "2.0.0",
        }

    @staticmethod
    def _author(credentials: AccountCredentials) -> Optional[str]:
        if not credentials.account_id:
            return None
        if credentials.account_id.startswith("urn:li:"):
            return credentials.account_id
        return f"urn:li:person:{credentials.account_id}"

    def provider_error(self, payload: Dict[str, Any]):
        if "serviceErrorCode" in payload or "message" in payload:
            return payload.get("message"), payload.get("serviceErrorCode")
        return super().provider_error(payload)

    @staticmethod
    def _missing_author() -> Dict[str, Any]:
        return {
            "error": "LinkedIn member id missing. Please reconnect your LinkedIn account.",
            "error_code": ErrorCode.ACCOUNT_NOT_CONNECTED,
            "category": ErrorCategory.CONFIGURATION,
            "requires_reconnection": True,
        }

    @tagged(TokenRefreshResult, "LinkedIn token refresh")
    async def refresh_token(self, refresh_token: str) -> TokenRefreshResult:
        if not self.is_configured():
            return TokenRefreshResult.not_configured(self.platform)

        async with self.client() as client:
            response = await client.post(TOKEN_URL, data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.linkedin_client_id,
                "client_secret": self.settings.linkedin_client_secret,
            })
        if response.is_error:
            return self.failure_from_response(response, TokenRefreshResult, "LinkedIn token refresh")
        body = response.json()
        return TokenRefreshResult(
            success=True,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
        )

    @tagged(MediaUploadResult, "LinkedIn media upload")
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        recipe = UPLOAD_RECIPES.get(asset.media_type)
        if recipe is None:
            return MediaUploadResult.unsupported(f"LinkedIn {asset.media_type} attachments")
        author = self._author(credentials)
        if author is None:
            return MediaUploadResult(success=False, **self._missing_author())

        headers = self._headers(credentials.access_token)
        async with self.client(timeout=self.settings.media_upload_timeout_seconds) as client:
            register = await client.post(f"{API_URL}/assets?action=registerUpload", headers=headers, json={
                "registerUploadRequest": {
                    "recipes": [recipe],
                    "owner": author,
                    "serviceRelationships": [{
                        "relationshipType": "OWNER",
                        "identifier": "urn:li:userGeneratedContent",
                    }],
                },
            })
            register.raise_for_status()
            value = register.json()["value"]
            upload_url = value["uploadMechanism"][UPLOAD_MECHANISM]["uploadUrl"]
            asset_urn = value["asset"]

            upload = await client.put(
                upload_url,
                content=asset.data,
                headers={"Authorization": f"Bearer {credentials.access_token}", "Content-Type": asset.mime_type},
            )
            upload.raise_for_status()

        return MediaUploadResult(
            success=True,
            media_id=asset_urn,
            handle=MediaHandle(asset_urn, asset.media_type, asset.mime_type, asset.public_url),
        )

    @tagged(PublishResult, "LinkedIn publish")
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        if post_type != "post":
            return PublishResult.unsupported(f"LinkedIn post type '{post_type}'")
        author = self._author(credentials)
        if author is None:
            return PublishResult(success=False, **self._missing_author())

        uploaded = [handle for handle in media if handle.media_id]
        # A share carries one media category; keep the attachments matching the first
        category = "NONE"
        if uploaded:
            category = "VIDEO" if uploaded[0].media_type == "video" else "IMAGE"
            uploaded = [handle for handle in uploaded if handle.media_type == uploaded[0].media_type]
            if category == "VIDEO":
                uploaded = uploaded[:1]

        share: Dict[str, Any] = {
            "shareCommentary": {"text": content.text[:MAX_COMMENTARY_LENGTH]},
            "shareMediaCategory": category,
        }
        if uploaded:
            share["media"] = [
                {"status": "READY", "media": handle.media_id, "title": {"text": content.title or ""}}
                for handle in uploaded
            ]

        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": content.options.get("visibility", "PUBLIC")},
        }
        async with self.client() as client:
            response = await client.post(f"{API_URL}/ugcPosts", headers=self._headers(credentials.access_token), json=body)
        if response.is_error:
            return self.failure_from_response(response, PublishResult, "LinkedIn publish")

        post_id = response.headers.get("x-restli-id") or response.json().get("id")
        return PublishResult(
            success=True,
            external_id=post_id,
            url=f"https://www.linkedin.com/feed/update/{post_id}",
            raw={"id": post_id, "media_category": category},
        )

    @tagged(ProfileResult, "LinkedIn profile lookup")
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        if ref.is_self and credentials:
            async with self.client() as client:
                response = await client.get(f"{API_URL}/userinfo", headers=self._headers(credentials.access_token))
            if response.is_error:
                return self.failure_from_response(response, ProfileResult, "LinkedIn profile lookup")
            member = response.json()
            return ProfileResult(success=True, profile=ProfileData(
                platform=self.platform.value,
                id=member.get("sub"),
                name=member.get("name"),
                profile_image=member.get("picture"),
            ))

        if ref.kind != "company":
            return ProfileResult.unsupported("LinkedIn public member profiles")
        token = self.settings.linkedin_access_token
        if is_placeholder(token):
            return ProfileResult.not_configured(self.platform)

        async with self.client() as client:
            response = await client.get(
                f"{API_URL}/organizations",
                headers=self._headers(token),
                params={"q": "vanityName", "vanityName": ref.username},
            )
            if response.is_error:
                return self.failure_from_response(response, ProfileResult, "LinkedIn organization lookup")
            elements = response.json().get("elements") or []
            if not elements:
                return ProfileResult.fail(f"LinkedIn company '{ref.username}' not found", ErrorCode.NOT_FOUND)
            org = elements[0]

            followers = await client.get(
                f"{API_URL}/networkSizes/urn:li:organization:{org['id']}",
                headers=self._headers(token),
                params={"edgeType": "CompanyFollowedByMember"},
            )
            follower_count = followers.json().get("firstDegreeSize") if not followers.is_error else None

        return ProfileResult(success=True, profile=ProfileData(
            platform=self.platform.value,
            id=str(org["id"]),
            username=org.get("vanityName") or ref.username,
            name=org.get("localizedName"),
            bio=org.get("localizedDescription") or "",
            followers=first_defined(follower_count),
            website=org.get("localizedWebsite"),
            niche=(org.get("localizedSpecialties") or [None])[0],
        ))

    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        return ContentResult.unsupported("LinkedIn post listings")

    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        totals = raw.get("totalShareStatistics") or {}
        return EngagementMetrics(
            likes=first_defined(totals.get("likeCount"), raw.get("likes"), raw.get("likeCount")),
            comments=first_defined(totals.get("commentCount"), raw.get("comments"), raw.get("commentCount")),
            shares=first_defined(totals.get("shareCount"), raw.get("shares")),
            views=first_defined(totals.get("impressionCount")),
        )
