"""
Pull engagement for the user's own connected accounts.
"""

import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..clock import isoformat, utcnow
from ..config import get_settings
from ..logging_config import get_logger
from ..models.post import Post
from ..models.user import User
from . import competitor_metrics as metrics
from .credentials import CredentialManager
from .platforms import build_adapters
from .platforms.base import (
    AdapterResult,
    BaseAdapter,
    ContentItem,
    ContentResult,
    ErrorCategory,
    ErrorCode,
    Platform,
    ProfileRef,
    ProfileResult,
    bounded,
)

logger = get_logger("engagement")

TOTAL_FIELDS = ("likes", "comments", "shares", "views")


def _error_entry(platform: Platform, failure: AdapterResult) -> Dict[str, Any]:
    return {"platform": platform.value, "success": False, **failure.error_dict()}


class EngagementSync:
    def __init__(self, db: Session, adapters: Optional[Dict[Platform, BaseAdapter]] = None, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.adapters = adapters if adapters is not None else build_adapters(self.settings)
        self.credentials = CredentialManager(db, self.settings)

    async def sync_platform(self, user: User, platform: Platform) -> Dict[str, Any]:
        adapter = self.adapters.get(platform)
        if adapter is None:
            return _error_entry(platform, AdapterResult.fail(
                f"{platform.label} is not supported", ErrorCode.UNSUPPORTED_PLATFORM, ErrorCategory.CONFIGURATION
            ))

        check = await self.credentials.ensure_fresh(user.id, platform, adapter)
        if check.failure is not None:
            return _error_entry(platform, check.failure)

        credentials = check.credentials
        timeout = self.settings.competitor_fetch_timeout_seconds
        ref = ProfileRef.own_account(platform, credentials.account_id)

        profile_result = await bounded(
            adapter.get_profile(ref, credentials), timeout, ProfileResult, f"{platform.label} profile lookup"
        )
        if not profile_result.success:
            logger.warning("Own profile lookup failed", platform=platform.value, reason=profile_result.error)
            return _error_entry(platform, profile_result)

        profile = profile_result.profile
        ref.resolved_id = profile.id or credentials.account_id
        warnings: List[str] = []
        content_result = await bounded(
            adapter.get_content(
                ref,
                self.settings.competitor_default_max_posts,
                self.settings.competitor_default_time_period_days,
                credentials,
            ),
            timeout,
            ContentResult,
            f"{platform.label} content lookup",
        )
        items = content_result.items if content_result.success else []
        if not content_result.success:
            warnings.append(f"Content unavailable: {content_result.error}")

        now = utcnow()
        posts_synced = self._apply_to_posts(user.id, platform, items)
        logger.info("Engagement synced", platform=platform.value, items=len(items), posts_synced=posts_synced)
        return {
            "platform": platform.value,
            "success": True,
            "profile": profile.to_dict(),
            "metrics": metrics.engagement_metrics(items, profile.followers),
            "posts_synced": posts_synced,
            "synced_at": isoformat(now),
            "warnings": warnings,
        }

    def _apply_to_posts(self, user_id: int, platform: Platform, items: List[ContentItem]) -> int:
        by_id = {item.id: item for item in items}
        if not by_id:
            return 0
        posts = (
            self.db.query(Post)
            .filter(
                Post.user_id == user_id,
                Post.platform == platform.value,
                Post.status == "published",
                Post.platform_post_id.in_(list(by_id)),
            )
            .all()
        )
        synced_at = isoformat(utcnow())
        for post in posts:
            post.analytics = {**by_id[post.platform_post_id].metrics.to_dict(), "synced_at": synced_at}
        self.db.commit()
        return len(posts)

    async def sync_all(self, user: User) -> Dict[str, Any]:
        platforms = [Platform(account.platform) for account in user.social_accounts
                     if account.platform in Platform._value2member_map_]
        results = await asyncio.gather(*(self.sync_platform(user, platform) for platform in platforms))

        totals = {name: 0 for name in TOTAL_FIELDS}
        totals["posts"] = 0
        for result in results:
            if not result["success"]:
                continue
            for name in TOTAL_FIELDS:
                totals[name] += result["metrics"][f"total_{name}"]
            totals["posts"] += result["metrics"]["total_posts"]

        return {
            "platforms": list(results),
            "totals": totals,
            "connected_platforms": [platform.value for platform in platforms],
            "synced_at": isoformat(utcnow()),
        }
