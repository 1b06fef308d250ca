"""
Competitor data collection.

A profile URL is parsed into a platform and handle, then the adapter's read
path supplies the public profile and recent content. Profiles are collected
in small concurrent batches with a cooldown between batches.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from ..clock import isoformat, parse_timestamp, utcnow
from ..config import get_settings
from ..logging_config import get_logger
from . import competitor_metrics as metrics
from .platforms import build_adapters
from .platforms.base import (
    BaseAdapter,
    ContentItem,
    ContentResult,
    ErrorCode,
    Platform,
    ProfileData,
    ProfileRef,
    ProfileResult,
    bounded,
)

logger = get_logger("competitors")

HOST_PLATFORMS = {
    "twitter.com": Platform.TWITTER,
    "x.com": Platform.TWITTER,
    "instagram.com": Platform.INSTAGRAM,
    "youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
    "linkedin.com": Platform.LINKEDIN,
    "facebook.com": Platform.FACEBOOK,
    "fb.com": Platform.FACEBOOK,
}

YOUTUBE_PREFIXES = {"channel": "channel", "c": "custom", "user": "user"}
LINKEDIN_PREFIXES = {"in": "personal", "company": "company"}


class ProfileUrlError(ValueError):
    def __init__(self, message: str = "Unsupported platform or invalid URL format"):
        super().__init__(message)


def platform_for_url(url: str) -> Optional[Platform]:
    try:
        host = (urlparse(url.strip()).hostname or "").lower()
    except (AttributeError, ValueError):
        return None
    for prefix in ("www.", "m."):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return HOST_PLATFORMS.get(host)


def parse_profile_url(url: str) -> ProfileRef:
    """Map a public profile URL onto the platform and handle to look up."""
    if not isinstance(url, str) or not url.strip():
        raise ProfileUrlError()
    platform = platform_for_url(url)
    if platform is None:
        raise ProfileUrlError()

    segments = [segment for segment in urlparse(url.strip()).path.split("/") if segment]
    if not segments:
        raise ProfileUrlError()

    if platform == Platform.YOUTUBE:
        if segments[0].startswith("@") and len(segments[0]) > 1:
            return ProfileRef(platform, segments[0][1:], kind="handle")
        kind = YOUTUBE_PREFIXES.get(segments[0])
        if kind and len(segments) > 1:
            return ProfileRef(platform, segments[1], kind=kind)
        raise ProfileUrlError()

    if platform == Platform.LINKEDIN:
        kind = LINKEDIN_PREFIXES.get(segments[0])
        if kind and len(segments) > 1:
            return ProfileRef(platform, segments[1], kind=kind)
        raise ProfileUrlError()

    username = segments[0].lstrip("@")
    if not username:
        raise ProfileUrlError()
    return ProfileRef(platform, username)


# ============================================================
# RESULTS
# ============================================================

@dataclass
class CompetitorSnapshot:
    """Collected profile, content summary and engagement aggregates for one URL"""
    profile_url: str
    platform: str
    username: Optional[str]
    profile: ProfileData
    content: Dict[str, Any] = field(default_factory=dict)
    engagement: Dict[str, Any] = field(default_factory=dict)
    data_quality: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    collected_at: datetime = field(default_factory=utcnow)

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "profile_url": self.profile_url,
            "platform": self.platform,
            "username": self.username,
            "profile": self.profile.to_dict(),
            "content": self.content,
            "engagement": self.engagement,
            "data_quality": self.data_quality,
            "warnings": self.warnings,
            "collected_at": isoformat(self.collected_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompetitorSnapshot":
        return cls(
            profile_url=data["profile_url"],
            platform=data["platform"],
            username=data.get("username"),
            profile=ProfileData.from_dict(data.get("profile") or {"platform": data["platform"]}),
            content=data.get("content") or {},
            engagement=data.get("engagement") or {},
            data_quality=data.get("data_quality") or {},
            warnings=list(data.get("warnings") or []),
            collected_at=parse_timestamp(data.get("collected_at")) or utcnow(),
        )


@dataclass
class CollectionError:
    profile_url: str
    platform: Optional[str]
    error: str
    error_code: Optional[str] = None
    collected_at: datetime = field(default_factory=utcnow)

    success = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "profile_url": self.profile_url,
            "platform": self.platform,
            "error": self.error,
            "error_code": self.error_code,
            "collected_at": isoformat(self.collected_at),
        }


CollectionOutcome = Union[CompetitorSnapshot, CollectionError]


def recent_items(items: List[ContentItem], time_period_days: int, max_posts: int) -> List[ContentItem]:
    """Items inside the window, newest first, capped. Undated items sort last."""
    cutoff = utcnow() - timedelta(days=time_period_days)
    kept = [item for item in items if item.created_at is None or item.created_at >= cutoff]
    kept.sort(key=lambda item: item.created_at or datetime.min, reverse=True)
    return kept[:max_posts]


# ============================================================
# COLLECTOR
# ============================================================

class CompetitorCollector:
    def __init__(self, adapters: Optional[Dict[Platform, BaseAdapter]] = None, settings=None):
        self.settings = settings or get_settings()
        self.adapters = adapters if adapters is not None else build_adapters(self.settings)

    async def collect(self, profile_url: str, max_posts: int, time_period_days: int) -> CollectionOutcome:
        try:
            ref = parse_profile_url(profile_url)
        except ProfileUrlError as exc:
            return CollectionError(profile_url, platform_for_url(profile_url) if isinstance(profile_url, str) else None,
                                   str(exc), ErrorCode.INVALID_URL)

        platform = ref.platform
        adapter = self.adapters.get(platform)
        if adapter is None:
            return CollectionError(profile_url, platform.value, f"{platform.label} is not supported",
                                   ErrorCode.UNSUPPORTED_PLATFORM)

        log = logger.bind(platform=platform.value, username=ref.username)
        timeout = self.settings.competitor_fetch_timeout_seconds

        profile_result = await bounded(
            adapter.get_profile(ref), timeout, ProfileResult, f"{platform.label} profile lookup"
        )
        if not profile_result.success:
            log.warning("Profile lookup failed", reason=profile_result.error, error_code=profile_result.error_code)
            return CollectionError(profile_url, platform.value, profile_result.error, profile_result.error_code)

        profile = profile_result.profile
        ref.resolved_id = profile.id
        warnings: List[str] = []

        content_result = await bounded(
            adapter.get_content(ref, max_posts, time_period_days),
            timeout,
            ContentResult,
            f"{platform.label} content lookup",
        )
        if content_result.success:
            items = recent_items(content_result.items, time_period_days, max_posts)
        else:
            log.warning("Content lookup failed", reason=content_result.error)
            warnings.append(f"Content unavailable: {content_result.error}")
            items = []

        snapshot = CompetitorSnapshot(
            profile_url=profile_url,
            platform=platform.value,
            username=profile.username or ref.username,
            profile=profile,
            content=metrics.content_patterns(items, time_period_days),
            engagement=metrics.engagement_metrics(items, profile.followers),
            data_quality=metrics.data_quality(profile, items),
            warnings=warnings,
        )
        log.info("Competitor collected", items=len(items), data_quality=snapshot.data_quality["score"])
        return snapshot

    async def collect_many(
        self,
        profile_urls: List[str],
        max_posts: Optional[int] = None,
        time_period_days: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> List[CollectionOutcome]:
        """One outcome per URL, in input order."""
        max_posts = max_posts or self.settings.competitor_default_max_posts
        time_period_days = time_period_days or self.settings.competitor_default_time_period_days
        size = max(1, concurrency or self.settings.competitor_batch_size)

        results: List[CollectionOutcome] = []
        for start in range(0, len(profile_urls), size):
            batch = profile_urls[start:start + size]
            outcomes = await asyncio.gather(
                *(self.collect(url, max_posts, time_period_days) for url in batch),
                return_exceptions=True,
            )
            for url, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("Competitor collection crashed", error=outcome, profile_url=url)
                    outcome = CollectionError(url, None, f"Collection failed: {outcome}", ErrorCode.PROVIDER_ERROR)
                results.append(outcome)

            if start + size < len(profile_urls):
                await asyncio.sleep(self.settings.competitor_batch_delay_seconds)
        return results
