"""
Publish orchestration for one post.

An attempt checks (and if needed refreshes) the author's credentials, resolves
and uploads attachments, then calls the adapter's publish. The retry policy
wraps the whole attempt; the outcome is written back onto the post row.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..clock import isoformat, to_naive_utc, utcnow
from ..config import get_settings
from ..logging_config import StructuredLogger, timed, worker_logger
from ..models.post import ALLOWED_POST_TYPES, Post
from ..models.user import User
from .credentials import CredentialManager
from .media_loader import MediaLoader
from .platforms import build_adapters
from .platforms.base import (
    AccountCredentials,
    AdapterResult,
    BaseAdapter,
    ErrorCategory,
    ErrorCode,
    MediaHandle,
    MediaUploadResult,
    NormalizedContent,
    Platform,
    PublishResult,
    bounded,
)
from .retry import RetryPolicy

PLACEHOLDER_TEXT = "Shared via Postflow"
TEXT_FIELDS = ("caption", "text", "body", "description")


def normalize_content(post: Post) -> NormalizedContent:
    """Text by precedence: caption, then free-text fields, then title, then a placeholder."""
    content = post.content if isinstance(post.content, dict) else ({"text": post.content} if post.content else {})
    text = None
    for candidate in [content.get(key) for key in TEXT_FIELDS] + [post.title, content.get("title")]:
        if isinstance(candidate, str) and candidate.strip():
            text = candidate.strip()
            break
    options = (post.platform_content or {}).get(post.platform) or {}
    return NormalizedContent(
        text=text or PLACEHOLDER_TEXT,
        title=post.title or content.get("title"),
        tags=list(post.tags or []),
        options=dict(options),
    )


# platform -> (max characters, over-limit is an error rather than a warning)
TEXT_LIMITS = {
    "twitter": (280, True),
    "instagram": (2200, True),
    "facebook": (63206, True),
    "linkedin": (3000, False),
    "youtube": (5000, False),
}
MEDIA_REQUIRED_PLATFORMS = ("instagram", "youtube")


def validate_content(platform: str, text: str, media_count: int = 0) -> Dict[str, Any]:
    errors: List[str] = []
    warnings: List[str] = []
    label = Platform(platform).label if platform in Platform._value2member_map_ else platform

    if platform not in TEXT_LIMITS:
        errors.append(f"Unsupported platform: {platform}")
    else:
        limit, hard = TEXT_LIMITS[platform]
        length = len(text or "")
        if length > limit:
            noun = "Description" if platform == "youtube" else "Content"
            message = f"{noun} exceeds {label}'s {limit} character limit ({length} characters)"
            (errors if hard else warnings).append(message)

    if platform in MEDIA_REQUIRED_PLATFORMS and media_count == 0:
        errors.append(f"{label} posts require at least one media item")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


@dataclass
class PublishOutcome:
    success: bool
    post: Post
    result: Optional[AdapterResult] = None
    attempts: int = 0
    warnings: List[str] = field(default_factory=list)
    already_published: bool = False
    published_immediately: bool = False
    scheduled: bool = False

    @property
    def retry_count(self) -> int:
        return max(self.attempts - 1, 0)


@dataclass
class UploadedMedia:
    """Media handles kept across the attempts of one publish, by attachment index."""
    handles: Dict[int, MediaHandle] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def find_posts_ready_for_publishing(db: Session, now: Optional[datetime] = None, limit: int = 100) -> List[Post]:
    return (
        db.query(Post)
        .filter(Post.status == "scheduled", Post.scheduled_at <= (now or utcnow()))
        .order_by(Post.scheduled_at)
        .limit(limit)
        .all()
    )


class PublishOrchestrator:
    def __init__(
        self,
        db: Session,
        adapters: Optional[Dict[Platform, BaseAdapter]] = None,
        media_loader: Optional[MediaLoader] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings=None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.adapters = adapters if adapters is not None else build_adapters(self.settings)
        self.media_loader = media_loader or MediaLoader(self.settings)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.credentials = CredentialManager(db, self.settings)

    def _adapter_for(self, post: Post):
        """(adapter, None) or (None, configuration failure)"""
        try:
            platform = Platform(post.platform)
        except ValueError:
            return None, AdapterResult.fail(
                f"Unsupported platform: {post.platform}",
                ErrorCode.UNSUPPORTED_PLATFORM,
                ErrorCategory.CONFIGURATION,
            )
        if post.post_type not in ALLOWED_POST_TYPES.get(platform.value, ()):
            return None, AdapterResult.fail(
                f"Post type '{post.post_type}' is not supported for {platform.label}",
                ErrorCode.UNSUPPORTED_FEATURE,
                ErrorCategory.CONFIGURATION,
            )
        adapter = self.adapters.get(platform)
        if adapter is None:
            return None, AdapterResult.fail(
                f"{platform.label} publishing is not available",
                ErrorCode.UNSUPPORTED_PLATFORM,
                ErrorCategory.CONFIGURATION,
            )
        return adapter, None

    @timed(worker_logger)
    async def publish(self, post: Post, user: User) -> PublishOutcome:
        log = worker_logger.bind(post_id=post.id, platform=post.platform, post_type=post.post_type)
        if post.status == "published":
            return PublishOutcome(
                success=True,
                post=post,
                result=PublishResult(success=True, external_id=post.platform_post_id),
                already_published=True,
            )

        adapter, failure = self._adapter_for(post)
        warnings: List[str] = []
        if failure is not None:
            result, attempts = failure, 1
        else:
            media = UploadedMedia()

            async def attempt() -> AdapterResult:
                warnings[:] = media.warnings
                return await self._attempt(post, user, adapter, media, warnings, log)

            result, attempts = await self.retry_policy.run(attempt, adapter.classify_failure, log)

        self._record(post, result, attempts, warnings)
        if result.success:
            log.info("Post published", external_id=getattr(result, "external_id", None), attempts=attempts)
        else:
            log.warning(
                "Post publish failed",
                error_code=result.error_code,
                category=result.category.value if result.category else None,
                reason=result.error,
                attempts=attempts,
            )
            if result.requires_reconnection and failure is None:
                self.credentials.flag_reconnection(user.id, adapter.platform)

        return PublishOutcome(success=result.success, post=post, result=result, attempts=attempts, warnings=list(warnings))

    async def _attempt(
        self,
        post: Post,
        user: User,
        adapter: BaseAdapter,
        media: UploadedMedia,
        warnings: List[str],
        log: StructuredLogger,
    ) -> AdapterResult:
        platform = adapter.platform
        check = await self.credentials.ensure_fresh(user.id, platform, adapter)
        if check.failure is not None:
            return check.failure

        handles, upload_failure = await self._upload_media(post, check.credentials, adapter, media, warnings, log)
        if post.media and not handles and adapter.requires_media and upload_failure is not None:
            # Nothing usable to publish yet; let the policy decide on retrying
            return upload_failure

        content = normalize_content(post)
        timeout = self.settings.media_upload_timeout_seconds if handles else self.settings.provider_timeout_seconds
        return await bounded(
            adapter.publish(check.credentials, post.post_type, content, handles),
            timeout,
            PublishResult,
            f"{platform.label} publish",
        )

    async def _upload_media(
        self,
        post: Post,
        credentials: AccountCredentials,
        adapter: BaseAdapter,
        media: UploadedMedia,
        warnings: List[str],
        log: StructuredLogger,
    ):
        """Upload attachments with bounded concurrency; failed items are skipped.

        Items uploaded by an earlier attempt are reused, so a retried publish
        never sends the same file twice.
        """
        items: List[Dict[str, Any]] = list(post.media or [])
        if not items:
            return [], None

        semaphore = asyncio.Semaphore(max(1, self.settings.media_upload_concurrency))
        failures: List[AdapterResult] = []

        async def upload(index: int, item: Dict[str, Any]) -> None:
            name = item.get("filename") or item.get("url") or f"#{index + 1}"
            async with semaphore:
                asset = await self.media_loader.load(item)
                if asset is None:
                    warnings.append(f"Media {name} could not be loaded and was skipped")
                    log.warning("Media skipped", media=name, reason="unresolvable")
                    return
                result = await bounded(
                    adapter.upload_media(credentials, asset),
                    self.settings.media_upload_timeout_seconds,
                    MediaUploadResult,
                    "Media upload",
                )
            if not result.success:
                failures.append(result)
                warnings.append(f"Media {name} upload failed: {result.error}")
                log.warning("Media skipped", media=name, reason=result.error, error_code=result.error_code)
                return

            handle = result.handle
            if adapter.supports_thumbnails and item.get("thumbnail"):
                handle.thumbnail = await self.media_loader.load_thumbnail(item)
                if handle.thumbnail is None:
                    message = f"Thumbnail for media {name} could not be loaded"
                    media.warnings.append(message)
                    warnings.append(message)
                    log.warning("Thumbnail skipped", media=name)
            media.handles[index] = handle

        pending = [(index, item) for index, item in enumerate(items) if index not in media.handles]
        if pending:
            await asyncio.gather(*(upload(index, item) for index, item in pending))
        retryable = next((failure for failure in failures if failure.retryable), None)
        return [media.handles[index] for index in sorted(media.handles)], retryable

    def _record(self, post: Post, result: AdapterResult, attempts: int, warnings: List[str]) -> None:
        now = utcnow()
        previous = dict(post.publishing or {})
        retry_count = previous.get("retry_count", 0) + max(attempts - 1, 0)

        if result.success:
            post.status = "published"
            post.published_at = now
            post.platform_post_id = result.external_id
            post.publishing = {
                "published_at": isoformat(now),
                "platform_post_id": result.external_id,
                "platform_url": getattr(result, "url", None),
                "platform_data": result.raw,
                "retry_count": retry_count,
                "attempts": attempts,
                "error": None,
                "warnings": warnings,
            }
        else:
            post.status = "failed"
            post.publishing = {
                **previous,
                "error": result.error,
                "error_code": result.error_code,
                "category": result.category.value if result.category else None,
                "failed_at": isoformat(now),
                "retry_count": retry_count,
                "attempts": attempts,
                "warnings": warnings,
            }
        self.db.commit()
        self.db.refresh(post)

    async def schedule(self, post: Post, user: User, scheduled_at: datetime) -> PublishOutcome:
        """Publish now when the time has already come, otherwise park the post as scheduled."""
        scheduled_at = to_naive_utc(scheduled_at)
        post.scheduled_at = scheduled_at
        if scheduled_at <= utcnow():
            outcome = await self.publish(post, user)
            outcome.published_immediately = True
            return outcome

        post.status = "scheduled"
        self.db.commit()
        self.db.refresh(post)
        worker_logger.info("Post scheduled", post_id=post.id, scheduled_at=isoformat(scheduled_at))
        return PublishOutcome(success=True, post=post, scheduled=True)

    async def publish_due_posts(self, limit: int = 100) -> Dict[str, Any]:
        """Entry point for an external trigger (cron, queue consumer)."""
        results = []
        for post in find_posts_ready_for_publishing(self.db, limit=limit):
            outcome = await self.publish(post, post.user)
            results.append({
                "post_id": post.id,
                "platform": post.platform,
                "success": outcome.success,
                "error": None if outcome.success else outcome.result.error,
            })
        published = sum(1 for entry in results if entry["success"])
        worker_logger.info("Due posts processed", processed=len(results), published=published)
        return {
            "processed": len(results),
            "published": published,
            "failed": len(results) - published,
            "results": results,
        }
