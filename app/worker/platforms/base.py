"""
Platform adapter contract.

Every adapter method returns a result dataclass tagged with ``success``.
Provider HTTP errors, timeouts and transport failures are caught inside the
adapter and mapped onto that shape, so the publisher and the competitor
collector branch on results instead of exceptions.
"""

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Dict, List, Optional, Tuple, Type, TypeVar

import httpx

from ...clock import isoformat, parse_timestamp
from ...logging_config import platform_logger


class Platform(str, Enum):
    """Supported social platforms"""
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"

    @property
    def label(self) -> str:
        return {
            "twitter": "Twitter",
            "instagram": "Instagram",
            "youtube": "YouTube",
            "linkedin": "LinkedIn",
            "facebook": "Facebook",
        }[self.value]


class ErrorCategory(str, Enum):
    """How a failure should be treated by callers"""
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    UNSUPPORTED = "unsupported"


RETRYABLE_CATEGORIES = frozenset({ErrorCategory.TRANSIENT, ErrorCategory.RATE_LIMITED})


class ErrorCode:
    ACCOUNT_NOT_CONNECTED = "ACCOUNT_NOT_CONNECTED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    TOKEN_INVALID = "TOKEN_INVALID"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    UNSUPPORTED_FEATURE = "UNSUPPORTED_FEATURE"
    MEDIA_REQUIRED = "MEDIA_REQUIRED"
    INVALID_CONTENT = "INVALID_CONTENT"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_URL = "INVALID_URL"


_CODE_FOR_CATEGORY = {
    ErrorCategory.RATE_LIMITED: ErrorCode.RATE_LIMITED,
    ErrorCategory.AUTHENTICATION: ErrorCode.TOKEN_INVALID,
    ErrorCategory.TRANSIENT: ErrorCode.PROVIDER_ERROR,
    ErrorCategory.REJECTED: ErrorCode.PROVIDER_ERROR,
}


def classify_status(status_code: Optional[int]) -> ErrorCategory:
    """Default HTTP status classification shared by all adapters."""
    if status_code is None:
        return ErrorCategory.TRANSIENT
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if status_code >= 500 or status_code == 408:
        return ErrorCategory.TRANSIENT
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION
    return ErrorCategory.REJECTED


# ============================================================
# RESULTS
# ============================================================

R = TypeVar("R", bound="AdapterResult")


@dataclass
class AdapterResult:
    """Tagged outcome of one adapter call"""
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    category: Optional[ErrorCategory] = None
    status_code: Optional[int] = None
    provider_code: Optional[Any] = None
    requires_reconnection: bool = False
    raw: Optional[Dict[str, Any]] = None

    @classmethod
    def fail(
        cls: Type[R],
        error: str,
        error_code: str = ErrorCode.PROVIDER_ERROR,
        category: ErrorCategory = ErrorCategory.REJECTED,
        **kwargs,
    ) -> R:
        return cls(success=False, error=error, error_code=error_code, category=category, **kwargs)

    @classmethod
    def unsupported(cls: Type[R], feature: str) -> R:
        return cls.fail(f"{feature} is not supported", ErrorCode.UNSUPPORTED_FEATURE, ErrorCategory.UNSUPPORTED)

    @classmethod
    def not_configured(cls: Type[R], platform: Platform) -> R:
        return cls.fail(
            f"{platform.label} API credentials are not configured",
            ErrorCode.NOT_CONFIGURED,
            ErrorCategory.CONFIGURATION,
        )

    @property
    def retryable(self) -> bool:
        return not self.success and self.category in RETRYABLE_CATEGORIES

    def error_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "error_code": self.error_code,
            "category": self.category.value if self.category else None,
            "status_code": self.status_code,
            "requires_reconnection": self.requires_reconnection,
        }


@dataclass
class MediaHandle:
    """Provider-side reference to an uploaded (or staged) asset"""
    media_id: Optional[str]
    media_type: str
    mime_type: Optional[str] = None
    url: Optional[str] = None
    data: Optional[bytes] = field(default=None, repr=False)
    thumbnail: Optional["MediaAsset"] = field(default=None, repr=False)


@dataclass
class MediaUploadResult(AdapterResult):
    media_id: Optional[str] = None
    handle: Optional[MediaHandle] = None


@dataclass
class PublishResult(AdapterResult):
    external_id: Optional[str] = None
    url: Optional[str] = None


@dataclass
class TokenRefreshResult(AdapterResult):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass
class ProfileResult(AdapterResult):
    profile: Optional["ProfileData"] = None


@dataclass
class ContentResult(AdapterResult):
    items: List["ContentItem"] = field(default_factory=list)


# ============================================================
# NORMALIZED RECORDS
# ============================================================

@dataclass
class EngagementMetrics:
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0

    @property
    def total(self) -> int:
        return self.likes + self.comments + self.shares

    def to_dict(self) -> Dict[str, int]:
        return {
            "likes": self.likes,
            "comments": self.comments,
            "shares": self.shares,
            "views": self.views,
            "engagement": self.total,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngagementMetrics":
        return cls(
            likes=data.get("likes", 0),
            comments=data.get("comments", 0),
            shares=data.get("shares", 0),
            views=data.get("views", 0),
        )


@dataclass
class ContentItem:
    id: str
    text: str = ""
    created_at: Optional[datetime] = None
    content_type: str = "post"
    metrics: EngagementMetrics = field(default_factory=EngagementMetrics)
    url: Optional[str] = None
    duration_seconds: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "created_at": isoformat(self.created_at),
            "content_type": self.content_type,
            "metrics": self.metrics.to_dict(),
            "url": self.url,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentItem":
        return cls(
            id=data["id"],
            text=data.get("text") or "",
            created_at=parse_timestamp(data.get("created_at")),
            content_type=data.get("content_type", "post"),
            metrics=EngagementMetrics.from_dict(data.get("metrics") or {}),
            url=data.get("url"),
            duration_seconds=data.get("duration_seconds"),
        )


@dataclass
class ProfileData:
    platform: str
    id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    bio: str = ""
    followers: int = 0
    following: int = 0
    posts_count: int = 0
    verified: bool = False
    website: Optional[str] = None
    location: Optional[str] = None
    niche: Optional[str] = None
    profile_image: Optional[str] = None
    created_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "bio": self.bio,
            "followers": self.followers,
            "following": self.following,
            "posts_count": self.posts_count,
            "verified": self.verified,
            "website": self.website,
            "location": self.location,
            "niche": self.niche,
            "profile_image": self.profile_image,
            "created_at": self.created_at,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileData":
        return cls(**{key: value for key, value in data.items() if key in cls.__dataclass_fields__})


@dataclass
class ProfileRef:
    """What to look up: a public handle, or the connected account itself"""
    platform: Platform
    username: Optional[str] = None
    kind: str = "handle"  # handle, channel, custom, user, personal, company, self
    resolved_id: Optional[str] = None

    @classmethod
    def own_account(cls, platform: Platform, account_id: Optional[str] = None) -> "ProfileRef":
        return cls(platform=platform, kind="self", resolved_id=account_id)

    @property
    def is_self(self) -> bool:
        return self.kind == "self"


@dataclass
class AccountCredentials:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    account_id: Optional[str] = None
    username: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_account(cls, account) -> "AccountCredentials":
        return cls(
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            expires_at=account.expires_at,
            account_id=account.account_id,
            username=account.username,
            extra=dict(account.extra or {}),
        )


@dataclass
class MediaAsset:
    """Resolved bytes of one post attachment"""
    data: bytes = field(repr=False)
    mime_type: str
    filename: str = "upload"
    public_url: Optional[str] = None
    declared_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def media_type(self) -> str:
        if self.declared_type:
            return self.declared_type
        major = (self.mime_type or "").split("/")[0]
        return major if major in ("image", "video", "audio") else "document"


@dataclass
class NormalizedContent:
    text: str
    title: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)  # platform_content for the target platform


def guess_mime_type(filename: Optional[str], default: str = "application/octet-stream") -> str:
    if not filename:
        return default
    return mimetypes.guess_type(filename)[0] or default


# ============================================================
# HELPERS
# ============================================================

def first_defined(*values, default: int = 0) -> int:
    """First value that is not None, coerced to int."""
    for value in values:
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return default


def dig(data: Any, *path) -> Any:
    """Nested lookup that tolerates missing keys and non-dict levels."""
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"body": response.text[:500]}
    return data if isinstance(data, dict) else {"data": data}


async def bounded(awaitable: Awaitable[R], timeout: float, result_cls: Type[R], action: str) -> R:
    """Bound an adapter call; a timeout becomes a transient failure."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        return result_cls.fail(
            f"{action} timed out after {timeout:g}s",
            ErrorCode.TIMEOUT,
            ErrorCategory.TRANSIENT,
        )


def tagged(result_cls: Type[AdapterResult], action: str):
    """Map anything an adapter method raises onto a failed ``result_cls``."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except Exception as exc:
                return self.failure_from_exception(exc, result_cls, action)
        return wrapper
    return decorator


# ============================================================
# ADAPTER
# ============================================================

class BaseAdapter(ABC):
    """Common plumbing for the per-platform adapters."""

    platform: Platform
    requires_media = False
    supports_thumbnails = False

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.timeout = settings.provider_timeout_seconds
        self._transport = transport
        self.log = platform_logger.bind(platform=self.platform.value)

    def client(self, timeout: Optional[float] = None, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
            **kwargs,
        )

    # ---- contract ------------------------------------------------------

    @abstractmethod
    def is_configured(self) -> bool:
        """App-level credentials present and not placeholders."""

    @abstractmethod
    async def upload_media(self, credentials: AccountCredentials, asset: MediaAsset) -> MediaUploadResult:
        ...

    @abstractmethod
    async def publish(
        self,
        credentials: AccountCredentials,
        post_type: str,
        content: NormalizedContent,
        media: List[MediaHandle],
    ) -> PublishResult:
        ...

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenRefreshResult:
        ...

    @abstractmethod
    async def get_profile(self, ref: ProfileRef, credentials: Optional[AccountCredentials] = None) -> ProfileResult:
        ...

    @abstractmethod
    async def get_content(
        self,
        ref: ProfileRef,
        limit: int,
        since_days: int,
        credentials: Optional[AccountCredentials] = None,
    ) -> ContentResult:
        ...

    @abstractmethod
    def normalize_metrics(self, raw: Dict[str, Any]) -> EngagementMetrics:
        """Resolve this platform's metric field names into EngagementMetrics."""

    # ---- error mapping -------------------------------------------------

    def classify_failure(self, result: AdapterResult) -> ErrorCategory:
        """Classifier handed to the retry policy."""
        if result.category is not None:
            return result.category
        return classify_status(result.status_code)

    def category_for(self, status_code: Optional[int], provider_code: Any) -> ErrorCategory:
        return classify_status(status_code)

    def provider_error(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Any]:
        """(message, provider code) from an error body."""
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message"), error.get("code")
        if isinstance(error, str):
            return payload.get("error_description") or error, None
        return payload.get("detail") or payload.get("message"), None

    def failure_from_response(self, response: httpx.Response, result_cls: Type[R], action: str) -> R:
        payload = _payload(response)
        message, provider_code = self.provider_error(payload)
        category = self.category_for(response.status_code, provider_code)
        self.log.warning(
            f"{action} rejected by provider",
            status_code=response.status_code,
            provider_code=provider_code,
            category=category.value,
        )
        return result_cls.fail(
            message or f"{action} failed with HTTP {response.status_code}",
            _CODE_FOR_CATEGORY.get(category, ErrorCode.PROVIDER_ERROR),
            category,
            status_code=response.status_code,
            provider_code=provider_code,
            requires_reconnection=category == ErrorCategory.AUTHENTICATION,
            raw=payload,
        )

    def failure_from_exception(self, exc: Exception, result_cls: Type[R], action: str) -> R:
        if isinstance(exc, httpx.HTTPStatusError):
            return self.failure_from_response(exc.response, result_cls, action)
        if isinstance(exc, httpx.TimeoutException):
            return result_cls.fail(f"{action} timed out", ErrorCode.TIMEOUT, ErrorCategory.TRANSIENT)
        if isinstance(exc, httpx.TransportError):
            return result_cls.fail(f"{action} failed: {exc}", ErrorCode.NETWORK_ERROR, ErrorCategory.TRANSIENT)
        self.log.error(f"{action} failed unexpectedly", error=exc)
        return result_cls.fail(f"{action} failed: {exc}", ErrorCode.PROVIDER_ERROR, ErrorCategory.REJECTED)
