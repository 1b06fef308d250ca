from pydantic import BaseModel, BeforeValidator, Field, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional
from datetime import datetime

from ..models.post import ALLOWED_POST_TYPES


def check_post_type(platform: str, post_type: str) -> None:
    """Raise ValueError unless post_type is allowed on platform."""
    if platform not in ALLOWED_POST_TYPES:
        raise ValueError(f"Unsupported platform '{platform}'. Allowed: {', '.join(ALLOWED_POST_TYPES)}")
    if post_type not in ALLOWED_POST_TYPES[platform]:
        raise ValueError(
            f"Post type '{post_type}' is not allowed for {platform}. "
            f"Allowed: {', '.join(ALLOWED_POST_TYPES[platform])}"
        )


class MediaItem(BaseModel):
    type: Literal["image", "video", "audio", "document"] = "image"
    url: Optional[str] = None
    storage: Optional[Literal["local", "gcs"]] = None
    storage_key: Optional[str] = None
    filename: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None
    thumbnail: Optional[str] = None


class Recurrence(BaseModel):
    enabled: bool = False
    frequency: Literal["daily", "weekly", "monthly"] = "weekly"
    days: List[int] = []
    time: Optional[str] = None


def _content_dict(value: Any) -> Any:
    if isinstance(value, str):
        return {"text": value}
    return value


# Plain strings are accepted as {"text": ...}
ContentField = Annotated[Dict[str, Any], BeforeValidator(_content_dict)]


class PostBase(BaseModel):
    title: Optional[str] = None
    content: ContentField = {}
    media: List[MediaItem] = []
    platform_content: Dict[str, Dict[str, Any]] = Field(default={}, alias="platformContent")
    tags: List[str] = []
    categories: List[str] = []
    timezone: str = "UTC"
    recurrence: Optional[Recurrence] = None

    class Config:
        populate_by_name = True


class PostCreate(PostBase):
    platform: str
    post_type: str = Field(alias="postType")

    @model_validator(mode="after")
    def check_type(self):
        check_post_type(self.platform, self.post_type)
        return self


class PostUpdate(BaseModel):
    """Platform is fixed at creation; everything else may change."""
    title: Optional[str] = None
    content: Optional[ContentField] = None
    post_type: Optional[str] = Field(default=None, alias="postType")
    media: Optional[List[MediaItem]] = None
    platform_content: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="platformContent")
    tags: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    timezone: Optional[str] = None
    recurrence: Optional[Recurrence] = None

    class Config:
        populate_by_name = True


class ScheduleCreate(PostCreate):
    scheduled_at: datetime = Field(alias="scheduledAt")


class ScheduleRequest(BaseModel):
    scheduled_at: datetime = Field(alias="scheduledAt")
    timezone: Optional[str] = None

    class Config:
        populate_by_name = True


class ValidateRequest(BaseModel):
    platform: str
    title: Optional[str] = None
    content: ContentField = {}
    media: List[MediaItem] = []
