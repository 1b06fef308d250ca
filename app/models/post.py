"""
Post model for social media content targeted at one platform.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from ..clock import utcnow
from ..database import Base

POST_STATUSES = ("draft", "scheduled", "published", "failed")

ALLOWED_POST_TYPES = {
    "twitter": ("tweet", "thread", "poll"),
    "instagram": ("post", "story", "reel", "carousel"),
    "youtube": ("video", "live", "post"),
    "linkedin": ("post",),
    "facebook": ("post",),
}

PUBLISHABLE_STATUSES = ("draft", "scheduled", "failed")


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(300), nullable=True)
    content = Column(JSON, default=dict)  # caption, text, body, description
    platform = Column(String(20), nullable=False, index=True)
    post_type = Column(String(20), nullable=False)
    status = Column(String(20), default="draft", index=True)  # draft, scheduled, published, failed
    media = Column(JSON, default=list)
    platform_content = Column(JSON, default=dict)
    tags = Column(JSON, default=list)
    categories = Column(JSON, default=list)

    publishing = Column(JSON, nullable=True)
    published_at = Column(DateTime, nullable=True)
    platform_post_id = Column(String(255), nullable=True, index=True)

    scheduled_at = Column(DateTime, nullable=True, index=True)
    timezone = Column(String(64), default="UTC")
    recurrence = Column(JSON, nullable=True)  # enabled, frequency, days, time

    analytics = Column(JSON, nullable=True)  # likes, comments, shares, views
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="posts")

    def can_publish(self) -> bool:
        return self.status in PUBLISHABLE_STATUSES

    @property
    def retry_count(self) -> int:
        return (self.publishing or {}).get("retry_count", 0)
