"""
Per-platform credential bundle owned by a user.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..clock import utcnow
from ..database import Base


class SocialAccount(Base):
    __tablename__ = "social_accounts"
    __table_args__ = (UniqueConstraint("user_id", "platform", name="uq_social_account_user_platform"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(20), nullable=False)  # twitter, instagram, youtube, linkedin, facebook
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    account_id = Column(String(255), nullable=True)  # IG business id, LinkedIn person id, page id...
    username = Column(String(255), nullable=True)
    extra = Column(JSON, default=dict)
    requires_reconnection = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="social_accounts")

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at
