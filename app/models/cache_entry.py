"""
TTL-bounded key/value rows (competitor snapshots, OAuth PKCE verifiers).
"""
from sqlalchemy import Column, String, DateTime, JSON
from ..clock import utcnow
from ..database import Base


class CacheEntry(Base):
    __tablename__ = "cache_entries"

    key = Column(String(255), primary_key=True)
    namespace = Column(String(50), nullable=False, index=True)
    value = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
