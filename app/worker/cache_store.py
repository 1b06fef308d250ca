"""
TTL key/value store on the cache_entries table.

Used for competitor snapshots and OAuth PKCE verifiers. Expired rows are
ignored on read and purged on write.
"""

import hashlib
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..clock import utcnow
from ..logging_config import get_logger
from ..models.cache_entry import CacheEntry
from .competitor_collector import CompetitorSnapshot

logger = get_logger("cache")


class CacheStore:
    def __init__(self, db: Session, namespace: str, ttl_seconds: int):
        self.db = db
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        entry = self.db.get(CacheEntry, self._key(key))
        if entry is None or entry.expires_at <= utcnow():
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self.purge_expired()
        now = utcnow()
        entry = self.db.get(CacheEntry, self._key(key))
        if entry is None:
            entry = CacheEntry(key=self._key(key), namespace=self.namespace)
            self.db.add(entry)
        entry.value = value
        entry.created_at = now
        entry.expires_at = now + timedelta(seconds=self.ttl_seconds)
        self.db.commit()

    def pop(self, key: str) -> Optional[Any]:
        """Read and delete in one step; the value is usable once."""
        entry = self.db.get(CacheEntry, self._key(key))
        if entry is None:
            return None
        value = entry.value if entry.expires_at > utcnow() else None
        self.db.delete(entry)
        self.db.commit()
        return value

    def purge_expired(self) -> int:
        removed = (
            self.db.query(CacheEntry)
            .filter(CacheEntry.namespace == self.namespace, CacheEntry.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        if removed:
            logger.debug("Purged expired cache entries", namespace=self.namespace, count=removed)
        return removed


class CompetitorCache:
    """Snapshots keyed by URL and collection options."""

    namespace = "competitor"

    def __init__(self, db: Session, ttl_seconds: int):
        self.store = CacheStore(db, self.namespace, ttl_seconds)

    @staticmethod
    def key(profile_url: str, max_posts: int, time_period_days: int) -> str:
        raw = f"{profile_url}|{max_posts}|{time_period_days}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get_many(self, profile_urls: Iterable[str], max_posts: int, time_period_days: int) -> Dict[str, CompetitorSnapshot]:
        hits = {}
        for url in profile_urls:
            cached = self.store.get(self.key(url, max_posts, time_period_days))
            if cached is not None:
                hits[url] = CompetitorSnapshot.from_dict(cached)
        return hits

    def set_many(self, snapshots: List[CompetitorSnapshot], max_posts: int, time_period_days: int) -> None:
        for snapshot in snapshots:
            self.store.set(self.key(snapshot.profile_url, max_posts, time_period_days), snapshot.to_dict())


class PkceStateStore:
    """OAuth ``state`` -> code verifier, single use."""

    namespace = "oauth_state"

    def __init__(self, db: Session, ttl_seconds: int):
        self.store = CacheStore(db, self.namespace, ttl_seconds)

    def put(self, state: str, verifier: str, user_id: int, platform: str) -> None:
        self.store.set(state, {"verifier": verifier, "user_id": user_id, "platform": platform})

    def pop(self, state: str) -> Optional[Dict[str, Any]]:
        return self.store.pop(state)
