"""
Tests for the TTL cache store.
"""
from app.clock import utcnow
from app.models.cache_entry import CacheEntry
from app.worker.cache_store import CacheStore, CompetitorCache, PkceStateStore
from app.worker.competitor_collector import CompetitorSnapshot
from app.worker.platforms.base import ProfileData


class TestCacheStore:
    """Reads, writes and expiry."""

    def test_set_and_get(self, db):
        store = CacheStore(db, "test", ttl_seconds=60)
        store.set("a", {"value": 1})

        assert store.get("a") == {"value": 1}
        assert store.get("missing") is None

    def test_expired_entry_is_ignored(self, db):
        store = CacheStore(db, "test", ttl_seconds=-1)
        store.set("a", {"value": 1})

        assert store.get("a") is None

    def test_namespaces_do_not_collide(self, db):
        CacheStore(db, "one", 60).set("k", 1)
        CacheStore(db, "two", 60).set("k", 2)

        assert CacheStore(db, "one", 60).get("k") == 1
        assert CacheStore(db, "two", 60).get("k") == 2

    def test_write_purges_expired(self, db):
        CacheStore(db, "test", ttl_seconds=-1).set("old", 1)
        CacheStore(db, "test", ttl_seconds=60).set("new", 2)

        keys = [entry.key for entry in db.query(CacheEntry).all()]
        assert keys == ["test:new"]


class TestPkceStateStore:
    """OAuth state is single use."""

    def test_pop_once(self, db):
        states = PkceStateStore(db, ttl_seconds=600)
        states.put("state-1", "verifier-1", 7, "twitter")

        assert states.pop("state-1") == {"verifier": "verifier-1", "user_id": 7, "platform": "twitter"}
        assert states.pop("state-1") is None

    def test_expired_state(self, db):
        states = PkceStateStore(db, ttl_seconds=-1)
        states.put("state-1", "verifier-1", 7, "twitter")

        assert states.pop("state-1") is None


class TestCompetitorCache:
    """Snapshot round trip through the cache."""

    def test_key_depends_on_options(self):
        url = "https://twitter.com/acme"
        assert CompetitorCache.key(url, 50, 30) != CompetitorCache.key(url, 20, 30)
        assert CompetitorCache.key(url, 50, 30) == CompetitorCache.key(url, 50, 30)

    def test_get_many(self, db):
        cache = CompetitorCache(db, ttl_seconds=3600)
        snapshot = CompetitorSnapshot(
            profile_url="https://twitter.com/acme",
            platform="twitter",
            username="acme",
            profile=ProfileData(platform="twitter", id="1", username="acme", followers=10),
            collected_at=utcnow(),
        )
        cache.set_many([snapshot], 50, 30)

        hits = cache.get_many(["https://twitter.com/acme", "https://twitter.com/other"], 50, 30)

        assert list(hits) == ["https://twitter.com/acme"]
        assert hits["https://twitter.com/acme"].profile.followers == 10
        assert cache.get_many(["https://twitter.com/acme"], 10, 30) == {}
