"""Unit tests for the versioned domain cache."""
from sqlmodel import select

from gst_invoicing.core.cache import DomainCache, InMemoryCache, get_cache, invalidate_on_commit
from gst_invoicing.models.master import Godown

from conftest import FakeClock


class TestDomainCache:
    def test_set_then_get(self):
        cache = DomainCache(InMemoryCache())
        cache.set(cache.make_key("stock", "list", 1, 10), {"data": [1, 2]}, ttl=60)
        assert cache.get(cache.make_key("stock", "list", 1, 10)) == {"data": [1, 2]}
        assert cache.get(cache.make_key("stock", "list", 2, 10)) is None

    def test_invalidate_bumps_version(self):
        cache = DomainCache(InMemoryCache())
        old_key = cache.make_key("stock", "list")
        cache.set(old_key, [1], ttl=60)
        assert cache.invalidate("stock") == 1
        assert cache.make_key("stock", "list") != old_key
        assert cache.get(cache.make_key("stock", "list")) is None

    def test_store_under_retired_version_is_never_served(self):
        cache = DomainCache(InMemoryCache())
        key = cache.make_key("stock", "list")
        cache.invalidate("stock")
        cache.set(key, ["stale"], ttl=60)
        assert cache.get(cache.make_key("stock", "list")) is None

    def test_domains_are_independent(self):
        cache = DomainCache(InMemoryCache())
        cache.set(cache.make_key("masters:units", "list"), ["KGS"], ttl=60)
        cache.invalidate("masters:godowns")
        assert cache.get(cache.make_key("masters:units", "list")) == ["KGS"]

    def test_ttl_expiry(self):
        clock = FakeClock(now=100.0)
        backend = InMemoryCache(clock=clock)
        cache = DomainCache(backend)
        key = cache.make_key("invoices", "list")
        cache.set(key, "x", ttl=30)
        clock.advance(29)
        assert cache.get(key) == "x"
        clock.advance(2)
        assert cache.get(key) is None

    def test_cleanup_expired(self):
        clock = FakeClock(now=0.0)
        backend = InMemoryCache(clock=clock)
        backend.set("a", "1", ttl=5)
        backend.set("b", "2", ttl=50)
        clock.advance(10)
        assert backend.cleanup_expired() == 1
        assert backend.get("b") == "2"

    def test_backend_name(self):
        assert DomainCache(InMemoryCache()).backend_name == "memory"


class TestInMemoryBound:
    def test_size_stays_bounded_across_invalidations(self):
        backend = InMemoryCache(max_entries=50)
        cache = DomainCache(backend)
        for i in range(1000):
            cache.set(cache.make_key("stock", "list", i), {"page": i}, ttl=300)
            cache.invalidate("stock")
        assert len(backend) <= 50
        assert cache.version("stock") == 1000

    def test_oldest_evicted_first(self):
        backend = InMemoryCache(max_entries=2)
        backend.set("a", "1", ttl=60)
        backend.set("b", "2", ttl=60)
        backend.set("c", "3", ttl=60)
        assert backend.get("a") is None
        assert backend.get("b") == "2"
        assert backend.get("c") == "3"

    def test_expired_purged_before_live_entries(self):
        clock = FakeClock(now=0.0)
        backend = InMemoryCache(clock=clock, max_entries=2)
        backend.set("live", "1", ttl=600)
        backend.set("short", "2", ttl=5)
        clock.advance(10)
        backend.set("new", "3", ttl=600)
        assert backend.get("live") == "1"
        assert backend.get("new") == "3"


class TestInvalidateOnCommit:
    def test_commit_bumps_version(self, session):
        cache = get_cache()
        before = cache.version("stock")
        session.add(Godown(name="Nashik"))
        invalidate_on_commit(session, "stock")
        assert cache.version("stock") == before
        session.commit()
        assert cache.version("stock") == before + 1

    def test_rollback_drops_pending(self, session):
        cache = get_cache()
        before = cache.version("stock")
        session.exec(select(Godown)).all()
        invalidate_on_commit(session, "stock")
        session.rollback()
        session.commit()
        assert cache.version("stock") == before
