"""Tests for AclCache: expiry, eviction, invalidation and in-flight fills."""

from __future__ import annotations

import asyncio
import threading

import pytest

from aclcore import AclCache, Acl, BackingStoreUnavailableError, ObjectIdentity, PrincipalSid

ROOT = PrincipalSid("root")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def chain(*identifiers: int) -> list[Acl]:
    """Acls Node:<first> (root) ← Node:<second> ← …, root first."""
    acls: list[Acl] = []
    parent = None
    for i in identifiers:
        parent = Acl(ObjectIdentity("Node", i), ROOT, parent=parent)
        acls.append(parent)
    return acls


class TestGetPut:
    """Basic cache reads and writes."""

    def test_put_then_get(self) -> None:
        cache = AclCache()
        (root,) = chain(1)
        assert cache.put(root) is True
        assert cache.get(root.object_identity) is root
        assert root.object_identity in cache
        assert len(cache) == 1

    def test_miss_and_stats(self) -> None:
        cache = AclCache()
        assert cache.get(ObjectIdentity("Node", 1)) is None
        (root,) = chain(1)
        cache.put(root)
        cache.get(root.object_identity)
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_stats_consistent_across_threads(self) -> None:
        """Hit and miss counters stay exact under concurrent readers."""
        cache = AclCache()
        (root,) = chain(1)
        cache.put(root)
        missing = ObjectIdentity("Node", 2)

        def read() -> None:
            for _ in range(1000):
                cache.get(root.object_identity)
                cache.get(missing)

        threads = [threading.Thread(target=read) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert cache.stats()["hits"] == 8000
        assert cache.stats()["misses"] == 8000

    def test_disabled_cache_stores_nothing(self) -> None:
        cache = AclCache(enabled=False)
        (root,) = chain(1)
        assert cache.put(root) is False
        assert cache.get(root.object_identity) is None

    def test_partial_acl_not_cached(self) -> None:
        """Sid-filtered Acls are never cached."""
        cache = AclCache()
        acl = Acl(ObjectIdentity("Node", 1), ROOT, loaded_sids=frozenset({ROOT}))
        assert cache.put(acl) is False

    def test_child_requires_cached_parent(self) -> None:
        """A child is refused unless its exact parent object is cached."""
        cache = AclCache()
        root, child = chain(1, 2)
        assert cache.put(child) is False
        cache.put(root)
        assert cache.put(child) is True

        other_root = Acl(root.object_identity, ROOT)
        orphan = Acl(ObjectIdentity("Node", 3), ROOT, parent=other_root)
        assert cache.put(orphan) is False

    def test_peek_does_not_count(self) -> None:
        cache = AclCache()
        (root,) = chain(1)
        cache.put(root)
        assert cache.peek(root.object_identity) is root
        assert cache.stats()["hits"] == 0

    def test_invalid_settings(self) -> None:
        with pytest.raises(ValueError):
            AclCache(ttl_seconds=0)
        with pytest.raises(ValueError):
            AclCache(max_entries=0)


class TestExpiryAndEviction:
    """TTL and LRU bound."""

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = AclCache(ttl_seconds=10, clock=clock)
        (root,) = chain(1)
        cache.put(root)
        clock.now += 9.9
        assert cache.get(root.object_identity) is root
        clock.now += 1
        assert cache.get(root.object_identity) is None
        assert len(cache) == 0

    def test_no_ttl(self) -> None:
        clock = FakeClock()
        cache = AclCache(ttl_seconds=None, clock=clock)
        (root,) = chain(1)
        cache.put(root)
        clock.now += 10**9
        assert cache.get(root.object_identity) is root

    def test_lru_eviction(self) -> None:
        cache = AclCache(max_entries=2)
        a = Acl(ObjectIdentity("Node", 1), ROOT)
        b = Acl(ObjectIdentity("Node", 2), ROOT)
        c = Acl(ObjectIdentity("Node", 3), ROOT)
        cache.put(a)
        cache.put(b)
        cache.get(a.object_identity)  # a is now most recent
        cache.put(c)
        assert a.object_identity in cache
        assert b.object_identity not in cache
        assert cache.stats()["evictions"] == 1


class TestInvalidation:
    """Explicit eviction and freshness generations."""

    def test_invalidate_single(self) -> None:
        cache = AclCache()
        (root,) = chain(1)
        cache.put(root)
        assert cache.invalidate(root.object_identity) == 1
        assert root.object_identity not in cache

    def test_invalidate_bumps_generation(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        before = cache.generation(oid)
        cache.invalidate(oid)
        assert cache.generation(oid) == before + 1

    @pytest.mark.asyncio
    async def test_stale_generation_refused(self) -> None:
        """A load claimed before an invalidation cannot publish."""
        cache = AclCache()
        (root,) = chain(1)
        oid = root.object_identity
        owned, _ = cache.claim([oid])
        cache.invalidate(oid)
        assert cache.put(root, owned[oid].generation) is False

        fresh, waiting = cache.claim([oid])
        assert oid in fresh and waiting == {}
        assert cache.put(root, fresh[oid].generation) is True
        cache.release(owned[oid])
        cache.release(fresh[oid])
        assert cache.inflight == 0

    def test_invalidation_marks_bounded(self) -> None:
        """Invalidating keys nobody is loading leaves no bookkeeping behind."""
        cache = AclCache()
        for i in range(10_000):
            cache.invalidate(ObjectIdentity("Node", i))
        assert cache.stats()["invalidation_marks"] == 0

    @pytest.mark.asyncio
    async def test_invalidation_mark_dropped_on_release(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, _ = cache.claim([oid])
        _, waiting = cache.claim([oid])
        cache.invalidate(oid)
        assert cache.stats()["invalidation_marks"] == 1
        cache.release(owned[oid])
        assert cache.stats()["invalidation_marks"] == 1
        cache.release(waiting[oid], owner=False)
        assert cache.stats()["invalidation_marks"] == 0

    def test_cascade_evicts_descendants(self) -> None:
        cache = AclCache(cascade=True)
        root, mid, leaf = chain(1, 2, 3)
        for acl in (root, mid, leaf):
            cache.put(acl)
        assert cache.invalidate(root.object_identity) == 3
        assert len(cache) == 0

    def test_no_cascade_keeps_descendants(self) -> None:
        cache = AclCache(cascade=True)
        root, mid, leaf = chain(1, 2, 3)
        for acl in (root, mid, leaf):
            cache.put(acl)
        assert cache.invalidate(root.object_identity, cascade=False) == 1
        assert mid.object_identity in cache
        assert leaf.object_identity in cache

    def test_cascade_reaches_children_of_evicted_parent(self) -> None:
        """Children are still found after their parent left the cache by LRU."""
        cache = AclCache(max_entries=2)
        root, mid, leaf = chain(1, 2, 3)
        for acl in (root, mid, leaf):
            cache.put(acl)
        assert root.object_identity not in cache
        cache.invalidate(root.object_identity)
        assert mid.object_identity not in cache
        assert leaf.object_identity not in cache

    def test_clear(self) -> None:
        cache = AclCache()
        root, mid = chain(1, 2)
        cache.put(root)
        cache.put(mid)
        generation = cache.generation(root.object_identity)
        cache.clear()
        assert len(cache) == 0
        assert cache.generation(root.object_identity) == generation + 1


class TestInflight:
    """Per-key in-flight fill registry."""

    @pytest.mark.asyncio
    async def test_second_claim_waits(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, waiting = cache.claim([oid])
        assert list(owned) == [oid] and waiting == {}

        owned2, waiting2 = cache.claim([oid])
        assert owned2 == {}
        assert waiting2[oid] is owned[oid]
        assert cache.inflight == 1

        owned[oid].set_row(None)
        cache.release(owned[oid])
        assert cache.inflight == 0
        assert await waiting2[oid].future is None
        cache.release(waiting2[oid], owner=False)

    @pytest.mark.asyncio
    async def test_done_fill_shared_until_release(self) -> None:
        """A fill whose row arrived is still handed out until its owner releases it."""
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, _ = cache.claim([oid])
        owned[oid].set_row(None)

        _, waiting = cache.claim([oid])
        assert waiting[oid] is owned[oid]
        cache.release(waiting[oid], owner=False)
        cache.release(owned[oid])

        fresh, _ = cache.claim([oid])
        assert fresh[oid] is not owned[oid]
        cache.release(fresh[oid])

    @pytest.mark.asyncio
    async def test_failed_fill_not_shared(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, _ = cache.claim([oid])
        owned[oid].set_error(BackingStoreUnavailableError("down"))
        fresh, waiting = cache.claim([oid])
        assert oid in fresh and waiting == {}
        cache.release(owned[oid])
        cache.release(fresh[oid])
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_filtered_claim_joins_unfiltered_fill(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, _ = cache.claim([oid])
        _, waiting = cache.claim([oid], frozenset({ROOT}))
        assert waiting[oid] is owned[oid]
        assert cache.inflight == 1
        cache.release(waiting[oid], owner=False)
        cache.release(owned[oid])
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_unfiltered_claim_does_not_join_filtered_fill(self) -> None:
        """A filtered row lacks entries, so complete loads read their own."""
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        filtered, _ = cache.claim([oid], frozenset({ROOT}))
        owned, waiting = cache.claim([oid])
        assert oid in owned and waiting == {}
        assert cache.inflight == 2

        _, joined = cache.claim([oid], frozenset({ROOT}))
        assert joined[oid] is filtered[oid]
        for fill, owner in ((filtered[oid], True), (owned[oid], True), (joined[oid], False)):
            cache.release(fill, owner)
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_claim_records_generation(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        cache.invalidate(oid)
        owned, _ = cache.claim([oid])
        assert owned[oid].generation == 1

    @pytest.mark.asyncio
    async def test_cancelled_owner_surfaces_as_unavailable(self) -> None:
        cache = AclCache()
        oid = ObjectIdentity("Node", 1)
        owned, _ = cache.claim([oid])
        owned[oid].set_error(asyncio.CancelledError())
        with pytest.raises(BackingStoreUnavailableError, match="cancelled"):
            await owned[oid].future
