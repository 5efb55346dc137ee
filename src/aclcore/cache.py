"""ACL cache with explicit invalidation and in-flight fill de-duplication.

Provides:
- ``AclCache`` — ``ObjectIdentity`` → resolved ``Acl`` store with TTL,
  LRU bound, freshness generations and a descendant index for cascading
  invalidation.
- ``PendingFill`` — a store read for one key, shared by every concurrent
  caller that misses on that key until the reading call has published.

Entry lifecycle: absent → resolving → cached → invalidated → absent.

Only complete Acls (loaded without a sid filter) are cached, and a child
is only cached while its parent is cached as the very same object, so a
cached chain never mixes generations.

Freshness: a single monotonic generation counter is bumped by every
invalidation. Claims are stamped with the current generation, and a key
remembers the generation it was last invalidated at only while some call
still holds a fill for it, so that bookkeeping is bounded by the number
of loads in progress.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .exceptions import BackingStoreUnavailableError
from .identity import ObjectIdentity, Sid

if TYPE_CHECKING:
    from .model import Acl
    from .store import AclRow

logger = logging.getLogger(__name__)

FillKey = tuple[ObjectIdentity, Optional[frozenset[Sid]]]


@dataclass
class _CacheEntry:
    acl: Acl
    stored_at: float


@dataclass
class PendingFill:
    """One backing-store read for one key.

    ``generation`` is the cache generation when the read was claimed;
    results built from the row may only be cached under that generation.
    ``sids`` is the filter the row is read with (None = all entries), so an
    unfiltered fill can serve filtered callers too.
    """

    identity: ObjectIdentity
    generation: int
    future: asyncio.Future = field(repr=False)
    sids: Optional[frozenset[Sid]] = None

    def set_row(self, row: AclRow | None) -> None:
        if not self.future.done():
            self.future.set_result(row)

    def set_error(self, error: BaseException) -> None:
        if self.future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            error = BackingStoreUnavailableError(f"Load of '{self.identity}' was cancelled")
        self.future.set_exception(error)
        # waiters may all be gone; mark retrieved to keep the loop quiet
        self.future.add_done_callback(_consume_exception)


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class AclCache:
    """Thread-safe ACL cache.

    Reads never wait on the backing store. The internal lock is held only
    around dictionary check-and-insert, eviction and counter updates.

    Args:
        ttl_seconds: Entry lifetime; None disables expiry.
        max_entries: LRU bound on cached Acls.
        cascade: Default for :meth:`invalidate`; True also evicts cached descendants.
        enabled: When False nothing is stored; in-flight de-duplication still works.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float | None = 300.0,
        max_entries: int = 10_000,
        *,
        cascade: bool = True,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.cascade = cascade
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: OrderedDict[ObjectIdentity, _CacheEntry] = OrderedDict()
        self._children: dict[ObjectIdentity, set[ObjectIdentity]] = {}
        self._inflight: dict[FillKey, PendingFill] = {}
        # generation counter, per-key invalidation marks and live claim counts
        self._generation = 0
        self._invalidated_at: dict[ObjectIdentity, int] = {}
        self._holders: dict[ObjectIdentity, int] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    # ── Reads ───────────────────────────────────────────

    def get(self, identity: ObjectIdentity) -> Acl | None:
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                self.misses += 1
                return None
            if self._expired(entry):
                self._remove(identity)
                self.misses += 1
                return None
            self._entries.move_to_end(identity)
            self.hits += 1
            return entry.acl

    def peek(self, identity: ObjectIdentity) -> Acl | None:
        """Like :meth:`get` without touching stats or LRU order."""
        entry = self._entries.get(identity)
        if entry is None or self._expired(entry):
            return None
        return entry.acl

    def __contains__(self, identity: object) -> bool:
        entry = self._entries.get(identity)  # type: ignore[arg-type]
        return entry is not None and not self._expired(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def generation(self, identity: ObjectIdentity) -> int:
        """Generation a load of ``identity`` claimed now would be stamped with."""
        return self._generation

    # ── Writes ──────────────────────────────────────────

    def put(self, acl: Acl, generation: int | None = None) -> bool:
        """Cache ``acl``; returns False when it was refused.

        ``generation`` is the generation of the fill the Acl was built
        from (see :meth:`claim`). Refused when the cache is disabled, the
        Acl is partial (sid filtered), the key was invalidated after that
        fill was claimed, or the Acl's parent is not the object currently
        cached for the parent identity.
        """
        if not self.enabled or not acl.complete:
            return False
        identity = acl.object_identity
        with self._lock:
            if generation is not None and self._is_stale(identity, generation):
                logger.debug("Refusing stale ACL for %s (generation %d)", identity, generation)
                return False
            parent_identity = acl.parent_identity
            if parent_identity is not None:
                parent_entry = self._entries.get(parent_identity)
                if parent_entry is None or parent_entry.acl is not acl.parent:
                    logger.debug("Refusing ACL for %s: parent %s not cached", identity, parent_identity)
                    return False
                self._children.setdefault(parent_identity, set()).add(identity)
            self._entries[identity] = _CacheEntry(acl, self._clock())
            self._entries.move_to_end(identity)
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                self.evictions += 1
        return True

    def invalidate(self, identity: ObjectIdentity, cascade: bool | None = None) -> int:
        """Evict ``identity`` (and cached descendants when cascading).

        Bumps the generation so loads that were claimed earlier can neither
        publish their results nor be joined by later callers. Returns the
        number of cache entries removed.
        """
        cascade = self.cascade if cascade is None else cascade
        removed = 0
        with self._lock:
            self._generation += 1
            queue = [identity]
            seen: set[ObjectIdentity] = set()
            while queue:
                current = queue.pop()
                if current in seen:
                    continue
                seen.add(current)
                self._mark_invalidated(current)
                if current in self._entries:
                    self._remove(current)
                    removed += 1
                if cascade:
                    queue.extend(self._children.get(current, ()))
        logger.debug("Invalidated %s (cascade=%s, removed=%d)", identity, cascade, removed)
        return removed

    def invalidate_many(self, identities: Iterable[ObjectIdentity], cascade: bool | None = None) -> int:
        return sum(self.invalidate(identity, cascade) for identity in identities)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            for identity in self._holders:
                self._invalidated_at[identity] = self._generation
            self._entries.clear()
            self._children.clear()

    # ── In-flight fills ─────────────────────────────────

    def claim(
        self,
        identities: Iterable[ObjectIdentity],
        sids: frozenset[Sid] | None = None,
    ) -> tuple[dict[ObjectIdentity, PendingFill], dict[ObjectIdentity, PendingFill]]:
        """Split ``identities`` into fills this caller must perform and fills to await.

        A registered fill is shared until its owner releases it, even once
        its row has arrived. Filtered callers also share an unfiltered fill.
        Every returned fill must be handed back through :meth:`release`.

        Must be called from a coroutine running on the event loop that
        will await the returned futures.
        """
        loop = asyncio.get_running_loop()
        owned: dict[ObjectIdentity, PendingFill] = {}
        waiting: dict[ObjectIdentity, PendingFill] = {}
        with self._lock:
            for identity in identities:
                fill = self._joinable((identity, sids))
                if fill is None and sids is not None:
                    fill = self._joinable((identity, None))
                if fill is not None:
                    waiting[identity] = fill
                else:
                    fill = PendingFill(identity, self._generation, loop.create_future(), sids)
                    self._inflight[(identity, sids)] = fill
                    owned[identity] = fill
                self._holders[identity] = self._holders.get(identity, 0) + 1
        return owned, waiting

    def release(self, fill: PendingFill, owner: bool = True) -> None:
        """Hand back a fill returned by :meth:`claim`.

        The owner's release unregisters the fill; call it only after the
        Acls built from it were published or the load failed.
        """
        identity = fill.identity
        with self._lock:
            if owner and self._inflight.get((identity, fill.sids)) is fill:
                del self._inflight[(identity, fill.sids)]
            remaining = self._holders.get(identity, 0) - 1
            if remaining > 0:
                self._holders[identity] = remaining
            else:
                self._holders.pop(identity, None)
                # no claim older than this point is left to refuse
                self._invalidated_at.pop(identity, None)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # ── Internals ───────────────────────────────────────

    def _joinable(self, key: FillKey) -> PendingFill | None:
        fill = self._inflight.get(key)
        if fill is None or self._is_stale(fill.identity, fill.generation):
            return None
        if fill.future.done() and (fill.future.cancelled() or fill.future.exception() is not None):
            return None
        return fill

    def _is_stale(self, identity: ObjectIdentity, generation: int) -> bool:
        return generation < self._invalidated_at.get(identity, 0)

    def _mark_invalidated(self, identity: ObjectIdentity) -> None:
        # a mark is only needed while some call holds a fill for the key
        if identity in self._holders:
            self._invalidated_at[identity] = self._generation

    def _expired(self, entry: _CacheEntry) -> bool:
        return self.ttl_seconds is not None and self._clock() - entry.stored_at >= self.ttl_seconds

    def _remove(self, identity: ObjectIdentity) -> None:
        # caller holds the lock; the descendant set of identity is kept so
        # a later invalidation can still cascade to cached children
        entry = self._entries.pop(identity)
        parent_identity = entry.acl.parent_identity
        if parent_identity is not None:
            siblings = self._children.get(parent_identity)
            if siblings is not None:
                siblings.discard(identity)
                if not siblings:
                    del self._children[parent_identity]

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "inflight": len(self._inflight),
                "invalidation_marks": len(self._invalidated_at),
            }


__all__ = ["AclCache", "PendingFill"]
