"""Batch lookup strategy: stored rows → resolved, cached Acl chains.

``BatchLookupStrategy.read_acls_by_id`` resolves a batch of object
identities in one backing-store round trip per hierarchy level:

1. Serve what it can from the cache.
2. Claim the misses; misses already being read by a concurrent call are
   awaited instead of read again.
3. Read the owned misses in one batch, then repeat for referenced parents
   that are neither loaded nor cached, up to ``max_depth`` levels.
4. Build Acls root-first so a child's parent is always complete, and
   publish them to the cache ancestors-first.
5. Return exactly the requested identities that exist. Missing rows are
   simply absent; the caller decides whether that is an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import TypeVar

from .audit import AuditLogger
from .cache import AclCache, PendingFill
from .exceptions import (
    AclError,
    BackingStoreTimeoutError,
    BackingStoreUnavailableError,
    DanglingParentError,
    DepthExceededError,
)
from .identity import ObjectIdentity, Sid
from .model import Acl
from .store import AclRow, AclStore, row_to_acl

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32

_T = TypeVar("_T")


async def guarded_store_call(call: Awaitable[_T], timeout: float | None, operation: str) -> _T:
    """Await a backing-store call, mapping failures to aclcore errors.

    A timeout becomes ``BackingStoreTimeoutError``; any other non-aclcore
    exception becomes ``BackingStoreUnavailableError``. Nothing is retried.
    """
    try:
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout)
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise BackingStoreTimeoutError(f"{operation} timed out after {timeout}s", operation=operation) from e
    except AclError:
        raise
    except Exception as e:
        raise BackingStoreUnavailableError(f"{operation} failed: {e}", operation=operation) from e


class BatchLookupStrategy:
    """Resolves object identities into Acls with batching and caching.

    Args:
        store: Backing store answering ``read_acls``.
        cache: Shared cache; a private default cache is created if omitted.
        max_depth: Maximum parent hops allowed in any chain.
        timeout: Default per-store-call timeout in seconds (None = no limit).
        audit_logger: Audit hook attached to every built Acl.
    """

    def __init__(
        self,
        store: AclStore,
        cache: AclCache | None = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.store = store
        self.cache = cache if cache is not None else AclCache()
        self.max_depth = max_depth
        self.timeout = timeout
        self.audit_logger = audit_logger

    async def read_acls_by_id(
        self,
        object_identities: Iterable[ObjectIdentity],
        sids: Iterable[Sid] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[ObjectIdentity, Acl]:
        """Resolve ``object_identities``; absent rows are left out of the result.

        Args:
            object_identities: Non-empty collection of identities (duplicates collapse).
            sids: Optional sid filter. Only an optimization hint: Acls loaded
                with a filter refuse checks for other sids and are not cached.
            timeout: Per-store-call timeout overriding the strategy default.

        Raises:
            DepthExceededError: Cyclic or too-deep ancestor chain.
            DanglingParentError: A row references a parent with no row.
            BackingStoreUnavailableError: Store failure (incl. timeout).
        """
        requested = list(dict.fromkeys(object_identities))
        if not requested:
            raise ValueError("At least one object identity is required")
        sid_filter = frozenset(sids) if sids is not None else None
        timeout = self.timeout if timeout is None else timeout

        cached: dict[ObjectIdentity, Acl] = {}
        for identity in requested:
            acl = self.cache.get(identity)
            if acl is not None:
                cached[identity] = acl

        rows: dict[ObjectIdentity, AclRow] = {}
        generations: dict[ObjectIdentity, int] = {}
        absent: set[ObjectIdentity] = set()
        pending = [identity for identity in requested if identity not in cached]
        logger.debug("ACL lookup: %d requested, %d cached, %d to load", len(requested), len(cached), len(pending))

        # fills stay registered until this call has published, so a caller
        # arriving mid-resolution joins them instead of reading again
        held: list[tuple[PendingFill, bool]] = []
        try:
            level = 0
            while pending:
                if level > self.max_depth:
                    logger.error("ACL ancestor resolution exceeded %d levels at %s", self.max_depth, pending[0])
                    raise DepthExceededError(pending[0], self.max_depth)
                level += 1
                await self._load_level(pending, sid_filter, timeout, held, rows, generations, absent)
                pending = self._next_level(rows, cached, absent)

            built = self._assemble(rows, cached, absent, sid_filter, generations)
        finally:
            for fill, owner in held:
                self.cache.release(fill, owner)
        return {identity: built[identity] for identity in requested if identity in built}

    async def _load_level(
        self,
        identities: list[ObjectIdentity],
        sid_filter: frozenset[Sid] | None,
        timeout: float | None,
        held: list[tuple[PendingFill, bool]],
        rows: dict[ObjectIdentity, AclRow],
        generations: dict[ObjectIdentity, int],
        absent: set[ObjectIdentity],
    ) -> None:
        owned, waiting = self.cache.claim(identities, sid_filter)
        held.extend((fill, True) for fill in owned.values())
        held.extend((fill, False) for fill in waiting.values())
        if owned:
            try:
                fetched = await guarded_store_call(
                    self.store.read_acls(list(owned), sid_filter),
                    timeout,
                    "read_acls",
                )
            except BaseException as e:
                for fill in owned.values():
                    fill.set_error(e)
                raise
            by_identity = {row.object_identity: row for row in fetched if row.object_identity in owned}
            for identity, fill in owned.items():
                fill.set_row(by_identity.get(identity))

        fills: dict[ObjectIdentity, PendingFill] = {**waiting, **owned}
        unresolved = [fill.future for fill in waiting.values() if not fill.future.done()]
        if unresolved:
            logger.debug("ACL lookup: awaiting %d in-flight loads", len(unresolved))
            gathered = asyncio.gather(*(asyncio.shield(future) for future in unresolved))
            if timeout is None:
                await gathered
            else:
                await guarded_store_call(gathered, timeout, "read_acls (shared)")

        for identity, fill in fills.items():
            row = fill.future.result()
            generations[identity] = fill.generation
            if row is None:
                absent.add(identity)
            else:
                rows[identity] = row

    def _next_level(
        self,
        rows: dict[ObjectIdentity, AclRow],
        cached: dict[ObjectIdentity, Acl],
        absent: set[ObjectIdentity],
    ) -> list[ObjectIdentity]:
        pending: list[ObjectIdentity] = []
        for row in rows.values():
            parent = row.parent_identity
            if parent is None or parent in rows or parent in cached or parent in absent or parent in pending:
                continue
            acl = self.cache.get(parent)
            # a cached parent is complete, so it serves filtered loads too
            if acl is not None:
                cached[parent] = acl
            else:
                pending.append(parent)
        return pending

    def _assemble(
        self,
        rows: dict[ObjectIdentity, AclRow],
        cached: dict[ObjectIdentity, Acl],
        absent: set[ObjectIdentity],
        sid_filter: frozenset[Sid] | None,
        generations: dict[ObjectIdentity, int],
    ) -> dict[ObjectIdentity, Acl]:
        built: dict[ObjectIdentity, Acl] = dict(cached)
        depths: dict[ObjectIdentity, int] = {}

        for start in sorted(rows):
            chain: list[ObjectIdentity] = []
            visited: set[ObjectIdentity] = set()
            node: ObjectIdentity | None = start
            while node is not None and node not in built:
                if node in visited or len(chain) > self.max_depth:
                    logger.error("ACL chain of %s is cyclic or deeper than %d", start, self.max_depth)
                    raise DepthExceededError(start, self.max_depth)
                row = rows.get(node)
                if row is None:
                    logger.error("ACL for %s references missing parent %s", chain[-1], node)
                    raise DanglingParentError(chain[-1], node)
                visited.add(node)
                chain.append(node)
                node = row.parent_identity

            parent = built.get(node) if node is not None else None
            depth = -1
            if parent is not None:
                depth = depths.get(parent.object_identity)
                if depth is None:
                    depth = depths[parent.object_identity] = parent.depth()
            if depth + len(chain) > self.max_depth:
                logger.error("ACL chain of %s is deeper than %d", start, self.max_depth)
                raise DepthExceededError(start, self.max_depth)

            for identity in reversed(chain):
                acl = self._build_one(rows[identity], parent, sid_filter, generations.get(identity))
                built[identity] = acl
                depth += 1
                depths[identity] = depth
                parent = acl

        if absent:
            logger.debug("ACL lookup: no rows for %d identities", len(absent))
        return built

    def _build_one(
        self,
        row: AclRow,
        parent: Acl | None,
        sid_filter: frozenset[Sid] | None,
        generation: int | None,
    ) -> Acl:
        if sid_filter is None:
            # prefer an Acl a concurrent call already published for the same data
            current = self.cache.peek(row.object_identity)
            if current is not None and current.parent is parent:
                return current
        acl = row_to_acl(row, parent, sid_filter, self.audit_logger)
        if sid_filter is None:
            self.cache.put(acl, generation)
        return acl


__all__ = ["BatchLookupStrategy", "DEFAULT_MAX_DEPTH", "guarded_store_call"]
