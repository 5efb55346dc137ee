"""AclService: public facade over the lookup strategy.

Adds the completeness contract on top of ``BatchLookupStrategy``: every
requested identity must come back, otherwise ``AclNotFoundError`` is
raised for the first missing identity in request order. Also exposes
child lookup (straight to the backing store, uncached) and the
invalidation hook that write paths must call after changing ACL rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .audit import AuditLogger
from .cache import AclCache
from .config import AclConfig
from .exceptions import AclNotFoundError
from .identity import ObjectIdentity, Sid
from .lookup import BatchLookupStrategy, guarded_store_call
from .model import Acl
from .store import AclStore

logger = logging.getLogger(__name__)


class AclService:
    """Reads hierarchy-aware ACLs.

    Example::

        service = AclService.from_config(store, AclConfig())
        acl = await service.read_acl_by_id(ObjectIdentity("Document", 5))
        acl.is_granted([BasePermission.READ], [PrincipalSid("alice")])
    """

    def __init__(self, store: AclStore, lookup_strategy: BatchLookupStrategy | None = None) -> None:
        if store is None:
            raise ValueError("AclStore required")
        self.store = store
        self.lookup_strategy = lookup_strategy or BatchLookupStrategy(store)

    @classmethod
    def from_config(
        cls,
        store: AclStore,
        config: AclConfig | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> AclService:
        config = config or AclConfig()
        cache = AclCache(
            ttl_seconds=config.cache_ttl_seconds,
            max_entries=config.cache_max_entries,
            cascade=config.cascade_invalidation,
            enabled=config.cache_enabled,
        )
        strategy = BatchLookupStrategy(
            store,
            cache,
            max_depth=config.max_depth,
            timeout=config.store_timeout_seconds,
            audit_logger=audit_logger,
        )
        return cls(store, strategy)

    @property
    def cache(self) -> AclCache:
        return self.lookup_strategy.cache

    async def find_children(self, parent: ObjectIdentity) -> list[ObjectIdentity]:
        """Direct children of ``parent``, sorted by (type, identifier).

        Returns an empty list when there are none. Not cached.
        """
        children = await guarded_store_call(
            self.store.find_children(parent),
            self.lookup_strategy.timeout,
            "find_children",
        )
        return sorted(children)

    async def read_acl_by_id(self, object_identity: ObjectIdentity, sids: Iterable[Sid] | None = None) -> Acl:
        result = await self.read_acls_by_id([object_identity], sids)
        return result[object_identity]

    async def read_acls_by_id(
        self,
        object_identities: Iterable[ObjectIdentity],
        sids: Iterable[Sid] | None = None,
    ) -> dict[ObjectIdentity, Acl]:
        """Resolve every identity or raise.

        Raises:
            AclNotFoundError: For the first requested identity with no ACL.
        """
        requested = list(object_identities)
        result = await self.lookup_strategy.read_acls_by_id(requested, sids)

        # Check every requested object identity was found
        for object_identity in requested:
            if object_identity not in result:
                logger.info("No ACL found for %s", object_identity, extra={"object_identity": str(object_identity)})
                raise AclNotFoundError(object_identity)

        return result

    def invalidate(self, object_identity: ObjectIdentity, cascade: bool | None = None) -> int:
        """Evict a changed ACL; call after every write to its stored rows.

        Returns the number of cache entries removed.
        """
        return self.cache.invalidate(object_identity, cascade)

    def clear_cache(self) -> None:
        self.cache.clear()


__all__ = ["AclService"]
