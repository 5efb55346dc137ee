"""Backing store contract, row models and the in-memory reference store.

Provides:
- ``AceRow`` / ``AclRow`` — the fixed field contract of stored ACL rows.
- ``AclStore`` — protocol every persistence adapter implements.
- ``row_to_acl()`` — plain deserialization of a row into an ``Acl``.
- ``InMemoryAclStore`` — dict-backed store for embedding and tests.

Any storage medium that can answer the two ``AclStore`` queries is
interchangeable; the lookup strategy never sees anything else.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection, Sequence
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, field_validator

from .audit import AuditLogger
from .identity import ObjectIdentity, Sid
from .model import AccessControlEntry, Acl

logger = logging.getLogger(__name__)


def _coerce_identity(value: Any) -> Any:
    """Accept ``ObjectIdentity``, ``{"type", "identifier"}``, ``(type, id)`` or ``"Type:id"``."""
    if value is None or isinstance(value, ObjectIdentity):
        return value
    if isinstance(value, dict):
        return ObjectIdentity(value["type"], int(value["identifier"]))
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return ObjectIdentity(value[0], int(value[1]))
    if isinstance(value, str):
        type_, sep, identifier = value.rpartition(":")
        if sep and type_:
            return ObjectIdentity(type_, int(identifier))
    raise ValueError(f"Cannot interpret {value!r} as an object identity")


def _coerce_sid(value: Any) -> Any:
    if isinstance(value, str):
        return Sid.parse(value)
    return value


# ── Row models ──────────────────────────────────────────


class AceRow(BaseModel):
    """One stored ACE, in precedence order within its ACL row."""

    model_config = {"arbitrary_types_allowed": True, "frozen": True}

    id: Optional[int] = None
    sid: Sid
    mask: int = Field(ge=0)
    granting: bool = True
    audit_success: bool = False
    audit_failure: bool = False

    @field_validator("sid", mode="before")
    @classmethod
    def validate_sid(cls, v: Any) -> Any:
        return _coerce_sid(v)


class AclRow(BaseModel):
    """One stored ACL: object, optional parent, owner and ordered ACEs."""

    model_config = {"arbitrary_types_allowed": True, "frozen": True}

    object_identity: ObjectIdentity
    parent_identity: Optional[ObjectIdentity] = None
    owner: Sid
    entries_inheriting: bool = True
    entries: list[AceRow] = Field(default_factory=list)

    @field_validator("object_identity", "parent_identity", mode="before")
    @classmethod
    def validate_identity(cls, v: Any) -> Any:
        return _coerce_identity(v)

    @field_validator("owner", mode="before")
    @classmethod
    def validate_owner(cls, v: Any) -> Any:
        return _coerce_sid(v)

    @field_validator("parent_identity")
    @classmethod
    def validate_not_self_parent(cls, v: Optional[ObjectIdentity], info: Any) -> Optional[ObjectIdentity]:
        if v is not None and v == info.data.get("object_identity"):
            raise ValueError(f"ACL row for '{v}' cannot be its own parent")
        return v


def row_to_acl(
    row: AclRow,
    parent: Acl | None,
    loaded_sids: frozenset[Sid] | None = None,
    audit_logger: AuditLogger | None = None,
) -> Acl:
    """Build an ``Acl`` from a stored row and its already-built parent.

    With ``loaded_sids`` set, entries for other sids are dropped, so a row
    read without a filter can back a filtered Acl.
    """
    if parent is not None and parent.object_identity != row.parent_identity:
        raise ValueError(f"Parent '{parent.object_identity}' does not match row parent '{row.parent_identity}'")
    entries = tuple(
        AccessControlEntry(
            acl_identity=row.object_identity,
            sid=ace.sid,
            mask=ace.mask,
            granting=ace.granting,
            audit_success=ace.audit_success,
            audit_failure=ace.audit_failure,
            id=ace.id,
        )
        for ace in row.entries
        if loaded_sids is None or ace.sid in loaded_sids
    )
    kwargs: dict[str, Any] = {}
    if audit_logger is not None:
        kwargs["audit_logger"] = audit_logger
    return Acl(
        object_identity=row.object_identity,
        owner=row.owner,
        parent=parent,
        entries_inheriting=row.entries_inheriting,
        entries=entries,
        loaded_sids=loaded_sids,
        **kwargs,
    )


# ── Store contract ──────────────────────────────────────


@runtime_checkable
class AclStore(Protocol):
    """Persistence collaborator of the lookup strategy.

    Implementations raise whatever their driver raises; the lookup
    strategy wraps failures into ``BackingStoreUnavailableError``.
    """

    async def read_acls(
        self,
        identities: Collection[ObjectIdentity],
        sids: frozenset[Sid] | None = None,
    ) -> Sequence[AclRow]:
        """Return the rows that exist for ``identities``, in any order.

        When ``sids`` is given, entries for other sids may be omitted.
        """
        ...

    async def find_children(self, parent: ObjectIdentity) -> Sequence[ObjectIdentity]:
        """Return identities whose stored parent is ``parent``."""
        ...


# ── In-memory reference store ───────────────────────────


class InMemoryAclStore:
    """Dict-backed ``AclStore``.

    Counts calls so callers can assert on batching, and can simulate
    latency (``delay``) or failure (``fail_with``).

    Example::

        store = InMemoryAclStore([
            AclRow(object_identity=("Folder", 1), owner="principal:root"),
            AclRow(object_identity=("Document", 5), parent_identity=("Folder", 1),
                   owner="principal:alice"),
        ])
    """

    def __init__(
        self,
        rows: Sequence[AclRow] = (),
        *,
        delay: float = 0.0,
        fail_with: BaseException | None = None,
    ) -> None:
        self._rows: dict[ObjectIdentity, AclRow] = {}
        self.delay = delay
        self.fail_with = fail_with
        self.read_calls = 0
        self.children_calls = 0
        self.requested: list[frozenset[ObjectIdentity]] = []
        for row in rows:
            self.put(row)

    def put(self, row: AclRow) -> None:
        self._rows[row.object_identity] = row

    def remove(self, object_identity: ObjectIdentity) -> None:
        self._rows.pop(object_identity, None)

    def get(self, object_identity: ObjectIdentity) -> AclRow | None:
        return self._rows.get(object_identity)

    def __len__(self) -> int:
        return len(self._rows)

    async def read_acls(
        self,
        identities: Collection[ObjectIdentity],
        sids: frozenset[Sid] | None = None,
    ) -> list[AclRow]:
        self.read_calls += 1
        self.requested.append(frozenset(identities))
        await self._simulate()

        rows = []
        for identity in identities:
            row = self._rows.get(identity)
            if row is None:
                continue
            if sids is not None:
                row = row.model_copy(update={"entries": [e for e in row.entries if e.sid in sids]})
            rows.append(row)
        logger.debug("Read %d of %d requested ACL rows", len(rows), len(identities))
        return rows

    async def find_children(self, parent: ObjectIdentity) -> list[ObjectIdentity]:
        self.children_calls += 1
        await self._simulate()
        return [row.object_identity for row in self._rows.values() if row.parent_identity == parent]

    async def _simulate(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with


__all__ = [
    "AceRow",
    "AclRow",
    "AclStore",
    "InMemoryAclStore",
    "row_to_acl",
]
