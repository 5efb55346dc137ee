"""Resolved ACL entities.

Provides:
- ``AccessControlEntry`` — one grant/deny rule for one sid on one Acl.
- ``Acl`` — the resolved, immutable ACL of one object identity, linked
  to its already-resolved parent Acl.

Permission composition (``Acl.is_granted``) walks the chain from the
object towards the root: local entries first, first matching entry wins,
the parent is consulted only while ``entries_inheriting`` is set.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from .audit import AuditLogger
from .constants import BasePermission
from .exceptions import NoMatchingEntryError, UnloadedSidError
from .identity import ObjectIdentity, Sid

_default_audit_logger = AuditLogger()


@dataclass(frozen=True)
class AccessControlEntry:
    """A single ACE.

    ``acl_identity`` is the key of the owning Acl rather than a reference
    to it, so entries stay plain values.
    """

    acl_identity: ObjectIdentity
    sid: Sid
    mask: int
    granting: bool = True
    audit_success: bool = False
    audit_failure: bool = False
    id: int | None = None

    def matches(self, mask: int, sid: Sid) -> bool:
        return self.mask == mask and self.sid == sid

    def __str__(self) -> str:
        verb = "grant" if self.granting else "deny"
        return f"{verb} {BasePermission.describe(self.mask)} to {self.sid} on {self.acl_identity}"


@dataclass(frozen=True, eq=False)
class Acl:
    """Resolved ACL for one object identity.

    Attributes:
        object_identity: The protected object.
        owner: Sid owning the ACL.
        parent: Fully constructed parent Acl, or None for a root.
        entries_inheriting: Whether parent entries apply when no local entry matches.
        entries: Ordered ACEs; order is precedence.
        loaded_sids: Sids the entries were loaded for; None means all entries.
    """

    object_identity: ObjectIdentity
    owner: Sid
    parent: Acl | None = None
    entries_inheriting: bool = True
    entries: tuple[AccessControlEntry, ...] = ()
    loaded_sids: frozenset[Sid] | None = None
    audit_logger: AuditLogger = field(default=_default_audit_logger, repr=False)

    def __post_init__(self) -> None:
        for ace in self.entries:
            if ace.acl_identity != self.object_identity:
                raise ValueError(f"ACE for '{ace.acl_identity}' cannot belong to ACL of '{self.object_identity}'")

    @property
    def parent_identity(self) -> ObjectIdentity | None:
        return self.parent.object_identity if self.parent is not None else None

    @property
    def complete(self) -> bool:
        """True when every entry was loaded (no sid filter applied)."""
        return self.loaded_sids is None

    def ancestors(self) -> Iterator[Acl]:
        """Yield parents from the direct parent up to the root."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def depth(self) -> int:
        """Number of parent hops to the root (0 for a root Acl)."""
        return sum(1 for _ in self.ancestors())

    def is_sid_loaded(self, sids: Iterable[Sid]) -> bool:
        if self.loaded_sids is None:
            return True
        return all(sid in self.loaded_sids for sid in sids)

    def is_granted(
        self,
        masks: Sequence[int],
        sids: Sequence[Sid],
        administrative_mode: bool = False,
    ) -> bool:
        """Decide whether any of ``sids`` holds any of ``masks``.

        For each mask, then each sid, the first ACE matching both decides:
        a granting ACE returns True at once; a denying ACE is remembered
        and the next mask is tried. A recorded rejection returns False.
        With no match, the parent is asked if entries are inherited.

        Args:
            masks: Permission masks to check, in priority order.
            sids: Sids of the requesting party, in priority order.
            administrative_mode: Suppress failure auditing (used for admin
                checks that are not real access attempts).

        Raises:
            UnloadedSidError: A sid was filtered out when this Acl (or an
                ancestor consulted) was loaded.
            NoMatchingEntryError: No ACE in the chain matched.
        """
        if not masks:
            raise ValueError("At least one permission mask is required")
        if not sids:
            raise ValueError("At least one sid is required")

        acl: Acl | None = self
        while acl is not None:
            if not acl.is_sid_loaded(sids):
                raise UnloadedSidError(acl.object_identity, tuple(sids))

            first_rejection = acl._scan(masks, sids)
            if first_rejection is True:
                return True
            if first_rejection is not None:
                if not administrative_mode:
                    acl.audit_logger.log_if_needed(False, first_rejection)
                return False

            acl = acl.parent if acl.entries_inheriting else None

        raise NoMatchingEntryError(object_identity=str(self.object_identity))

    def _scan(self, masks: Sequence[int], sids: Sequence[Sid]) -> AccessControlEntry | bool | None:
        # True on a grant, the first denying ACE on a rejection, None if nothing matched
        first_rejection: AccessControlEntry | None = None
        for mask in masks:
            for sid in sids:
                ace = next((e for e in self.entries if e.matches(mask, sid)), None)
                if ace is None:
                    continue
                if ace.granting:
                    self.audit_logger.log_if_needed(True, ace)
                    return True
                if first_rejection is None:
                    first_rejection = ace
                break
        return first_rejection

    def __repr__(self) -> str:
        return (
            f"Acl(object_identity={self.object_identity!s}, owner={self.owner!s}, "
            f"parent={self.parent_identity!s}, entries_inheriting={self.entries_inheriting}, "
            f"entries={len(self.entries)})"
        )


__all__ = ["AccessControlEntry", "Acl"]
