"""Permission mask constants.

Provides:
- ``BasePermission`` — the standard single-bit permission masks.
"""

from __future__ import annotations


class BasePermission:
    """Standard permission masks (one bit each).

    Masks are matched by equality against ``AccessControlEntry.mask``,
    so a combined mask such as ``READ | WRITE`` is a distinct permission,
    not a shortcut for both.

    Two modes of use:

    1. **Static constants**::

        acl.is_granted([BasePermission.READ], [PrincipalSid("alice")])

    2. **Builders** for custom bits and combined masks::

        BasePermission.custom(7)                    → 128
        BasePermission.combine(READ, WRITE)         → 3
    """

    READ = 1 << 0  # 1
    WRITE = 1 << 1  # 2
    CREATE = 1 << 2  # 4
    DELETE = 1 << 3  # 8
    ADMINISTRATION = 1 << 4  # 16

    ALL = (READ, WRITE, CREATE, DELETE, ADMINISTRATION)

    NAMES = {
        READ: "READ",
        WRITE: "WRITE",
        CREATE: "CREATE",
        DELETE: "DELETE",
        ADMINISTRATION: "ADMINISTRATION",
    }

    @staticmethod
    def custom(bit: int) -> int:
        """Mask for an application-defined bit position (0..31)."""
        if not 0 <= bit < 32:
            raise ValueError(f"Permission bit must be in 0..31, got {bit}")
        return 1 << bit

    @staticmethod
    def combine(*masks: int) -> int:
        result = 0
        for mask in masks:
            result |= mask
        return result

    @classmethod
    def describe(cls, mask: int) -> str:
        """Human-readable form of a mask for logs, e.g. ``"READ|WRITE"``."""
        names = [name for bit, name in cls.NAMES.items() if mask & bit]
        rest = mask & ~cls.combine(*cls.ALL)
        if rest:
            names.append(hex(rest))
        return "|".join(names) or "NONE"


__all__ = ["BasePermission"]
