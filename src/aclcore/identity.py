"""Identity value types: protected objects and security identities.

Provides:
- ``ObjectIdentity`` — ``(type, identifier)`` key of a protected domain object.
- ``Sid`` — security identity, either a ``PrincipalSid`` or a
  ``GrantedAuthoritySid``.

All types are frozen and hashable so they can be used as mapping keys
and set members.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class ObjectIdentity:
    """Identity of a protected domain object.

    Attributes:
        type: Domain class or category (e.g. ``"Document"``).
        identifier: 64-bit integer id within that type.

    Ordering is by ``(type, identifier)``.
    """

    type: str
    identifier: int

    def __post_init__(self) -> None:
        if not isinstance(self.type, str) or not self.type:
            raise ValueError("ObjectIdentity type must be a non-empty string")
        # bool is an int subclass; reject it explicitly
        if isinstance(self.identifier, bool) or not isinstance(self.identifier, int):
            raise TypeError(f"ObjectIdentity identifier must be an int, got {type(self.identifier).__name__}")
        if not -(2**63) <= self.identifier < 2**63:
            raise ValueError(f"ObjectIdentity identifier out of 64-bit range: {self.identifier}")

    def __str__(self) -> str:
        return f"{self.type}:{self.identifier}"


class Sid(ABC):
    """Security identity: a principal or a granted authority.

    Equality is by variant and name, so ``PrincipalSid("admin")`` and
    ``GrantedAuthoritySid("admin")`` are different sids.
    """

    __slots__ = ()

    PRINCIPAL = "principal"
    AUTHORITY = "authority"

    @property
    @abstractmethod
    def name(self) -> str:
        """Principal or authority name."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """``Sid.PRINCIPAL`` or ``Sid.AUTHORITY``."""

    def key(self) -> str:
        """Stable string form, inverse of :meth:`parse`."""
        return f"{self.kind}:{self.name}"

    @staticmethod
    def parse(value: str) -> Sid:
        """Parse ``"principal:<name>"`` or ``"authority:<name>"``.

        Example::

            Sid.parse("principal:alice")      # PrincipalSid("alice")
            Sid.parse("authority:ROLE_ADMIN") # GrantedAuthoritySid("ROLE_ADMIN")
        """
        kind, sep, name = value.partition(":")
        if not sep:
            raise ValueError(f"Invalid sid '{value}': expected '<kind>:<name>'")
        if kind == Sid.PRINCIPAL:
            return PrincipalSid(name)
        if kind == Sid.AUTHORITY:
            return GrantedAuthoritySid(name)
        raise ValueError(f"Invalid sid kind '{kind}' in '{value}'")


@dataclass(frozen=True)
class PrincipalSid(Sid):
    """Sid of an individual principal (user, service account)."""

    principal: str

    def __post_init__(self) -> None:
        if not self.principal:
            raise ValueError("Principal name must not be empty")

    @property
    def name(self) -> str:
        return self.principal

    @property
    def kind(self) -> str:
        return Sid.PRINCIPAL

    def __str__(self) -> str:
        return self.key()


@dataclass(frozen=True)
class GrantedAuthoritySid(Sid):
    """Sid of a granted authority (role, group)."""

    authority: str

    def __post_init__(self) -> None:
        if not self.authority:
            raise ValueError("Authority name must not be empty")

    @property
    def name(self) -> str:
        return self.authority

    @property
    def kind(self) -> str:
        return Sid.AUTHORITY

    def __str__(self) -> str:
        return self.key()


__all__ = [
    "GrantedAuthoritySid",
    "ObjectIdentity",
    "PrincipalSid",
    "Sid",
]
