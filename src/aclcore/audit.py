"""Audit hook for permission decisions taken on an Acl."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import AccessControlEntry

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes GRANTED/DENIED records for ACEs flagged for auditing.

    Only entries with ``audit_success`` (for grants) or ``audit_failure``
    (for denials) produce a record.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def log_if_needed(self, granted: bool, ace: AccessControlEntry) -> None:
        if granted and ace.audit_success:
            self._log.info(
                "GRANTED due to ACE: %s",
                ace,
                extra={"object_identity": str(ace.acl_identity), "sid": str(ace.sid), "mask": ace.mask},
            )
        elif not granted and ace.audit_failure:
            self._log.info(
                "DENIED due to ACE: %s",
                ace,
                extra={"object_identity": str(ace.acl_identity), "sid": str(ace.sid), "mask": ace.mask},
            )


__all__ = ["AuditLogger"]
