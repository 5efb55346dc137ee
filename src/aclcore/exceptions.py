"""Unified exception hierarchy for aclcore.

All library errors inherit from AclError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- gRPC error handler decorators (unary + streaming) for services that
  expose ACL lookups over gRPC

Usage:
    from aclcore.exceptions import (
        AclError,
        AclNotFoundError,
        grpc_error_handler,
    )
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any, Callable, TypeVar, cast

if TYPE_CHECKING:
    from .identity import ObjectIdentity, Sid

__all__ = [
    # Base hierarchy
    "AclError",
    "ConfigurationError",
    "AclNotFoundError",
    "NoMatchingEntryError",
    "UnloadedSidError",
    "AclIntegrityError",
    "DepthExceededError",
    "DanglingParentError",
    "BackingStoreUnavailableError",
    "BackingStoreTimeoutError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # gRPC helpers
    "get_grpc_status_code",
    "grpc_error_handler",
    "grpc_stream_error_handler",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class AclError(Exception):
    """Base exception for aclcore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "ACL_NOT_FOUND").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AclError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class AclNotFoundError(AclError):
    """No ACL is stored for a requested object identity."""

    code: str = "ACL_NOT_FOUND"

    def __init__(self, object_identity: ObjectIdentity, message: str | None = None) -> None:
        self.object_identity = object_identity
        super().__init__(
            message or f"Unable to find ACL information for object identity '{object_identity}'",
            object_identity=str(object_identity),
        )


class NoMatchingEntryError(AclError):
    """No ACE in the inheritance chain matched the requested masks and sids."""

    code: str = "NO_MATCHING_ACE"
    message: str = "Unable to locate a matching ACE for passed permissions and SIDs"


class UnloadedSidError(AclError):
    """A permission check asked about a sid that was filtered out at load time."""

    code: str = "UNLOADED_SID"

    def __init__(self, object_identity: ObjectIdentity, sids: tuple[Sid, ...]) -> None:
        self.object_identity = object_identity
        self.sids = sids
        super().__init__(
            f"ACL for '{object_identity}' was not loaded for all requested SIDs",
            object_identity=str(object_identity),
            sids=[str(s) for s in sids],
        )


class AclIntegrityError(AclError):
    """Stored ACL rows do not form a valid tree."""

    code: str = "ACL_INTEGRITY_ERROR"


class DepthExceededError(AclIntegrityError):
    """Ancestor chain is cyclic or deeper than the configured bound."""

    code: str = "DEPTH_EXCEEDED"

    def __init__(self, object_identity: ObjectIdentity, max_depth: int) -> None:
        self.object_identity = object_identity
        self.max_depth = max_depth
        super().__init__(
            f"Ancestor chain of '{object_identity}' exceeds max depth {max_depth} or is cyclic",
            object_identity=str(object_identity),
            max_depth=max_depth,
        )


class DanglingParentError(AclIntegrityError):
    """An ACL row references a parent that has no row of its own."""

    code: str = "DANGLING_PARENT"

    def __init__(self, object_identity: ObjectIdentity, parent_identity: ObjectIdentity) -> None:
        self.object_identity = object_identity
        self.parent_identity = parent_identity
        super().__init__(
            f"ACL for '{object_identity}' references missing parent '{parent_identity}'",
            object_identity=str(object_identity),
            parent_identity=str(parent_identity),
        )


class BackingStoreUnavailableError(AclError):
    """The backing store failed; transient, the caller owns the retry policy."""

    code: str = "BACKING_STORE_UNAVAILABLE"


class BackingStoreTimeoutError(BackingStoreUnavailableError):
    """A backing store call exceeded its timeout."""

    code: str = "BACKING_STORE_TIMEOUT"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AclError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AclError]] = {}

    def register(self, code: str, error_cls: type[AclError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AclError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AclError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("ACL_WRITE_CONFLICT")
        class AclWriteConflictError(AclError):
            code = "ACL_WRITE_CONFLICT"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


for _cls in (
    AclError,
    ConfigurationError,
    AclNotFoundError,
    NoMatchingEntryError,
    UnloadedSidError,
    AclIntegrityError,
    DepthExceededError,
    DanglingParentError,
    BackingStoreUnavailableError,
    BackingStoreTimeoutError,
):
    error_registry.register(_cls.code, _cls)
del _cls


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: AclError) -> Any:
    """Map AclError to a grpc.StatusCode.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "ACL_NOT_FOUND": grpc.StatusCode.NOT_FOUND,
        "NO_MATCHING_ACE": grpc.StatusCode.PERMISSION_DENIED,
        "UNLOADED_SID": grpc.StatusCode.FAILED_PRECONDITION,
        "ACL_INTEGRITY_ERROR": grpc.StatusCode.DATA_LOSS,
        "DEPTH_EXCEEDED": grpc.StatusCode.DATA_LOSS,
        "DANGLING_PARENT": grpc.StatusCode.DATA_LOSS,
        "BACKING_STORE_UNAVAILABLE": grpc.StatusCode.UNAVAILABLE,
        "BACKING_STORE_TIMEOUT": grpc.StatusCode.DEADLINE_EXCEEDED,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


async def _abort_with(method_name: str, error: Exception, context: Any) -> None:
    import grpc

    if isinstance(error, AclError):
        status_code = get_grpc_status_code(error)
        error_message = f"[{error.code}] {error.message}"

        logger.error(
            "%s failed: %s",
            method_name,
            error_message,
            extra={
                "error_code": error.code,
                "error_details": error.details,
            },
        )

        context.set_trailing_metadata([("error-code", error.code)])
        await context.abort(status_code, error_message)
        return

    logger.exception("%s unexpected error: %s", method_name, error)
    await context.abort(
        grpc.StatusCode.INTERNAL,
        f"Unexpected {type(error)}: {error}",
    )


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods backed by an AclService.

    Catches AclError and aborts with the mapped gRPC status code.

    Usage:
        @grpc_error_handler
        async def ReadAcl(self, request, context):
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except Exception as e:
            await _abort_with(method.__name__, e, context)
            return None

    return wrapper


def grpc_stream_error_handler(method):
    """Decorator for streaming gRPC service methods (async generators).

    Usage:
        @grpc_stream_error_handler
        async def StreamChildren(self, request, context):
            for child in await service.find_children(parent):
                yield child
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            async for item in method(self, request, context):
                yield item
        except Exception as e:
            await _abort_with(method.__name__, e, context)
            return

    return wrapper
