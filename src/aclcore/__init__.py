from .audit import AuditLogger
from .cache import AclCache, PendingFill
from .config import AclConfig, LogLevel, load_config_from_env
from .constants import BasePermission
from .exceptions import (
    AclError,
    AclIntegrityError,
    AclNotFoundError,
    BackingStoreTimeoutError,
    BackingStoreUnavailableError,
    ConfigurationError,
    DanglingParentError,
    DepthExceededError,
    NoMatchingEntryError,
    UnloadedSidError,
)
from .identity import GrantedAuthoritySid, ObjectIdentity, PrincipalSid, Sid
from .logging import (
    AclLogFormatter,
    AclLoggerAdapter,
    get_acl_logger,
    safe_preview,
    setup_logging,
)
from .lookup import BatchLookupStrategy
from .model import AccessControlEntry, Acl
from .service import AclService
from .store import AceRow, AclRow, AclStore, InMemoryAclStore, row_to_acl

__all__ = [
    'AccessControlEntry',
    'AceRow',
    'Acl',
    'AclCache',
    'AclConfig',
    'AclError',
    'AclIntegrityError',
    'AclLogFormatter',
    'AclLoggerAdapter',
    'AclNotFoundError',
    'AclRow',
    'AclService',
    'AclStore',
    'AuditLogger',
    'BackingStoreTimeoutError',
    'BackingStoreUnavailableError',
    'BasePermission',
    'BatchLookupStrategy',
    'ConfigurationError',
    'DanglingParentError',
    'DepthExceededError',
    'GrantedAuthoritySid',
    'InMemoryAclStore',
    'LogLevel',
    'NoMatchingEntryError',
    'ObjectIdentity',
    'PendingFill',
    'PrincipalSid',
    'Sid',
    'UnloadedSidError',
    'get_acl_logger',
    'load_config_from_env',
    'row_to_acl',
    'safe_preview',
    'setup_logging',
]
