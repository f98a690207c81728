"""grantsnap - client-side state persistence and auth caching for GrantSnap."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("grantsnap")
except PackageNotFoundError:
    __version__ = "0+local"
from grantsnap.auth_cache import AuthCacheManager, AuthProvider
from grantsnap.config import GrantSnapConfig, SupabaseSettings
from grantsnap.context import AppContext
from grantsnap.ephemeral import ComponentState, EphemeralComponentCache
from grantsnap.exceptions import (
    AuthProviderError,
    GrantSnapConfigError,
    GrantSnapError,
    SerializationError,
    StorageError,
    StorageQuotaExceededError,
)
from grantsnap.models import (
    AuthCacheEntry,
    AuthEvent,
    EphemeralEntry,
    Identity,
    PersistedEntry,
    SessionHandle,
)
from grantsnap.persisted import PersistedValueStore
from grantsnap.result import Lookup, LookupStatus
from grantsnap.smart_auth import AuthStatus, SmartAuth
from grantsnap.storage import (
    FileStorage,
    KeyValueStorage,
    MemoryStorage,
    clear_prefix,
    normalize_ai_context_summary,
    run_cleanup_once,
)
from grantsnap.visibility import TabVisibility

__all__ = [
    "__version__",
    "AppContext",
    "AuthCacheEntry",
    "AuthCacheManager",
    "AuthEvent",
    "AuthProvider",
    "AuthProviderError",
    "AuthStatus",
    "ComponentState",
    "EphemeralComponentCache",
    "EphemeralEntry",
    "FileStorage",
    "GrantSnapConfig",
    "GrantSnapConfigError",
    "GrantSnapError",
    "Identity",
    "KeyValueStorage",
    "Lookup",
    "LookupStatus",
    "MemoryStorage",
    "PersistedEntry",
    "PersistedValueStore",
    "SerializationError",
    "SessionHandle",
    "SmartAuth",
    "StorageError",
    "StorageQuotaExceededError",
    "SupabaseSettings",
    "TabVisibility",
    "clear_prefix",
    "normalize_ai_context_summary",
    "run_cleanup_once",
]
