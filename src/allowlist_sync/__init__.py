"""Admin IP allowlist synchronized with a remote rules list.

Keeps a local SQLite allowlist and a Cloudflare-style account rules list
consistent, and answers CIDR-aware access checks from an in-memory snapshot.

Example:
    ```python
    from allowlist_sync import AllowlistCoordinator

    coordinator = AllowlistCoordinator.from_settings()

    coordinator.add_allowed_ip("198.51.100.0/24", "office")
    if coordinator.is_ip_allowed(client_ip):
        ...
    ```
"""

from allowlist_sync.admin_config import AdminConfig
from allowlist_sync.client import RulesListClient
from allowlist_sync.coordinator import AllowlistCoordinator
from allowlist_sync.exceptions import (
    AllowlistError,
    CompensationFailure,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    RemoteApiError,
    RemoteListNotFoundError,
    RemoteTransportError,
    StorageError,
)
from allowlist_sync.matcher import is_valid_address, matches, validate_format
from allowlist_sync.models import (
    AllowedIpEntry,
    AllowlistPage,
    AllowlistSnapshot,
    RemoteItem,
    RemoteList,
)
from allowlist_sync.settings import (
    AllowlistSettings,
    RulesListSettings,
    get_allowlist_settings,
    get_rules_list_settings,
    reset_settings,
)
from allowlist_sync.store import AllowlistStore, StoreTransaction
from allowlist_sync.transport import HttpTransport

__all__ = [
    "AdminConfig",
    "AllowedIpEntry",
    "AllowlistCoordinator",
    "AllowlistError",
    "AllowlistPage",
    "AllowlistSettings",
    "AllowlistSnapshot",
    "AllowlistStore",
    "CompensationFailure",
    "ConflictError",
    "HttpTransport",
    "InvalidInputError",
    "NotFoundError",
    "RemoteApiError",
    "RemoteItem",
    "RemoteList",
    "RemoteListNotFoundError",
    "RemoteTransportError",
    "RulesListClient",
    "RulesListSettings",
    "StorageError",
    "StoreTransaction",
    "get_allowlist_settings",
    "get_rules_list_settings",
    "is_valid_address",
    "matches",
    "reset_settings",
    "validate_format",
]

__version__ = "0.1.0"
