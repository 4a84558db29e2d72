"""Admin settings persisted in the local config table.

Keys:
    credential: PBKDF2 hash of the admin credential
    session_timeout: Session lifetime in seconds
    default_page_size: Entries per page in listings
"""

import logging

from allowlist_sync.security import hash_credential, verify_credential
from allowlist_sync.store import AllowlistStore

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "credential"
SESSION_TIMEOUT_KEY = "session_timeout"
DEFAULT_PAGE_SIZE_KEY = "default_page_size"

SESSION_TIMEOUT_DEFAULT = 86400
SESSION_TIMEOUT_FALLBACK = 1800
SESSION_TIMEOUT_MIN = 300
SESSION_TIMEOUT_MAX = 86400

PAGE_SIZE_DEFAULT = 10
PAGE_SIZE_MIN = 1
PAGE_SIZE_MAX = 100


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _to_int(raw: str | None, fallback: int) -> int:
    if raw is None:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


class AdminConfig:
    """Typed accessors over the store's key/value config table.

    Example:
        ```python
        config = AdminConfig(store)
        config.initialize_defaults("admin123")

        if config.verify_credential(submitted):
            ttl = config.session_timeout
        ```
    """

    def __init__(self, store: AllowlistStore) -> None:
        self.store = store

    def initialize_defaults(self, default_credential: str) -> None:
        """Create the tables and seed any missing config keys.

        Existing values are left untouched, so the credential is only hashed
        when it has never been set.
        """
        self.store.initialize()
        missing = {
            key: value
            for key, value in (
                (SESSION_TIMEOUT_KEY, str(SESSION_TIMEOUT_DEFAULT)),
                (DEFAULT_PAGE_SIZE_KEY, str(PAGE_SIZE_DEFAULT)),
            )
            if self.store.get_config(key) is None
        }
        if self.store.get_config(CREDENTIAL_KEY) is None:
            missing[CREDENTIAL_KEY] = hash_credential(default_credential)
        self.store.initialize(missing)

    def verify_credential(self, candidate: str) -> bool:
        """Check a submitted credential against the stored hash."""
        encoded = self.store.get_config(CREDENTIAL_KEY)
        if encoded is None:
            logger.warning("No admin credential configured")
            return False
        return verify_credential(candidate, encoded)

    def update_credential(self, new_credential: str) -> None:
        """Replace the stored credential hash."""
        if not new_credential:
            msg = "Credential must not be empty"
            raise ValueError(msg)
        self.store.set_config(CREDENTIAL_KEY, hash_credential(new_credential))
        logger.info("Admin credential updated")

    @property
    def session_timeout(self) -> int:
        """Session lifetime in seconds, clamped to 300-86400."""
        raw = self.store.get_config(SESSION_TIMEOUT_KEY)
        value = _to_int(raw, SESSION_TIMEOUT_FALLBACK)
        return _clamp(value, SESSION_TIMEOUT_MIN, SESSION_TIMEOUT_MAX)

    @session_timeout.setter
    def session_timeout(self, seconds: int) -> None:
        self.store.set_config(SESSION_TIMEOUT_KEY, str(int(seconds)))

    @property
    def default_page_size(self) -> int:
        """Entries per page, clamped to 1-100."""
        raw = self.store.get_config(DEFAULT_PAGE_SIZE_KEY)
        value = _to_int(raw, PAGE_SIZE_DEFAULT)
        return _clamp(value, PAGE_SIZE_MIN, PAGE_SIZE_MAX)

    @default_page_size.setter
    def default_page_size(self, size: int) -> None:
        self.store.set_config(DEFAULT_PAGE_SIZE_KEY, str(int(size)))
