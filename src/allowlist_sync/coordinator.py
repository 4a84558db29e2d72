"""Coordinator keeping the local allowlist and the remote rules list in step.

Mutations follow a fixed protocol:

1. validate input and check local existence (no I/O on the remote side);
2. open a local transaction and stage the change;
3. call the remote list while the transaction is still open;
4. commit locally only if the remote call succeeded, otherwise roll back
   and re-raise.

Renames are the exception: the remote side has no rollback primitive, so
the remote phase runs first with enough pre-state captured to undo it, and
the local phase runs second. Undo steps are best effort; their failures are
logged and attached to the primary error as CompensationFailure records,
never raised in its place.

The read path (``is_ip_allowed``) only consults the in-memory snapshot.

Example:
    ```python
    coordinator = AllowlistCoordinator.from_settings()

    coordinator.add_allowed_ip("203.0.113.0/24", "office")
    coordinator.is_ip_allowed("203.0.113.7")  # True
    coordinator.rename_allowed_ip("203.0.113.0/24", "198.51.100.0/24", "new office")
    ```
"""

import logging
from collections.abc import Callable, Iterable

from allowlist_sync.admin_config import AdminConfig
from allowlist_sync.client import RulesListClient
from allowlist_sync.exceptions import (
    CompensationFailure,
    ConflictError,
    InvalidInputError,
    RemoteApiError,
)
from allowlist_sync.matcher import is_valid_address, validate_format
from allowlist_sync.models import (
    AllowedIpEntry,
    AllowlistPage,
    AllowlistSnapshot,
    now_timestamp,
)
from allowlist_sync.seeds import SeedEntry, load_seed_entries
from allowlist_sync.settings import (
    AllowlistSettings,
    RulesListSettings,
    get_allowlist_settings,
)
from allowlist_sync.store import AllowlistStore

logger = logging.getLogger(__name__)


class AllowlistCoordinator:
    """Applies allowlist mutations to the local store and the remote list.

    Args:
        store: Initialized local store.
        remote: Rules-list client, or None to run local-only.
        seed_entries: Entries used when both stores are empty.
    """

    def __init__(
        self,
        store: AllowlistStore,
        remote: RulesListClient | None = None,
        seed_entries: list[SeedEntry] | None = None,
    ) -> None:
        self.store = store
        self.remote = remote
        self.seed_entries = (
            list(seed_entries) if seed_entries is not None else load_seed_entries()
        )
        self.last_compensation_failures: list[CompensationFailure] = []
        self._snapshot = AllowlistSnapshot()
        self.refresh()

    @classmethod
    def from_settings(
        cls,
        settings: AllowlistSettings | None = None,
        rules_list_settings: RulesListSettings | None = None,
    ) -> "AllowlistCoordinator":
        """Build a coordinator with its store and optional remote client.

        Args:
            settings: Store settings. If not provided, reads from environment.
            rules_list_settings: Remote settings. If not provided, reads from
                environment; remote sync is off when they are incomplete.

        Returns:
            A coordinator with a loaded snapshot.
        """
        settings = settings or get_allowlist_settings()
        store = AllowlistStore(settings.database_path)
        AdminConfig(store).initialize_defaults(
            settings.default_credential.get_secret_value()
        )
        remote = RulesListClient.from_settings(rules_list_settings)
        seeds = load_seed_entries(settings.seed_file)
        return cls(store, remote=remote, seed_entries=seeds)

    # =========================================================================
    # Snapshot
    # =========================================================================

    @property
    def snapshot(self) -> AllowlistSnapshot:
        return self._snapshot

    @property
    def allowed_ips(self) -> list[AllowedIpEntry]:
        """Entries of the current snapshot, oldest first."""
        return list(self._snapshot.entries)

    def get_entry(self, ip: str) -> AllowedIpEntry | None:
        return self._snapshot.get(ip)

    def refresh(self) -> AllowlistSnapshot:
        """Reload the snapshot from the local store.

        Bootstraps an empty store first, from the remote list when it has
        items, otherwise from the seed entries.

        Returns:
            The new snapshot.
        """
        entries = self.store.list_entries()
        if not entries:
            entries = self._bootstrap()
        self._snapshot = AllowlistSnapshot(entries=tuple(entries))
        logger.debug("Loaded %d allowlist entries", len(entries))
        return self._snapshot

    load_allowed_ips = refresh

    def _bootstrap(self) -> list[AllowedIpEntry]:
        inserted = self._seed_from_remote()
        if inserted:
            logger.info("Seeded %d allowlist entries from the remote list", inserted)
            return self.store.list_entries()

        inserted = self._insert_seeds(
            (seed.ip, seed.description) for seed in self.seed_entries
        )
        if inserted:
            logger.warning("Allowlist was empty; seeded %d default entries", inserted)
        return self.store.list_entries()

    def _seed_from_remote(self) -> int:
        if self.remote is None:
            return 0
        try:
            items = self.remote.list_items(use_cache=False)
        except RemoteApiError:
            logger.warning(
                "Could not read the remote list while bootstrapping", exc_info=True
            )
            return 0
        return self._insert_seeds((item.ip, item.comment) for item in items)

    def _insert_seeds(self, pairs: Iterable[tuple[str, str]]) -> int:
        now = now_timestamp()
        inserted = 0
        with self.store.transaction() as tx:
            for ip, description in pairs:
                if not validate_format(ip):
                    logger.warning("Skipping invalid bootstrap entry: %s", ip)
                    continue
                entry = AllowedIpEntry(
                    ip=ip, description=description or "", created_at=now, updated_at=now
                )
                if tx.insert_or_ignore(entry):
                    inserted += 1
        return inserted

    # =========================================================================
    # Read Path
    # =========================================================================

    def is_ip_allowed(self, candidate_ip: str) -> bool:
        """Check a client address against the snapshot.

        Invalid addresses are rejected outright. Malformed stored entries
        never match.
        """
        if not is_valid_address(candidate_ip):
            return False
        return self._snapshot.allows(candidate_ip)

    def list_page(
        self,
        search: str = "",
        page: int = 1,
        per_page: int | None = None,
    ) -> AllowlistPage:
        """Search the snapshot and return one page of results.

        Args:
            search: Case-insensitive substring of ip or description.
            page: 1-based page number, clamped into range.
            per_page: Page size; defaults to the configured page size.

        Returns:
            The requested page.
        """
        if per_page is None:
            per_page = AdminConfig(self.store).default_page_size
        return AllowlistPage.paginate(self._snapshot.search(search), page, per_page)

    # =========================================================================
    # Mutations
    # =========================================================================

    @staticmethod
    def _require_valid(ip: str, field: str = "ip") -> None:
        if not validate_format(ip):
            msg = f"Invalid IP format: {ip}"
            raise InvalidInputError(msg, field=field, value=ip)

    def add_allowed_ip(self, ip: str, description: str = "") -> bool:
        """Add an entry locally and upsert it remotely.

        Args:
            ip: IP address or CIDR block.
            description: Free-text label.

        Returns:
            True if added, False if the entry already exists.

        Raises:
            InvalidInputError: If ip is malformed.
            RemoteApiError: If the remote upsert fails; nothing is stored.
            StorageError: If the local transaction fails.
        """
        self._require_valid(ip)
        self.last_compensation_failures = []

        if self.store.exists(ip):
            return False

        now = now_timestamp()
        entry = AllowedIpEntry(ip=ip, description=description, created_at=now, updated_at=now)
        try:
            with self.store.transaction() as tx:
                tx.insert(entry)
                if self.remote is not None:
                    self.remote.upsert_item(ip, description)
        except ConflictError:
            return False
        except RemoteApiError:
            logger.exception("Remote upsert failed for %s; local insert rolled back", ip)
            raise

        logger.info("Added %s to allowlist", ip)
        self.refresh()
        return True

    def remove_allowed_ip(self, ip: str) -> bool:
        """Remove an entry locally and from the remote list.

        Returns:
            True if removed, False if no such entry exists.

        Raises:
            RemoteApiError: If the remote delete fails; the entry is kept.
            StorageError: If the local transaction fails.
        """
        self.last_compensation_failures = []
        if not self.store.exists(ip):
            return False

        try:
            with self.store.transaction() as tx:
                if not tx.delete(ip):
                    tx.rollback()
                    return False
                if self.remote is not None:
                    self.remote.delete_item(ip)
        except RemoteApiError:
            logger.exception("Remote delete failed for %s; local delete rolled back", ip)
            raise

        logger.info("Removed %s from allowlist", ip)
        self.refresh()
        return True

    def update_description(self, ip: str, description: str) -> bool:
        """Change an entry's description locally and remotely.

        Returns:
            True if updated, False if no such entry exists.

        Raises:
            RemoteApiError: If the remote update fails; the old description is kept.
            StorageError: If the local transaction fails.
        """
        self.last_compensation_failures = []
        try:
            with self.store.transaction() as tx:
                if not tx.update(ip, description):
                    tx.rollback()
                    return False
                if self.remote is not None:
                    self.remote.update_item_comment(ip, description)
        except RemoteApiError:
            logger.exception("Remote update failed for %s; local update rolled back", ip)
            raise

        logger.info("Updated description of %s", ip)
        self.refresh()
        return True

    def rename_allowed_ip(self, old_ip: str, new_ip: str, description: str = "") -> bool:
        """Replace an entry's IP (and description), keeping its creation time.

        The remote list is changed first. If that fails, a remote item
        created for new_ip is removed again. If the local change then fails,
        the remote list is restored to its previous shape.

        Args:
            old_ip: Existing entry.
            new_ip: Replacement IP/CIDR (may equal old_ip to only change the
                description).
            description: Description for the renamed entry.

        Returns:
            True if renamed, False if old_ip is missing, new_ip is already
            taken, or the local change found nothing to replace.

        Raises:
            InvalidInputError: If new_ip is malformed.
            RemoteApiError: If the remote phase fails.
            StorageError: If the local phase fails.
        """
        self._require_valid(new_ip, field="new_ip")
        self.last_compensation_failures = []

        existing = self.store.get(old_ip)
        if existing is None:
            return False
        if new_ip != old_ip and self.store.exists(new_ip):
            return False

        new_item_existed = False
        if self.remote is not None:
            new_item_existed = self.remote.find_by_ip(new_ip) is not None
            self._rename_remote(old_ip, new_ip, description, new_item_existed)

        try:
            with self.store.transaction() as tx:
                if old_ip == new_ip:
                    applied = tx.update(old_ip, description)
                    if not applied:
                        tx.rollback()
                else:
                    applied = self.store.rename_in(
                        tx, old_ip, new_ip, description, existing.created_at
                    )
        except ConflictError:
            logger.warning("Rename target %s was taken concurrently", new_ip)
            self._restore_remote(existing, new_ip, new_item_existed)
            return False
        except Exception as e:
            logger.exception("Local rename %s -> %s failed", old_ip, new_ip)
            self._restore_remote(existing, new_ip, new_item_existed)
            self._attach_failures(e)
            raise

        if not applied:
            logger.warning("Local entry %s vanished during rename", old_ip)
            self._restore_remote(existing, new_ip, new_item_existed)
            return False

        logger.info("Renamed %s to %s", old_ip, new_ip)
        self.refresh()
        return True

    # =========================================================================
    # Compensation
    # =========================================================================

    def _rename_remote(
        self,
        old_ip: str,
        new_ip: str,
        description: str,
        new_item_existed: bool,
    ) -> None:
        remote = self.remote
        if remote is None:
            return
        try:
            remote.upsert_item(new_ip, description)
            if old_ip != new_ip:
                remote.delete_item(old_ip)
        except Exception as e:
            logger.exception("Remote rename %s -> %s failed", old_ip, new_ip)
            if not new_item_existed:
                self._compensate("delete_remote", new_ip, lambda: remote.delete_item(new_ip))
            self._attach_failures(e)
            raise

    def _restore_remote(
        self,
        original: AllowedIpEntry,
        new_ip: str,
        new_item_existed: bool,
    ) -> None:
        """Put the remote list back the way it was before a rename."""
        remote = self.remote
        if remote is None:
            return
        if not new_item_existed:
            self._compensate("delete_remote", new_ip, lambda: remote.delete_item(new_ip))
        if original.ip != new_ip or new_item_existed:
            self._compensate(
                "restore_remote",
                original.ip,
                lambda: remote.upsert_item(original.ip, original.description),
            )

    def _compensate(self, action: str, ip: str, step: Callable[[], None]) -> None:
        try:
            step()
        except Exception as e:
            failure = CompensationFailure(action=action, ip=ip, error=e)
            self.last_compensation_failures.append(failure)
            logger.warning("Compensation failed: %s", failure.describe(), exc_info=True)

    def _attach_failures(self, error: BaseException) -> None:
        if not self.last_compensation_failures:
            return
        if hasattr(error, "compensation_failures"):
            error.compensation_failures.extend(self.last_compensation_failures)
        else:
            for failure in self.last_compensation_failures:
                error.add_note(f"compensation failed: {failure.describe()}")
