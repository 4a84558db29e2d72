"""Tests for allowlist_sync coordinator."""

import os
from unittest.mock import patch

import httpx
import pytest

from allowlist_sync.admin_config import AdminConfig
from allowlist_sync.coordinator import AllowlistCoordinator
from allowlist_sync.exceptions import (
    InvalidInputError,
    RemoteApiError,
    RemoteTransportError,
    StorageError,
)
from allowlist_sync.models import AllowedIpEntry
from allowlist_sync.seeds import SeedEntry
from allowlist_sync.settings import AllowlistSettings
from allowlist_sync.store import StoreTransaction


def _remote_mutations(fake_remote) -> list[tuple[str, str | None]]:
    return [
        call
        for call in fake_remote.calls
        if call[0] in ("upsert_item", "update_item_comment", "delete_item")
    ]


class TestBootstrap:
    """Test suite for loading the snapshot into an empty store."""

    def test_remote_unreachable_seeds_loopback(self, store, fake_remote):
        fake_remote.fail("list_items", error=RemoteTransportError("connection refused"))

        coordinator = AllowlistCoordinator(store, remote=fake_remote)

        assert [e.ip for e in coordinator.allowed_ips] == ["127.0.0.1", "::1"]
        assert coordinator.is_ip_allowed("127.0.0.1") is True
        assert coordinator.is_ip_allowed("::1") is True

    def test_local_only_seeds_loopback(self, store):
        coordinator = AllowlistCoordinator(store)

        assert [e.ip for e in coordinator.allowed_ips] == ["127.0.0.1", "::1"]

    def test_seeds_from_remote_items(self, store, fake_remote):
        fake_remote.items = {"10.0.0.0/8": "office", "not-an-ip": "junk"}

        coordinator = AllowlistCoordinator(store, remote=fake_remote)

        assert [(e.ip, e.description) for e in coordinator.allowed_ips] == [
            ("10.0.0.0/8", "office")
        ]
        assert store.exists("127.0.0.1") is False

    def test_existing_entries_skip_bootstrap(self, store, fake_remote):
        store.insert(AllowedIpEntry(ip="192.0.2.1"))

        coordinator = AllowlistCoordinator(store, remote=fake_remote)

        assert [e.ip for e in coordinator.allowed_ips] == ["192.0.2.1"]
        assert fake_remote.calls == []

    def test_custom_seed_entries(self, store):
        coordinator = AllowlistCoordinator(
            store, seed_entries=[SeedEntry(ip="198.51.100.0/24", description="ops")]
        )

        assert coordinator.get_entry("198.51.100.0/24").description == "ops"

    def test_removing_last_entry_reseeds(self, store, fake_remote):
        coordinator = AllowlistCoordinator(
            store, remote=fake_remote, seed_entries=[SeedEntry(ip="127.0.0.1")]
        )

        assert coordinator.remove_allowed_ip("127.0.0.1") is True

        assert [e.ip for e in coordinator.allowed_ips] == ["127.0.0.1"]

    def test_from_settings(self, tmp_path, no_remote_env):
        settings = AllowlistSettings(ALLOWLIST_DB_PATH=str(tmp_path / "app.db"))

        coordinator = AllowlistCoordinator.from_settings(settings)

        assert coordinator.remote is None
        assert [e.ip for e in coordinator.allowed_ips] == ["127.0.0.1", "::1"]
        assert AdminConfig(coordinator.store).verify_credential("admin123") is True

    def test_from_settings_with_seed_file(self, tmp_path, no_remote_env):
        seed_file = tmp_path / "seeds.yaml"
        seed_file.write_text("entries:\n  - ip: 10.1.0.0/16\n    description: vpn\n")
        with patch.dict(
            os.environ,
            {
                "ALLOWLIST_DB_PATH": str(tmp_path / "app.db"),
                "ALLOWLIST_SEED_FILE": str(seed_file),
            },
        ):
            coordinator = AllowlistCoordinator.from_settings()

        assert [e.ip for e in coordinator.allowed_ips] == ["10.1.0.0/16"]


class TestReadPath:
    """Test suite for is_ip_allowed and list_page."""

    def test_cidr_entry_covers_addresses(self, coordinator):
        coordinator.add_allowed_ip("192.168.1.0/24", "lan")

        assert coordinator.is_ip_allowed("192.168.1.255") is True
        assert coordinator.is_ip_allowed("192.168.2.0") is False

    def test_invalid_candidate_is_rejected(self, coordinator):
        coordinator.add_allowed_ip("10.0.0.0/8")

        assert coordinator.is_ip_allowed("10.0.0.0/8") is False
        assert coordinator.is_ip_allowed("") is False
        assert coordinator.is_ip_allowed("not-an-ip") is False

    def test_malformed_stored_entry_never_matches(self, store, fake_remote):
        store._conn.execute(
            "INSERT INTO allowed_ips (ip, description, created_at, updated_at) "
            "VALUES ('garbage/99', '', '2024-01-01 00:00:00', '2024-01-01 00:00:00')"
        )
        store.insert(AllowedIpEntry(ip="10.0.0.0/8"))

        coordinator = AllowlistCoordinator(store, remote=fake_remote, seed_entries=[])

        assert coordinator.is_ip_allowed("192.0.2.1") is False
        assert coordinator.is_ip_allowed("10.2.3.4") is True

    def test_snapshot_is_replaced_after_mutation(self, coordinator):
        before = coordinator.snapshot

        coordinator.add_allowed_ip("10.0.0.1")

        assert coordinator.snapshot is not before
        assert "10.0.0.1" not in before
        assert "10.0.0.1" in coordinator.snapshot

    def test_list_page_uses_configured_page_size(self, coordinator):
        for i in range(12):
            coordinator.add_allowed_ip(f"10.0.0.{i}", f"host {i}")

        page = coordinator.list_page()

        assert len(page.items) == 10
        assert page.total == 12
        assert page.has_next is True

        AdminConfig(coordinator.store).default_page_size = 5
        assert coordinator.list_page(page=3).items[-1].ip == "10.0.0.11"

    def test_list_page_search(self, coordinator):
        coordinator.add_allowed_ip("10.0.0.1", "Office")
        coordinator.add_allowed_ip("10.0.0.2", "home")

        page = coordinator.list_page(search="office", per_page=20)

        assert [e.ip for e in page.items] == ["10.0.0.1"]


class TestAddAndRemove:
    """Test suite for add_allowed_ip and remove_allowed_ip."""

    def test_round_trip(self, coordinator, fake_remote):
        assert coordinator.add_allowed_ip("203.0.113.7", "office") is True
        assert coordinator.is_ip_allowed("203.0.113.7") is True
        assert fake_remote.items == {"203.0.113.7": "office"}

        assert coordinator.remove_allowed_ip("203.0.113.7") is True
        assert coordinator.is_ip_allowed("203.0.113.7") is False
        assert fake_remote.items == {}

    def test_add_twice(self, coordinator, fake_remote):
        assert coordinator.add_allowed_ip("10.0.0.1", "a") is True
        assert coordinator.add_allowed_ip("10.0.0.1", "b") is False

        assert [e.ip for e in coordinator.allowed_ips] == ["10.0.0.1"]
        assert coordinator.get_entry("10.0.0.1").description == "a"
        assert _remote_mutations(fake_remote) == [("upsert_item", "10.0.0.1")]

    def test_add_invalid(self, coordinator, fake_remote):
        with pytest.raises(InvalidInputError) as exc_info:
            coordinator.add_allowed_ip("10.0.0.1/33")

        assert exc_info.value.details["field"] == "ip"
        assert _remote_mutations(fake_remote) == []

    def test_add_remote_failure_rolls_back(self, coordinator, fake_remote, store):
        fake_remote.fail("upsert_item", "10.0.0.1")

        with pytest.raises(RemoteApiError):
            coordinator.add_allowed_ip("10.0.0.1", "office")

        assert store.exists("10.0.0.1") is False
        assert coordinator.is_ip_allowed("10.0.0.1") is False

    def test_add_without_remote(self, store):
        coordinator = AllowlistCoordinator(store, seed_entries=[])

        assert coordinator.add_allowed_ip("10.0.0.1") is True
        assert coordinator.is_ip_allowed("10.0.0.1") is True

    def test_remove_missing(self, coordinator, fake_remote):
        assert coordinator.remove_allowed_ip("10.0.0.1") is False
        assert _remote_mutations(fake_remote) == []

    def test_remove_remote_failure_keeps_entry(self, coordinator, fake_remote, store):
        coordinator.add_allowed_ip("10.0.0.1", "office")
        fake_remote.fail("delete_item", "10.0.0.1")

        with pytest.raises(RemoteApiError):
            coordinator.remove_allowed_ip("10.0.0.1")

        assert store.exists("10.0.0.1") is True
        assert coordinator.is_ip_allowed("10.0.0.1") is True


class TestUpdateDescription:
    """Test suite for update_description."""

    def test_update(self, coordinator, fake_remote):
        coordinator.add_allowed_ip("10.0.0.1", "old")

        assert coordinator.update_description("10.0.0.1", "new") is True

        assert coordinator.get_entry("10.0.0.1").description == "new"
        assert fake_remote.items["10.0.0.1"] == "new"

    def test_update_missing(self, coordinator, fake_remote):
        assert coordinator.update_description("10.0.0.1", "new") is False
        assert _remote_mutations(fake_remote) == []

    def test_update_remote_failure_keeps_description(self, coordinator, fake_remote, store):
        coordinator.add_allowed_ip("10.0.0.1", "old")
        fake_remote.fail("update_item_comment", "10.0.0.1")

        with pytest.raises(RemoteApiError):
            coordinator.update_description("10.0.0.1", "new")

        assert store.get("10.0.0.1").description == "old"


class TestRename:
    """Test suite for rename_allowed_ip."""

    @pytest.fixture
    def original(self, coordinator, store):
        coordinator.add_allowed_ip("10.0.0.1", "original")
        return store.get("10.0.0.1")

    def test_rename(self, coordinator, fake_remote, store, original):
        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office") is True

        assert store.get("10.0.0.1") is None
        renamed = store.get("10.0.0.2")
        assert renamed.description == "office"
        assert renamed.created_at == original.created_at
        assert fake_remote.items == {"10.0.0.2": "office"}
        assert coordinator.is_ip_allowed("10.0.0.2") is True
        assert coordinator.is_ip_allowed("10.0.0.1") is False

    def test_rename_to_same_ip_updates_description(self, coordinator, fake_remote, store, original):
        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.1", "renamed") is True

        assert store.get("10.0.0.1").description == "renamed"
        assert fake_remote.items == {"10.0.0.1": "renamed"}

    def test_rename_missing(self, coordinator, fake_remote):
        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2") is False
        assert _remote_mutations(fake_remote) == []

    def test_rename_onto_existing_entry(self, coordinator, fake_remote, original):
        coordinator.add_allowed_ip("10.0.0.2", "taken")
        fake_remote.calls.clear()

        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2") is False
        assert _remote_mutations(fake_remote) == []

    def test_rename_invalid_target(self, coordinator, original):
        with pytest.raises(InvalidInputError) as exc_info:
            coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.0/40")

        assert exc_info.value.details["field"] == "new_ip"

    def test_remote_delete_failure_leaves_local_untouched(
        self, coordinator, fake_remote, store, original
    ):
        fake_remote.fail("delete_item", "10.0.0.1")

        with pytest.raises(RemoteApiError) as exc_info:
            coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        assert store.exists("10.0.0.1") is True
        assert store.exists("10.0.0.2") is False
        assert fake_remote.items == {"10.0.0.1": "original"}
        assert exc_info.value.compensation_failures == []

    def test_remote_failure_keeps_preexisting_target_item(
        self, coordinator, fake_remote, original
    ):
        fake_remote.items["10.0.0.2"] = "managed elsewhere"
        fake_remote.fail("delete_item", "10.0.0.1")

        with pytest.raises(RemoteApiError):
            coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        assert "10.0.0.2" in fake_remote.items
        assert ("delete_item", "10.0.0.2") not in fake_remote.calls

    def test_failed_compensation_is_reported(self, coordinator, fake_remote, original):
        fake_remote.fail("delete_item", "10.0.0.1")
        fake_remote.fail("delete_item", "10.0.0.2")

        with pytest.raises(RemoteApiError) as exc_info:
            coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        failures = exc_info.value.compensation_failures
        assert [(f.action, f.ip) for f in failures] == [("delete_remote", "10.0.0.2")]
        assert coordinator.last_compensation_failures == failures
        assert "compensation_failures" in exc_info.value.to_dict()

    def test_local_entry_vanishes_restores_remote(
        self, coordinator, fake_remote, store, original
    ):
        fake_remote.on("upsert_item", "10.0.0.2", lambda: store.delete("10.0.0.1"))

        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office") is False

        assert fake_remote.items == {"10.0.0.1": "original"}
        assert store.exists("10.0.0.2") is False

    def test_local_delete_error_restores_remote(
        self, coordinator, fake_remote, store, original
    ):
        error = StorageError("disk I/O error", operation="delete")
        with patch.object(StoreTransaction, "delete", side_effect=error):
            with pytest.raises(StorageError):
                coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        assert fake_remote.items == {"10.0.0.1": "original"}
        assert store.get("10.0.0.1").description == "original"
        assert store.exists("10.0.0.2") is False

    def test_applied_but_failed_create_is_removed_again(self, store, api, client_factory):
        def create_then_fail(request):
            response = api(request)
            if request.method == "POST" and b"10.0.0.2" in request.content:
                return httpx.Response(502, text="Bad Gateway")
            return response

        coordinator = AllowlistCoordinator(
            store, remote=client_factory(create_then_fail), seed_entries=[]
        )
        coordinator.add_allowed_ip("10.0.0.1", "original")

        with pytest.raises(RemoteApiError) as exc_info:
            coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        assert api.ips() == ["10.0.0.1"]
        assert exc_info.value.compensation_failures == []
        assert store.exists("10.0.0.1") is True
        assert store.exists("10.0.0.2") is False

    def test_local_error_with_failed_restore(self, coordinator, fake_remote, original):
        fake_remote.fail("upsert_item", "10.0.0.1")
        error = StorageError("disk I/O error", operation="delete")

        with patch.object(StoreTransaction, "delete", side_effect=error):
            with pytest.raises(StorageError) as exc_info:
                coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office")

        failures = exc_info.value.compensation_failures
        assert [(f.action, f.ip) for f in failures] == [("restore_remote", "10.0.0.1")]
        assert "10.0.0.2" not in fake_remote.items

    def test_concurrent_insert_of_target(self, coordinator, fake_remote, store, original):
        fake_remote.on(
            "upsert_item",
            "10.0.0.2",
            lambda: store.insert(AllowedIpEntry(ip="10.0.0.2", description="concurrent")),
        )

        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.2", "office") is False

        assert store.get("10.0.0.1").description == "original"
        assert store.get("10.0.0.2").description == "concurrent"
        assert fake_remote.items == {"10.0.0.1": "original"}

    def test_rename_without_remote(self, store):
        coordinator = AllowlistCoordinator(store, seed_entries=[])
        coordinator.add_allowed_ip("10.0.0.1", "a")

        assert coordinator.rename_allowed_ip("10.0.0.1", "10.0.0.0/24", "b") is True
        assert coordinator.is_ip_allowed("10.0.0.200") is True
