"""Pytest configuration for allowlist_sync tests."""

import json
import os
from collections.abc import Callable
from unittest.mock import patch

import httpx
import pytest

from allowlist_sync.client import RulesListClient
from allowlist_sync.coordinator import AllowlistCoordinator
from allowlist_sync.exceptions import RemoteApiError
from allowlist_sync.models import RemoteItem
from allowlist_sync.settings import reset_settings
from allowlist_sync.store import AllowlistStore
from allowlist_sync.transport import HttpTransport

# Test constants
TEST_ACCOUNT_ID = "test-account-id-12345"
TEST_API_TOKEN = "test-api-token-secret"
TEST_LIST_ID = "test-list-id-67890"
TEST_LIST_NAME = "admin-allowlist"


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings singletons after each test."""
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def fast_credential_hashing(monkeypatch):
    """Keep PBKDF2 cheap in tests."""
    monkeypatch.setattr("allowlist_sync.security.DEFAULT_ITERATIONS", 1000)


@pytest.fixture
def mock_env_vars():
    """Set remote rules-list environment variables for testing."""
    with patch.dict(
        os.environ,
        {
            "CLOUDFLARE_API_TOKEN": TEST_API_TOKEN,
            "CLOUDFLARE_ACCOUNT_ID": TEST_ACCOUNT_ID,
        },
    ):
        yield


@pytest.fixture
def no_remote_env(monkeypatch):
    """Make sure no remote credentials leak in from the environment."""
    for name in (
        "CLOUDFLARE_API_TOKEN",
        "CLOUDFLARE_ACCOUNT_ID",
        "CLOUDFLARE_LIST_ID",
        "CLOUDFLARE_LIST_NAME",
    ):
        monkeypatch.delenv(name, raising=False)


class FakeRulesList:
    """In-memory stand-in for RulesListClient.

    Failures can be injected per (method, ip) pair, and hooks run before a
    method touches the fake's state.
    """

    def __init__(self, items: dict[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})
        self.calls: list[tuple[str, str | None]] = []
        self.failures: dict[tuple[str, str | None], Exception] = {}
        self.hooks: dict[tuple[str, str], Callable[[], None]] = {}
        self.unreachable = False

    def fail(self, method: str, ip: str | None = None, error: Exception | None = None) -> None:
        self.failures[(method, ip)] = error or RemoteApiError(f"{method} failed", status_code=500)

    def on(self, method: str, ip: str, hook: Callable[[], None]) -> None:
        self.hooks[(method, ip)] = hook

    def _enter(self, method: str, ip: str | None = None) -> None:
        self.calls.append((method, ip))
        error = self.failures.get((method, ip)) or self.failures.get((method, None))
        if error is not None:
            raise error
        hook = self.hooks.pop((method, ip), None) if ip is not None else None
        if hook is not None:
            hook()

    def list_items(self, use_cache: bool = True) -> list[RemoteItem]:
        self._enter("list_items")
        return [
            RemoteItem(id=f"id-{ip}", ip=ip, comment=comment)
            for ip, comment in self.items.items()
        ]

    def find_by_ip(self, ip: str) -> RemoteItem | None:
        self._enter("find_by_ip", ip)
        if ip not in self.items:
            return None
        return RemoteItem(id=f"id-{ip}", ip=ip, comment=self.items[ip])

    def upsert_item(self, ip: str, comment: str = "") -> None:
        self._enter("upsert_item", ip)
        self.items[ip] = comment

    def update_item_comment(self, ip: str, comment: str = "") -> None:
        self._enter("update_item_comment", ip)
        self.items[ip] = comment

    def delete_item(self, ip: str) -> None:
        self._enter("delete_item", ip)
        self.items.pop(ip, None)


@pytest.fixture
def store(tmp_path):
    """Initialized store backed by a temporary SQLite file."""
    store = AllowlistStore(tmp_path / "allowlist.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def fake_remote():
    return FakeRulesList()


@pytest.fixture
def coordinator(store, fake_remote):
    """Coordinator over an empty store with no bootstrap entries."""
    return AllowlistCoordinator(store, remote=fake_remote, seed_entries=[])


LISTS_PATH = f"/client/v4/accounts/{TEST_ACCOUNT_ID}/rules/lists"
ITEMS_PATH = f"{LISTS_PATH}/{TEST_LIST_ID}/items"


class FakeRulesApi:
    """httpx.MockTransport handler emulating the rules-list endpoints."""

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.lists = [
            {"id": "other-list", "name": "other", "kind": "ip", "num_items": 0},
            {"id": TEST_LIST_ID, "name": TEST_LIST_NAME, "kind": "ip", "num_items": 0},
        ]
        self.items: list[dict] = []
        self.requests: list[httpx.Request] = []
        self._next_id = 1

    def add(self, ip: str, comment: str | None = "") -> None:
        self.items.append({"id": f"item-{self._next_id}", "ip": ip, "comment": comment})
        self._next_id += 1

    def ips(self) -> list[str]:
        return [item["ip"] for item in self.items]

    def count(self, method: str, suffix: str = "/items") -> int:
        return sum(
            1
            for r in self.requests
            if r.method == method and r.url.path.endswith(suffix)
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == LISTS_PATH and request.method == "GET":
            return httpx.Response(200, json={"success": True, "errors": [], "result": self.lists})

        if path == ITEMS_PATH:
            return self._items(request)

        return httpx.Response(
            404,
            json={"success": False, "errors": [{"code": 7003, "message": "Could not route"}]},
        )

    def _items(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            start = int(request.url.params.get("cursor") or 0)
            end = start + self.page_size
            body = {"success": True, "result": self.items[start:end]}
            if end < len(self.items):
                body["result_info"] = {"cursors": {"after": str(end)}}
            return httpx.Response(200, json=body)

        payload = json.loads(request.content)["items"]
        if request.method == "POST":
            for item in payload:
                self.add(item["ip"], item.get("comment", ""))
        elif request.method == "PUT":
            by_id = {item["id"]: item for item in self.items}
            for item in payload:
                by_id[item["id"]]["comment"] = item["comment"]
        elif request.method == "DELETE":
            ids = {item["id"] for item in payload}
            self.items = [item for item in self.items if item["id"] not in ids]
        return httpx.Response(200, json={"success": True, "result": {"operation_id": "op-1"}})


@pytest.fixture
def api():
    return FakeRulesApi()


@pytest.fixture
def client_factory():
    """Build a RulesListClient whose HTTP calls go to a MockTransport handler."""

    def factory(handler, **kwargs) -> RulesListClient:
        transport = HttpTransport(client=httpx.Client(transport=httpx.MockTransport(handler)))
        kwargs.setdefault("list_id", TEST_LIST_ID)
        return RulesListClient(
            api_token=TEST_API_TOKEN,
            account_id=TEST_ACCOUNT_ID,
            transport=transport,
            **kwargs,
        )

    return factory
