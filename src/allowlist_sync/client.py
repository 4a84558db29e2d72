"""Client for mirroring allowlist entries onto a remote rules list.

Talks to the account-level rules-list API:

    GET    /accounts/{account}/rules/lists
    GET    /accounts/{account}/rules/lists/{list}/items?per_page=1000&cursor=...
    POST   /accounts/{account}/rules/lists/{list}/items   {"items": [{"ip", "comment"}]}
    PUT    /accounts/{account}/rules/lists/{list}/items   {"items": [{"id", "comment"}]}
    DELETE /accounts/{account}/rules/lists/{list}/items   {"items": [{"id"}]}

Every response is a JSON envelope with a ``success`` flag. There is no retry
logic here; connection retries belong to the transport.
"""

import json
import logging
from typing import Any

from allowlist_sync.exceptions import (
    RemoteApiError,
    RemoteListNotFoundError,
    RemoteTransportError,
)
from allowlist_sync.models import RemoteItem, RemoteList
from allowlist_sync.settings import (
    DEFAULT_API_BASE_URL,
    RulesListSettings,
    get_rules_list_settings,
)
from allowlist_sync.transport import HttpTransport, TransportResponse

logger = logging.getLogger(__name__)

ITEMS_PER_PAGE = 1000


def _first_error_message(errors: Any) -> str | None:
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
    return None


class RulesListClient:
    """Client for a single remote rules list.

    Caches the full item listing until the next mutation, and resolves the
    list id lazily when only a list name (or nothing) is configured.

    Example:
        ```python
        client = RulesListClient.from_settings()
        if client is not None:
            client.upsert_item("203.0.113.7", "office")
            item = client.find_by_ip("203.0.113.7")
        ```
    """

    def __init__(
        self,
        api_token: str,
        account_id: str,
        list_id: str | None = None,
        list_name: str | None = None,
        transport: HttpTransport | None = None,
        base_url: str = DEFAULT_API_BASE_URL,
    ) -> None:
        """Initialize the rules-list client.

        Args:
            api_token: Bearer token.
            account_id: Account owning the list.
            list_id: Explicit list id; skips resolution when given.
            list_name: Name to resolve when no id is given.
            transport: HTTP transport (a default one is created if omitted).
            base_url: API root URL.
        """
        self._api_token = api_token
        self._account_id = account_id
        self._list_id = list_id or None
        self._list_name = list_name or None
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpTransport()
        self._items_cache: list[RemoteItem] | None = None

        logger.info(
            "Initialized rules list client for account %s",
            self._account_id[:8] + "...",
        )

    @classmethod
    def from_settings(
        cls,
        settings: RulesListSettings | None = None,
        transport: HttpTransport | None = None,
    ) -> "RulesListClient | None":
        """Create a client from settings.

        Args:
            settings: Optional settings. If not provided, reads from environment.
            transport: Optional transport; built from settings if omitted.

        Returns:
            The client, or None when token or account id is missing.
        """
        settings = settings or get_rules_list_settings()
        if not settings.is_configured:
            logger.info("Remote rules list sync disabled: token or account id not set")
            return None

        transport = transport or HttpTransport(
            timeout=settings.request_timeout,
            max_redirects=settings.max_redirects,
            max_retries=settings.max_retries,
        )
        return cls(
            api_token=settings.get_token_value(),
            account_id=settings.cloudflare_account_id or "",
            list_id=settings.cloudflare_list_id,
            list_name=settings.cloudflare_list_name,
            transport=transport,
            base_url=settings.api_base_url,
        )

    # =========================================================================
    # Request Helpers
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _items_path(self) -> str:
        list_id = self.resolve_list_id()
        return f"accounts/{self._account_id}/rules/lists/{list_id}/items"

    @staticmethod
    def _decode_response(response: TransportResponse) -> dict[str, Any]:
        """Decode the JSON envelope and enforce ``success``.

        Raises:
            RemoteApiError: If the body is not a JSON object or reports failure.
        """
        try:
            data = json.loads(response.text)
        except ValueError as e:
            msg = "Rules list API returned invalid JSON"
            raise RemoteApiError(msg, status_code=response.status_code) from e

        if not isinstance(data, dict):
            msg = "Rules list API returned invalid JSON"
            raise RemoteApiError(msg, status_code=response.status_code)

        if data.get("success") is not True:
            errors = data.get("errors")
            msg = "Rules list API request failed"
            first = _first_error_message(errors)
            if first:
                msg = f"{msg}: {first}"
            raise RemoteApiError(
                msg,
                status_code=response.status_code,
                errors=errors if isinstance(errors, list) else None,
            )

        return data

    @staticmethod
    def _reraise_with_payload(error: RemoteTransportError) -> None:
        """Surface the API error message carried by a failed HTTP response."""
        if not error.body:
            raise error
        try:
            payload = json.loads(error.body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise error
        errors = payload.get("errors")
        first = _first_error_message(errors)
        if first is None:
            raise error
        msg = f"Rules list API request failed: {first}"
        raise RemoteApiError(
            msg,
            status_code=error.status_code,
            errors=errors,
        ) from error

    @staticmethod
    def _next_cursor(data: dict[str, Any]) -> str | None:
        result_info = data.get("result_info")
        if not isinstance(result_info, dict):
            return None
        cursors = result_info.get("cursors")
        if not isinstance(cursors, dict):
            return None
        return cursors.get("after") or None

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._url(path)
        headers = self._headers()
        try:
            if method == "GET":
                response = self._transport.get(url, headers=headers, params=params)
            elif method == "POST":
                response = self._transport.post(url, body, headers=headers)
            elif method == "PUT":
                response = self._transport.put(url, body, headers=headers)
            elif method == "DELETE":
                response = self._transport.delete(url, body, headers=headers)
            else:
                response = self._transport.request(
                    method, url, headers=headers, params=params, json=body
                )
        except RemoteTransportError as e:
            self._reraise_with_payload(e)
            raise

        return self._decode_response(response)

    # =========================================================================
    # List Operations
    # =========================================================================

    def get_lists(self) -> list[RemoteList]:
        """List all rules lists in the account.

        Raises:
            RemoteApiError: If the API request fails.
        """
        data = self._request("GET", f"accounts/{self._account_id}/rules/lists")
        result = data.get("result") or []
        lists = [RemoteList.model_validate(item) for item in result if isinstance(item, dict)]
        logger.debug("Listed %d rules lists", len(lists))
        return lists

    def resolve_list_id(self) -> str:
        """Return the list id, resolving and caching it on first use.

        An explicit id wins. Otherwise the list whose name equals the
        configured name is used, or the first list when no name is set.

        Raises:
            RemoteListNotFoundError: If no list matches.
            RemoteApiError: If the API request fails.
        """
        if self._list_id:
            return self._list_id

        lists = self.get_lists()
        if not lists:
            msg = "Account has no rules lists"
            raise RemoteListNotFoundError(msg, list_name=self._list_name)

        if self._list_name:
            for remote_list in lists:
                if remote_list.name == self._list_name:
                    self._list_id = remote_list.id
                    break
            else:
                msg = f"Rules list not found by name: {self._list_name}"
                raise RemoteListNotFoundError(msg, list_name=self._list_name)
        else:
            self._list_id = lists[0].id

        logger.info("Resolved rules list id %s", self._list_id)
        return self._list_id

    # =========================================================================
    # Item Operations
    # =========================================================================

    def invalidate_cache(self) -> None:
        self._items_cache = None

    def list_items(self, use_cache: bool = True) -> list[RemoteItem]:
        """Return every item in the list, following pagination cursors.

        Args:
            use_cache: Return the cached listing when one is available.

        Returns:
            All items across pages.

        Raises:
            RemoteApiError: If any page request fails.
        """
        if use_cache and self._items_cache is not None:
            logger.debug("Using cached rules list items (%d)", len(self._items_cache))
            return list(self._items_cache)

        path = self._items_path()
        items: list[RemoteItem] = []
        cursor: str | None = None
        pages = 0

        while True:
            params: dict[str, Any] = {"per_page": ITEMS_PER_PAGE}
            if cursor:
                params["cursor"] = cursor

            data = self._request("GET", path, params=params)
            pages += 1
            result = data.get("result") or []
            if isinstance(result, list):
                items.extend(
                    RemoteItem.model_validate(item)
                    for item in result
                    if isinstance(item, dict) and (item.get("ip") or item.get("value"))
                )

            cursor = self._next_cursor(data)
            if not cursor:
                break

        logger.debug("Fetched %d rules list items in %d pages", len(items), pages)
        self._items_cache = items
        return list(items)

    def find_by_ip(self, ip: str) -> RemoteItem | None:
        """Find an item by its exact address string."""
        for item in self.list_items():
            if item.ip == ip:
                return item
        return None

    def _mutate(self, method: str, items: list[dict[str, Any]]) -> None:
        """Send a mutating item request and drop the cached listing.

        The cache is dropped whether or not the request succeeds: a failed
        response may still have been applied remotely.
        """
        try:
            self._request(method, self._items_path(), body={"items": items})
        finally:
            self.invalidate_cache()

    @staticmethod
    def _require_id(item: RemoteItem, action: str) -> str:
        if not item.id:
            msg = f"Rules list item for {item.ip} has no id; cannot {action}"
            raise RemoteApiError(msg)
        return item.id

    def add_item(self, ip: str, comment: str = "") -> None:
        """Create an item.

        Raises:
            RemoteApiError: If the API request fails.
        """
        self._mutate("POST", [{"ip": ip, "comment": comment}])
        logger.info("Added %s to rules list", ip)

    def update_item_comment(self, ip: str, comment: str = "") -> None:
        """Update an item's comment, creating the item if it is missing.

        Raises:
            RemoteApiError: If the API request fails or the item has no id.
        """
        item = self.find_by_ip(ip)
        if item is None:
            self.add_item(ip, comment)
            return

        item_id = self._require_id(item, "update")
        self._mutate("PUT", [{"id": item_id, "comment": comment}])
        logger.info("Updated rules list comment for %s", ip)

    def delete_item(self, ip: str) -> None:
        """Delete an item; missing items are ignored.

        Raises:
            RemoteApiError: If the API request fails or the item has no id.
        """
        item = self.find_by_ip(ip)
        if item is None:
            logger.debug("No rules list item for %s; nothing to delete", ip)
            return

        item_id = self._require_id(item, "delete")
        self._mutate("DELETE", [{"id": item_id}])
        logger.info("Deleted %s from rules list", ip)

    def upsert_item(self, ip: str, comment: str = "") -> None:
        """Create the item, or update its comment if it already exists."""
        if self.find_by_ip(ip) is None:
            self.add_item(ip, comment)
            return
        self.update_item_comment(ip, comment)
