"""Pydantic models for allowlist entries and rules-list items.

Type-safe models for the local allowlist, the remote rules list, and the
in-memory snapshot used by the read path.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from allowlist_sync.matcher import matches_any

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_timestamp() -> datetime:
    """Current local time truncated to whole seconds."""
    return datetime.now().replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Format a timestamp the way it is persisted."""
    return value.strftime(TIMESTAMP_FORMAT)


class AllowedIpEntry(BaseModel):
    """An entry in the local allowlist.

    Attributes:
        ip: IPv4/IPv6 address or CIDR block (primary key)
        description: Free-text label, may be empty
        created_at: When the entry was created (local clock, seconds)
        updated_at: When the entry was last modified
    """

    model_config = ConfigDict(frozen=True)

    ip: str = Field(description="IP address or CIDR block")
    description: str = Field(default="", description="Free-text label")
    created_at: datetime = Field(default_factory=now_timestamp)
    updated_at: datetime = Field(default_factory=now_timestamp)

    def to_row(self) -> dict[str, str]:
        """Convert to the column mapping used by the local store."""
        return {
            "ip": self.ip,
            "description": self.description,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


class RemoteItem(BaseModel):
    """An item in the remote rules list.

    The API reports the address as ``ip``; some list kinds use ``value``
    instead, so either is accepted.

    Attributes:
        id: Remote identifier, required for update and delete
        ip: IP address or CIDR range
        comment: Description mirrored from the local entry
        created_on: When the item was created remotely
        modified_on: When the item was last modified remotely
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    ip: str = Field(description="IP address or CIDR range")
    comment: str = Field(default="", description="Item comment")
    created_on: datetime | None = None
    modified_on: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_value_alias(cls, data: Any) -> Any:
        """Map ``value`` onto ``ip`` and coerce a null comment to empty."""
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("ip") and data.get("value"):
                data["ip"] = data["value"]
            if data.get("comment") is None:
                data["comment"] = ""
        return data


class RemoteList(BaseModel):
    """A rules list in the remote account.

    Attributes:
        id: Unique identifier for the list
        name: List name (unique per account)
        description: Optional description
        kind: Type of list (ip, redirect, hostname, asn)
        num_items: Number of items in the list
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: str | None = None
    kind: str = "ip"
    num_items: int = 0


class AllowlistPage(BaseModel):
    """One page of a (possibly filtered) allowlist listing."""

    items: list[AllowedIpEntry] = Field(default_factory=list)
    current_page: int = 1
    per_page: int = 10
    total: int = 0
    total_pages: int = 0
    has_prev: bool = False
    has_next: bool = False

    @classmethod
    def paginate(
        cls,
        entries: list[AllowedIpEntry],
        page: int,
        per_page: int,
    ) -> "AllowlistPage":
        """Slice entries into a page, clamping the page number into range.

        Args:
            entries: Entries to paginate, already filtered and ordered.
            page: Requested 1-based page number.
            per_page: Page size (at least 1).

        Returns:
            The requested page.
        """
        per_page = max(1, per_page)
        total = len(entries)
        total_pages = math.ceil(total / per_page)
        page = max(1, min(page, total_pages))
        start = (page - 1) * per_page
        return cls(
            items=entries[start : start + per_page],
            current_page=page,
            per_page=per_page,
            total=total,
            total_pages=total_pages,
            has_prev=page > 1,
            has_next=page < total_pages,
        )


@dataclass(frozen=True)
class AllowlistSnapshot:
    """Immutable in-memory copy of the local allowlist.

    Entries are ordered by creation time ascending. The coordinator swaps
    in a fresh snapshot after every successful mutation.

    Attributes:
        entries: Allowlist entries in creation order
        loaded_at: When the snapshot was read from the store
    """

    entries: tuple[AllowedIpEntry, ...] = ()
    loaded_at: datetime = field(default_factory=now_timestamp)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, ip: object) -> bool:
        return any(entry.ip == ip for entry in self.entries)

    def get(self, ip: str) -> AllowedIpEntry | None:
        """Look up an entry by its exact IP key."""
        for entry in self.entries:
            if entry.ip == ip:
                return entry
        return None

    def allows(self, candidate_ip: str) -> bool:
        """Check the candidate against every entry in order."""
        return matches_any(candidate_ip, [entry.ip for entry in self.entries])

    def search(self, term: str) -> list[AllowedIpEntry]:
        """Case-insensitive substring search over ip and description."""
        term = term.strip().lower()
        if not term:
            return list(self.entries)
        return [
            entry
            for entry in self.entries
            if term in entry.ip.lower() or term in entry.description.lower()
        ]
