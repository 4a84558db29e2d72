"""Bootstrap entries used when both the local store and the remote list are empty.

Defaults to the IPv4 and IPv6 loopback addresses. A YAML file can replace
them:

    entries:
      - ip: 127.0.0.1
        description: IPv4 loopback
      - ip: 10.0.0.0/8
        description: office network
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from allowlist_sync.matcher import validate_format

logger = logging.getLogger(__name__)


class SeedEntry(BaseModel):
    """A bootstrap allowlist entry."""

    ip: str = Field(description="IP address or CIDR block")
    description: str = Field(default="", description="Free-text label")


class SeedConfig(BaseModel):
    """Root of a seed file."""

    entries: list[SeedEntry] = Field(default_factory=list)


DEFAULT_SEED_ENTRIES: tuple[SeedEntry, ...] = (
    SeedEntry(ip="127.0.0.1", description="IPv4 loopback"),
    SeedEntry(ip="::1", description="IPv6 loopback"),
)


def load_seed_entries(path: str | Path | None = None) -> list[SeedEntry]:
    """Load bootstrap entries from a YAML file.

    Entries with an invalid IP/CIDR are skipped with a warning.

    Args:
        path: Seed file. The loopback defaults are returned when None.

    Returns:
        Valid seed entries.

    Raises:
        FileNotFoundError: If the seed file doesn't exist.
        ValueError: If the file content is not a valid seed config.
    """
    if path is None:
        return list(DEFAULT_SEED_ENTRIES)

    path = Path(path)
    if not path.exists():
        msg = f"Seed file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open() as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    config = SeedConfig.model_validate(data)
    entries = []
    for entry in config.entries:
        if validate_format(entry.ip):
            entries.append(entry)
        else:
            logger.warning("Skipping invalid seed entry: %s", entry.ip)

    logger.debug("Loaded %d seed entries from %s", len(entries), path)
    return entries
