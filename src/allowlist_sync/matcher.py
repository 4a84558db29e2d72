"""IP and CIDR matching for allowlist entries.

Entries are either a bare address (matched by exact string equality) or an
``address/prefix`` block (matched by masking both sides). Nothing here does
I/O or keeps state.
"""

import ipaddress

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _parse_address(value: str) -> IPAddress | None:
    """Parse a bare IPv4/IPv6 address, rejecting scoped IPv6 forms."""
    if not value or "%" in value or value.strip() != value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _parse_prefix(value: str, max_prefix: int) -> int | None:
    if not value.isascii() or not value.isdigit():
        return None
    prefix = int(value)
    if prefix > max_prefix:
        return None
    return prefix


def is_valid_address(value: str) -> bool:
    """Check whether a value is a bare IPv4 or IPv6 address.

    Args:
        value: Candidate address.

    Returns:
        True if the value parses as an address.
    """
    return _parse_address(value) is not None


def validate_format(value: str) -> bool:
    """Check whether a value is acceptable as an allowlist entry.

    Accepts a bare address, or ``address/prefix`` where the prefix is
    numeric and within 0-32 for IPv4 or 0-128 for IPv6.

    Args:
        value: IP address or CIDR block.

    Returns:
        True if the value may be stored.
    """
    if is_valid_address(value):
        return True

    if "/" not in value:
        return False

    subnet, mask = value.split("/", 1)
    address = _parse_address(subnet)
    if address is None:
        return False
    return _parse_prefix(mask, address.max_prefixlen) is not None


def matches(candidate_ip: str, entry: str) -> bool:
    """Check whether an address is covered by a single allowlist entry.

    Malformed input on either side yields False rather than an error.

    Args:
        candidate_ip: Client address to test.
        entry: Stored allowlist entry (address or CIDR block).

    Returns:
        True if the candidate equals the entry or falls inside its block.
    """
    if "/" not in entry:
        return candidate_ip == entry

    subnet, mask = entry.split("/", 1)
    candidate = _parse_address(candidate_ip)
    network_address = _parse_address(subnet)
    if candidate is None or network_address is None:
        return False
    if candidate.version != network_address.version:
        return False

    prefix = _parse_prefix(mask, network_address.max_prefixlen)
    if prefix is None:
        return False

    network = ipaddress.ip_network(f"{network_address}/{prefix}", strict=False)
    return candidate in network


def matches_any(candidate_ip: str, entries: list[str]) -> bool:
    """Return True on the first entry that covers the candidate."""
    return any(matches(candidate_ip, entry) for entry in entries)
