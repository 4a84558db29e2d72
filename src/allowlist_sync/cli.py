"""CLI commands for allowlist management.

Provides a command-line interface over the coordinator: listing, adding,
removing and renaming entries, checking addresses, and inspecting the
remote rules list.
"""

import argparse
import getpass
import json
import logging
import sys

from allowlist_sync.admin_config import AdminConfig
from allowlist_sync.coordinator import AllowlistCoordinator
from allowlist_sync.exceptions import AllowlistError
from allowlist_sync.settings import get_allowlist_settings


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI output.

    Args:
        verbose: Enable debug logging.
    """
    level = logging.DEBUG if verbose else get_allowlist_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _report(applied: bool, success: str, failure: str) -> int:
    if applied:
        print(f"✓ {success}")
        return 0
    print(f"✗ {failure}")
    return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List allowlist entries, optionally filtered and paginated.

    Args:
        args: Parsed command line arguments.

    Returns:
        Exit code.
    """
    coordinator = AllowlistCoordinator.from_settings()
    page = coordinator.list_page(search=args.search, page=args.page, per_page=args.per_page)

    if args.json:
        print(page.model_dump_json(indent=2))
        return 0

    print(f"\nAllowlist ({page.total} entries, page {page.current_page}/{max(page.total_pages, 1)}):")
    print("-" * 60)
    for entry in page.items:
        description = f"  {entry.description}" if entry.description else ""
        print(f"  {entry.ip:<40}{description}")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    coordinator = AllowlistCoordinator.from_settings()
    added = coordinator.add_allowed_ip(args.ip, args.description)
    return _report(added, f"Added {args.ip}", f"{args.ip} already exists")


def cmd_remove(args: argparse.Namespace) -> int:
    coordinator = AllowlistCoordinator.from_settings()
    removed = coordinator.remove_allowed_ip(args.ip)
    return _report(removed, f"Removed {args.ip}", f"{args.ip} does not exist")


def cmd_describe(args: argparse.Namespace) -> int:
    coordinator = AllowlistCoordinator.from_settings()
    updated = coordinator.update_description(args.ip, args.description)
    return _report(updated, f"Updated {args.ip}", f"{args.ip} does not exist")


def cmd_rename(args: argparse.Namespace) -> int:
    """Rename an entry, keeping its creation time.

    Args:
        args: Parsed command line arguments.

    Returns:
        Exit code.
    """
    coordinator = AllowlistCoordinator.from_settings()
    description = args.description
    if description is None:
        description = coordinator.store.require(args.old_ip).description

    renamed = coordinator.rename_allowed_ip(args.old_ip, args.new_ip, description)
    for failure in coordinator.last_compensation_failures:
        print(f"⚠ compensation failed: {failure.describe()}", file=sys.stderr)
    return _report(
        renamed,
        f"Renamed {args.old_ip} to {args.new_ip}",
        f"Could not rename {args.old_ip} to {args.new_ip} (missing or already taken)",
    )


def cmd_check(args: argparse.Namespace) -> int:
    """Check whether an address is allowed.

    Returns:
        0 if allowed, 1 otherwise.
    """
    coordinator = AllowlistCoordinator.from_settings()
    allowed = coordinator.is_ip_allowed(args.ip)
    return _report(allowed, f"{args.ip} is allowed", f"{args.ip} is not allowed")


def cmd_remote(args: argparse.Namespace) -> int:
    """Show the items currently in the remote rules list.

    Args:
        args: Parsed command line arguments.

    Returns:
        Exit code.
    """
    coordinator = AllowlistCoordinator.from_settings()
    if coordinator.remote is None:
        print("Remote rules list sync is not configured", file=sys.stderr)
        return 1

    items = coordinator.remote.list_items(use_cache=False)
    if args.json:
        print(json.dumps([item.model_dump(mode="json") for item in items], indent=2))
    else:
        print(f"\nRemote rules list ({len(items)} items):")
        for item in items:
            comment = f"  {item.comment}" if item.comment else ""
            print(f"  {item.ip:<40}{comment}")
    return 0


def cmd_set_credential(args: argparse.Namespace) -> int:
    """Replace the admin credential after confirming the current one."""
    coordinator = AllowlistCoordinator.from_settings()
    config = AdminConfig(coordinator.store)

    current = getpass.getpass("Current credential: ")
    if not config.verify_credential(current):
        print("✗ Current credential is incorrect")
        return 1

    new = getpass.getpass("New credential: ")
    confirm = getpass.getpass("Confirm new credential: ")
    if not new:
        print("✗ Credential must not be empty")
        return 1
    if new != confirm:
        print("✗ Credentials do not match")
        return 1

    config.update_credential(new)
    print("✓ Credential updated")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command line arguments.

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(
        description="Manage the admin IP allowlist and its remote rules list",
        prog="allowlist-sync",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # List command
    list_parser = subparsers.add_parser("list", help="List allowlist entries")
    list_parser.add_argument("-s", "--search", default="", help="Filter by ip or description")
    list_parser.add_argument("-p", "--page", type=int, default=1, help="Page number")
    list_parser.add_argument("--per-page", type=int, default=None, help="Entries per page")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    # Add command
    add_parser = subparsers.add_parser("add", help="Add an IP or CIDR block")
    add_parser.add_argument("ip", help="IP address or CIDR block")
    add_parser.add_argument("-d", "--description", default="", help="Description")
    add_parser.set_defaults(func=cmd_add)

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Remove an entry")
    remove_parser.add_argument("ip", help="Entry to remove")
    remove_parser.set_defaults(func=cmd_remove)

    # Describe command
    describe_parser = subparsers.add_parser("describe", help="Change an entry's description")
    describe_parser.add_argument("ip", help="Entry to update")
    describe_parser.add_argument("description", help="New description")
    describe_parser.set_defaults(func=cmd_describe)

    # Rename command
    rename_parser = subparsers.add_parser("rename", help="Replace an entry's IP")
    rename_parser.add_argument("old_ip", help="Existing entry")
    rename_parser.add_argument("new_ip", help="Replacement IP or CIDR block")
    rename_parser.add_argument(
        "-d", "--description",
        default=None,
        help="New description (default: keep the current one)",
    )
    rename_parser.set_defaults(func=cmd_rename)

    # Check command
    check_parser = subparsers.add_parser("check", help="Check whether an address is allowed")
    check_parser.add_argument("ip", help="Client address")
    check_parser.set_defaults(func=cmd_check)

    # Remote command
    remote_parser = subparsers.add_parser("remote", help="Show remote rules list items")
    remote_parser.add_argument("--json", action="store_true", help="Output as JSON")
    remote_parser.set_defaults(func=cmd_remote)

    # Credential command
    credential_parser = subparsers.add_parser(
        "set-credential", help="Change the admin credential"
    )
    credential_parser.set_defaults(func=cmd_set_credential)

    args = parser.parse_args(argv)

    try:
        setup_logging(args.verbose)
        return args.func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except AllowlistError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
