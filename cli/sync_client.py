"""CLI admin client for the Hydrus booru sync."""

from __future__ import annotations

import argparse
import sys
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx
import pendulum

if TYPE_CHECKING:
    from collections.abc import Callable

SYNC_ENDPOINT = "/api/admin/sync"
DEFAULT_SERVER = "http://localhost:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}
# A cancelled sync keeps running until its next batch boundary
ACTIVE_STATUSES = {"running", "cancelled"}


class SyncClient:
    """Client for the booru's admin sync endpoints."""

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def status(self) -> dict[str, Any]:
        """Fetch the persisted sync state."""
        resp = self.client.get(SYNC_ENDPOINT)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def start(self, tags: list[str] | None = None) -> dict[str, Any]:
        """Start a sync. Raises httpx.HTTPStatusError (409) if one is running."""
        resp = self.client.post(SYNC_ENDPOINT, json={"tags": tags} if tags else None)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def cancel(self) -> str:
        """Request cancellation of the running sync."""
        resp = self.client.delete(SYNC_ENDPOINT)
        resp.raise_for_status()
        message: str = resp.json()["message"]
        return message

    def watch(
        self,
        interval: float = 2.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        echo: Callable[[str], None] = print,
    ) -> dict[str, Any]:
        """Poll until the sync reaches a final state and return it."""
        while True:
            state = self.status()
            echo(format_progress(state))
            if state.get("status") not in ACTIVE_STATUSES:
                return state
            sleep(interval)


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def humanize_timestamp(value: str | None) -> str:
    """Render an ISO timestamp relative to now, e.g. ``3 minutes ago``."""
    if not value:
        return "never"
    parsed = pendulum.parse(value)
    if not isinstance(parsed, pendulum.DateTime):
        return value
    return f"{parsed.diff_for_humans()} ({parsed.to_datetime_string()} UTC)"


def format_progress(state: dict[str, Any]) -> str:
    """One-line progress summary of a sync state."""
    status = state.get("status", "idle")
    if status not in ACTIVE_STATUSES:
        return f"[{status}] {state.get('processed_files', 0)}/{state.get('total_files', 0)} files"
    return (
        f"[{status}:{state.get('phase') or '-'}] "
        f"batch {state.get('current_batch', 0)}/{state.get('total_batches', 0)}, "
        f"{state.get('processed_files', 0)}/{state.get('total_files', 0)} files, "
        f"{len(state.get('errors', []))} errors"
    )


def format_status(state: dict[str, Any]) -> str:
    """Multi-line report of a sync state."""
    lines = [
        "Sync Status:",
        f"  Status:     {state.get('status', 'idle')}",
        f"  Phase:      {state.get('phase') or '-'}",
        f"  Files:      {state.get('processed_files', 0)}/{state.get('total_files', 0)}",
        f"  Batch:      {state.get('current_batch', 0)}/{state.get('total_batches', 0)}",
        f"  Last sync:  {humanize_timestamp(state.get('last_synced_at'))}"
        f" ({state.get('last_sync_count', 0)} files)",
    ]
    if state.get("error_message"):
        lines.append(f"  Error:      {state['error_message']}")
    errors: list[str] = state.get("errors", [])
    if errors:
        lines.append(f"  Errors ({len(errors)}):")
        lines.extend(f"    ! {error}" for error in errors[-10:])
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="hydrus-booru-sync",
        description="Start, monitor and cancel the Hydrus booru sync",
    )
    parser.add_argument(
        "--server", "-s", default=DEFAULT_SERVER, help=f"Server URL (default: {DEFAULT_SERVER})"
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("status", help="Show the current sync state")
    start_parser = subparsers.add_parser("start", help="Start a sync")
    start_parser.add_argument(
        "--tag",
        "-t",
        action="append",
        dest="tags",
        help="Hydrus search tag (repeatable; default: the server's configured filter)",
    )
    subparsers.add_parser("cancel", help="Cancel the running sync")
    watch_parser = subparsers.add_parser("watch", help="Follow progress until the sync ends")
    watch_parser.add_argument(
        "--interval", "-i", type=float, default=2.0, help="Poll interval in seconds"
    )

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    with SyncClient(server_url) as client:
        try:
            if args.command == "status":
                print(format_status(client.status()))
            elif args.command == "start":
                result = client.start(args.tags)
                print(f"{result['message']} (tags: {', '.join(result['tags'])})")
            elif args.command == "cancel":
                print(client.cancel())
            elif args.command == "watch":
                final = client.watch(args.interval)
                print(format_status(final))
        except httpx.HTTPStatusError as exc:
            try:
                detail = exc.response.json().get("detail", exc.response.text)
            except ValueError:
                detail = exc.response.text
            print(f"Error: {exc.response.status_code} {detail}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: could not reach {server_url}: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
