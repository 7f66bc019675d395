"""ihc-monitor -- Stream resource value changes from an IHC controller."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from collections import defaultdict

from .errors import IhcAuthenticationError, IhcClientError
from .http import IhcTransport
from .models import EnumValue, ValueChangeEvent
from .resources import ResourceInteractionService
from .session import IhcSession
from .settings import IhcSettings

# Exit codes
EXIT_OK = 0
EXIT_DEVICE_ERROR = 1
EXIT_USAGE_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ihc-monitor",
        description="Monitor IHC resource values (streaming). "
        "Reads IHC_ENDPOINT, IHC_USERNAME, IHC_PASSWORD and IHC_APPLICATION.",
    )
    parser.add_argument("resource_ids", nargs="+", type=int, metavar="RESOURCE_ID")
    parser.add_argument("-e", "--endpoint", default=None, help="controller URL, e.g. http://192.168.1.3")
    parser.add_argument("-u", "--username", default=None, help="controller user name")
    parser.add_argument(
        "-a",
        "--application",
        choices=("treeview", "openapi", "administrator"),
        default=None,
        help="application role to log in as",
    )
    parser.add_argument("--timeout", type=float, default=None, help="request timeout in seconds")
    parser.add_argument(
        "--wait", type=int, default=15, help="server-side wait per poll in seconds (default: 15)"
    )
    parser.add_argument("-n", "--count", type=int, default=None, help="stop after N events")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="verbose logging")
    return parser


def format_event(event: ValueChangeEvent) -> str:
    value = event.value
    if isinstance(value, EnumValue):
        shown = value.enum_name or f"{value.definition_type_id}:{value.enum_value_id}"
    else:
        shown = str(value)
    source = "runtime" if event.is_value_runtime else "initial"
    return f"{event.timestamp.isoformat()} {event.resource_id} = {shown} ({event.kind.value}, {source})"


async def monitor(settings: IhcSettings, args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    counts: dict[int, int] = defaultdict(int)
    total = 0
    t0 = time.monotonic()
    transport = IhcTransport(settings.transport_config)
    try:
        async with IhcSession(settings, transport=transport) as session:
            try:
                await session.authenticate()
            except IhcAuthenticationError as err:
                print(f"Login failed ({err.code.name}): {err}", file=sys.stderr)
                return EXIT_DEVICE_ERROR

            resources = ResourceInteractionService(session)
            async with resources.stream_changes(
                args.resource_ids, stop_event=stop, wait_timeout=args.wait
            ) as stream:
                async for event in stream:
                    print(format_event(event), flush=True)
                    counts[event.resource_id] += 1
                    total += 1
                    if args.count is not None and total >= args.count:
                        break
    except IhcClientError as err:
        print(f"Error: {err}", file=sys.stderr)
        return EXIT_DEVICE_ERROR
    finally:
        await transport.close()

    elapsed = time.monotonic() - t0
    summary = ", ".join(f"{n} changes from {rid}" for rid, n in counts.items()) or "no changes"
    print(f"--- {summary} (total in {elapsed:.1f}s) ---", file=sys.stderr)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = IhcSettings.from_env(
            endpoint=args.endpoint,
            username=args.username,
            application=args.application,
            request_timeout=args.timeout,
        )
    except ValueError as err:
        print(f"Invalid configuration: {err}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    return asyncio.run(monitor(settings, args))


if __name__ == "__main__":
    sys.exit(main())
