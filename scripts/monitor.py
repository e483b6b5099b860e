#!/usr/bin/env python3
"""Console monitor for a live sensor topic.

Runs a :class:`livesensor.SensorSession` against the configured broker and
prints every snapshot change. Configuration comes from ``LIVESENSOR_*``
environment variables, overridden by the command-line flags.

On POSIX systems ``SIGUSR1`` simulates the host going to the background
and ``SIGUSR2`` bringing it back to the foreground, which exercises the
reconnect-on-foreground path.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from livesensor import (  # noqa: E402
    HistoryClient,
    HistoryFetchError,
    LifecycleSignal,
    ManualLifecycleSource,
    SensorConfig,
    SensorSession,
    SessionSnapshot,
    trend_series,
)

_LOG = logging.getLogger("monitor")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live sensor readings and connection state.",
    )
    parser.add_argument("--broker-url", help="Broker URL (overrides LIVESENSOR_BROKER_URL).")
    parser.add_argument("--topic", help="Topic to subscribe to (overrides LIVESENSOR_TOPIC).")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Fetch persisted readings from LIVESENSOR_HISTORY_URL before subscribing.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _format_snapshot(snapshot: SessionSnapshot) -> str:
    reading = snapshot.latest_reading
    value_text = "--" if reading is None or reading.value is None else f"{reading.value:g}"
    at_text = "--" if reading is None else reading.observed_at.isoformat()
    trend = ", ".join("--" if v is None else f"{v:g}" for v in trend_series(snapshot.history))
    line = f"[monitor] state={snapshot.connection_state} value={value_text} at={at_text} trend=[{trend}]"
    if snapshot.last_error:
        line += f" error={snapshot.error_kind}:{snapshot.last_error}"
    return line


async def _print_history(config: SensorConfig) -> None:
    async with HistoryClient(config) as client:
        rows = await client.fetch_history()
    print(f"[monitor] {len(rows)} persisted reading(s)")
    for row in rows:
        print(f"[monitor]   {row.recorded_at.isoformat()} temperature={row.temperature} threshold={row.threshold_value}")


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.broker_url:
        overrides["broker_url"] = args.broker_url
    if args.topic:
        overrides["topic"] = args.topic
    config = SensorConfig.from_env(**overrides)

    if args.history:
        try:
            await _print_history(config)
        except HistoryFetchError as exc:
            print(f"[monitor] History fetch failed: {exc}", file=sys.stderr)

    lifecycle = ManualLifecycleSource()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, lifecycle.emit, LifecycleSignal.BACKGROUND)
        loop.add_signal_handler(signal.SIGUSR2, lifecycle.emit, LifecycleSignal.ACTIVE)

    session = SensorSession(config, lifecycle_source=lifecycle, logger=_LOG)
    session.store.subscribe(lambda snapshot: print(_format_snapshot(snapshot)))
    async with session:
        if session.snapshot.last_error and not session.is_running:
            print(f"[monitor] {session.snapshot.last_error}", file=sys.stderr)
            return 2
        try:
            await asyncio.wait_for(stop.wait(), timeout=args.duration or None)
        except TimeoutError:
            print(f"[monitor] Reached --duration={args.duration}s, stopping.")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(_main())
