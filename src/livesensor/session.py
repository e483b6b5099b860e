"""Session manager owning one broker connection.

Owns:
- config validation before any connect attempt
- starting/replacing/stopping the threaded MQTT runtime
- translating transport events into snapshot transitions
- the lifecycle bridge attachment for the session's lifetime
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from livesensor._mqtt import (
    MqttBootstrap,
    MqttRuntime,
    Transport,
    TransportEvent,
    TransportEventKind,
    TransportFactory,
    build_bootstrap,
)
from livesensor.config import SensorConfig
from livesensor.decoder import decode_reading
from livesensor.exceptions import (
    ConfigError,
    DecodeError,
    SensorError,
    SessionClosedError,
    SubscribeError,
    TransportError,
)
from livesensor.lifecycle import LifecycleBridge, LifecycleSource
from livesensor.state import transitions
from livesensor.state.store import SessionSnapshot, SnapshotStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SensorSession:
    """Live subscription to one sensor topic.

    Usage::

        async with SensorSession(config) as session:
            session.store.subscribe(render)
            await stop_event.wait()

    Every transport callback is marshalled onto the running event loop, so
    the hooks below run one at a time and never concurrently.
    """

    def __init__(
        self,
        config: SensorConfig,
        *,
        lifecycle_source: LifecycleSource | None = None,
        transport_factory: TransportFactory = MqttRuntime,
        store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._store = store if store is not None else SnapshotStore()
        self._clock = clock
        self._logger = logger or _logger
        self._bridge = LifecycleBridge(self, lifecycle_source) if lifecycle_source is not None else None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._runtime: Transport | None = None
        self._runtime_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None
        # Bumped on every connect and on shutdown; events from older runtimes are dropped.
        self._generation = 0
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SensorSession:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._store.snapshot

    @property
    def transport_connected(self) -> bool:
        runtime = self._runtime
        return runtime is not None and runtime.is_connected

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Validate config, attach the lifecycle bridge and start connecting.

        A configuration error is reported through the snapshot and no
        transport is ever created.
        """
        if self._closed:
            raise SessionClosedError("Session has been shut down")
        if self._started:
            return

        self._loop = asyncio.get_running_loop()
        try:
            self._config.validate()
            bootstrap = build_bootstrap(self._config)
        except ConfigError as exc:
            self._logger.warning("Not connecting: %s", exc)
            self._store.apply(transitions.config_rejected, exc)
            return

        self._store.apply(transitions.begin_session)
        self._started = True
        self._attach_bridge()
        try:
            generation = self._begin_connect()
            await self._run_runtime(bootstrap, generation)
        except BaseException:
            self._detach_bridge()
            raise

    def reconnect(self) -> bool:
        """Replace the transport with a fresh one if the link is down.

        Returns ``True`` when a reconnect was scheduled.
        """
        if not self.is_running or self._loop is None:
            self._logger.debug("Reconnect ignored, session not running")
            return False
        if self.transport_connected:
            self._logger.debug("Reconnect ignored, transport already connected")
            return False
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._logger.debug("Reconnect ignored, one is already in flight")
            return False

        bootstrap = build_bootstrap(self._config)
        generation = self._begin_connect()
        self._logger.debug("Reconnect scheduled client_id=%s", bootstrap.client_id)
        self._reconnect_task = self._loop.create_task(self._run_runtime(bootstrap, generation))
        return True

    async def shutdown(self) -> None:
        """Close the transport and release everything. Terminal and idempotent."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._store.close()
        try:
            task = self._reconnect_task
            self._reconnect_task = None
            if task is not None and not task.done():
                # Let an in-flight runtime start finish so stop never races it.
                with contextlib.suppress(Exception):
                    await task
        finally:
            self._detach_bridge()

        async with self._runtime_lock:
            runtime = self._runtime
            self._runtime = None
            if runtime is not None:
                await self._stop_runtime(runtime)
        self._logger.debug("Session shut down")

    # ------------------------------------------------------------------
    # Transport hooks
    # ------------------------------------------------------------------

    def on_connect(self) -> None:
        if self._closed:
            return
        self._logger.debug("Broker connected, subscribed to %s", self._config.topic)
        self._store.apply(transitions.connected)

    def on_reconnect(self) -> None:
        if self._closed:
            return
        self._logger.debug("Broker connection lost, transport reconnecting")
        self._store.apply(transitions.reconnecting)

    def on_close(self) -> None:
        if self._closed:
            return
        self._store.apply(transitions.closed)

    def on_error(self, error: SensorError) -> None:
        if self._closed:
            return
        self._logger.warning("MQTT error: %s", error)
        self._store.apply(transitions.transport_failed, error)

    def on_subscribe_error(self, error: SensorError) -> None:
        if self._closed:
            return
        self._logger.warning("Subscribe error: %s", error)
        self._store.apply(transitions.subscribe_failed, error)

    def on_message(self, topic: str | None, payload: bytes) -> None:
        if self._closed:
            return
        try:
            reading = decode_reading(payload, clock=self._clock)
        except DecodeError as exc:
            self._logger.warning("Failed to parse MQTT message topic=%s: %s", topic, exc)
            self._store.apply(transitions.decode_failed)
            return
        self._store.apply(transitions.reading_received, reading, self._config.history_size)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin_connect(self) -> int:
        self._generation += 1
        self._store.apply(transitions.connecting)
        return self._generation

    async def _run_runtime(self, bootstrap: MqttBootstrap, generation: int) -> None:
        loop = self._loop
        assert loop is not None
        async with self._runtime_lock:
            previous = self._runtime
            self._runtime = None
            if previous is not None:
                await self._stop_runtime(previous)
            if self._closed or generation != self._generation:
                return

            try:
                runtime = self._transport_factory(
                    loop=loop,
                    on_event=functools.partial(self._on_transport_event, generation),
                    logger=self._logger,
                )
                self._runtime = runtime
                await loop.run_in_executor(None, runtime.start, bootstrap)
            except Exception as exc:
                self._logger.warning("MQTT runtime start failed", exc_info=True)
                if generation == self._generation:
                    self._store.apply(transitions.transport_failed, TransportError(f"Transport start failed: {exc}"))

    async def _stop_runtime(self, runtime: Transport) -> None:
        loop = self._loop
        assert loop is not None
        try:
            await loop.run_in_executor(None, runtime.stop)
        except Exception:
            self._logger.debug("MQTT runtime stop failed", exc_info=True)

    def _on_transport_event(self, generation: int, event: TransportEvent) -> None:
        if self._closed or generation != self._generation:
            self._logger.debug("Dropping stale MQTT %s event", event.kind)
            return

        if event.kind == TransportEventKind.CONNECTED:
            self.on_connect()
        elif event.kind == TransportEventKind.LOST:
            self.on_reconnect()
        elif event.kind == TransportEventKind.CLOSED:
            self.on_close()
        elif event.kind == TransportEventKind.ERROR:
            self.on_error(event.error or TransportError("Transport error"))
        elif event.kind == TransportEventKind.SUBSCRIBE_FAILED:
            self.on_subscribe_error(event.error or SubscribeError("Subscribe failed", topic=self._config.topic))
        elif event.kind == TransportEventKind.MESSAGE:
            self.on_message(event.topic, event.payload)

    def _attach_bridge(self) -> None:
        if self._bridge is not None:
            self._bridge.attach()

    def _detach_bridge(self) -> None:
        if self._bridge is not None:
            self._bridge.detach()
