from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

from livesensor._mqtt import MqttBootstrap, TransportEvent, TransportEventKind
from livesensor.config import SensorConfig
from livesensor.decoder import INVALID_DATA_MESSAGE
from livesensor.exceptions import SessionClosedError, SubscribeError, TransportError
from livesensor.lifecycle import ManualLifecycleSource
from livesensor.models import ConnectionState, ErrorKind, LifecycleSignal
from livesensor.session import SensorSession
from livesensor.state.store import SessionSnapshot

TOPIC = "sensors/greenhouse/temperature"


@dataclass
class FakeTransport:
    loop: asyncio.AbstractEventLoop
    on_event: Callable[[TransportEvent], None]
    logger: logging.Logger
    connected: bool = False
    fail_start: bool = False
    bootstraps: list[MqttBootstrap] = field(default_factory=list)
    stop_calls: int = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    def start(self, bootstrap: MqttBootstrap) -> None:
        if self.fail_start:
            raise OSError("tls setup failed")
        self.bootstraps.append(bootstrap)

    def stop(self) -> None:
        self.stop_calls += 1
        self.connected = False

    def emit(self, kind: TransportEventKind, **kwargs: Any) -> None:
        if kind == TransportEventKind.CONNECTED:
            self.connected = True
        elif kind in (TransportEventKind.LOST, TransportEventKind.CLOSED):
            self.connected = False
        self.on_event(TransportEvent(kind=kind, **kwargs))

    def publish(self, payload: Any) -> None:
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        self.emit(TransportEventKind.MESSAGE, topic=TOPIC, payload=raw)


@dataclass
class FakeTransportFactory:
    fail_start: bool = False
    created: list[FakeTransport] = field(default_factory=list)

    def __call__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[TransportEvent], None],
        logger: logging.Logger,
    ) -> FakeTransport:
        transport = FakeTransport(loop=loop, on_event=on_event, logger=logger, fail_start=self.fail_start)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.created[-1]


def _config(**overrides: Any) -> SensorConfig:
    values: dict[str, Any] = {"broker_url": "mqtt://broker.local:1883", "topic": TOPIC}
    values.update(overrides)
    return SensorConfig(**values)


def _fixed_now() -> datetime:
    return datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def _session(
    factory: FakeTransportFactory,
    *,
    lifecycle: ManualLifecycleSource | None = None,
    **overrides: Any,
) -> SensorSession:
    return SensorSession(
        _config(**overrides),
        lifecycle_source=lifecycle,
        transport_factory=factory,
        clock=_fixed_now,
    )


async def _settle_reconnect(session: SensorSession) -> None:
    task = session._reconnect_task  # type: ignore[attr-defined]
    if task is not None:
        await task


@pytest.mark.asyncio
async def test_missing_broker_url_never_constructs_transport() -> None:
    factory = FakeTransportFactory()
    lifecycle = ManualLifecycleSource()
    session = _session(factory, lifecycle=lifecycle, broker_url="")

    await session.start()

    snapshot = session.snapshot
    assert factory.created == []
    assert snapshot.connection_state == ConnectionState.DISCONNECTED
    assert snapshot.last_error == "missing broker URL or topic"
    assert snapshot.error_kind == ErrorKind.CONFIG
    assert session.is_running is False
    assert lifecycle.listener_count == 0
    assert session.reconnect() is False
    assert factory.created == []


@pytest.mark.asyncio
async def test_missing_topic_is_a_config_error() -> None:
    factory = FakeTransportFactory()
    session = _session(factory, topic="")

    await session.start()

    assert factory.created == []
    assert session.snapshot.error_kind == ErrorKind.CONFIG


@pytest.mark.asyncio
async def test_start_connects_with_fresh_clean_session_bootstrap() -> None:
    factory = FakeTransportFactory()
    session = _session(factory, client_id_prefix="greenhouse")

    await session.start()

    assert session.snapshot.connection_state == ConnectionState.CONNECTING
    assert len(factory.created) == 1
    bootstrap = factory.current.bootstraps[0]
    assert bootstrap.topic == TOPIC
    assert bootstrap.client_id.startswith("greenhouse-")
    assert bootstrap.endpoint.host == "broker.local"
    assert bootstrap.reconnect_period == 5.0
    assert bootstrap.connect_timeout == 30.0
    await session.shutdown()


@pytest.mark.asyncio
async def test_connect_then_reading_updates_snapshot() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.CONNECTED)
        assert session.snapshot.connection_state == ConnectionState.CONNECTED

        transport.publish({"value": 24.5, "observedAt": "2024-01-01T00:00:00Z"})

        snapshot = session.snapshot
        assert snapshot.latest_reading is not None
        assert snapshot.latest_reading.value == 24.5
        assert snapshot.latest_reading.observed_at == datetime(2024, 1, 1, tzinfo=UTC)
        assert snapshot.history == (24.5,)
        assert snapshot.last_error is None


@pytest.mark.asyncio
async def test_reading_without_timestamp_uses_clock() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        factory.current.emit(TransportEventKind.CONNECTED)
        factory.current.publish({"value": 3})

        assert session.snapshot.latest_reading is not None
        assert session.snapshot.latest_reading.observed_at == _fixed_now()


@pytest.mark.asyncio
async def test_malformed_payload_keeps_reading_and_sets_error() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.CONNECTED)
        transport.publish({"value": 20.0})
        before = session.snapshot.latest_reading

        transport.publish(b"\x00garbage")

        snapshot = session.snapshot
        assert snapshot.latest_reading == before
        assert snapshot.history == (20.0,)
        assert snapshot.last_error == INVALID_DATA_MESSAGE
        assert snapshot.error_kind == ErrorKind.DECODE
        assert snapshot.connection_state == ConnectionState.CONNECTED

        transport.publish({"value": 21.0})
        assert session.snapshot.last_error is None
        assert session.snapshot.history == (20.0, 21.0)


@pytest.mark.asyncio
async def test_history_is_bounded_to_configured_size() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        factory.current.emit(TransportEventKind.CONNECTED)
        for value in range(15):
            factory.current.publish({"value": value})

        assert session.snapshot.history == tuple(float(v) for v in range(5, 15))


@pytest.mark.asyncio
async def test_transport_error_then_recovery_clears_error() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.ERROR, error=TransportError("Connection refused: Not authorized"))

        snapshot = session.snapshot
        assert snapshot.connection_state == ConnectionState.ERROR
        assert snapshot.last_error == "Connection refused: Not authorized"
        assert snapshot.error_kind == ErrorKind.TRANSPORT

        transport.emit(TransportEventKind.CONNECTED)

        snapshot = session.snapshot
        assert snapshot.connection_state == ConnectionState.CONNECTED
        assert snapshot.last_error is None
        assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_lost_and_closed_events_drive_state() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.CONNECTED)
        transport.emit(TransportEventKind.LOST)
        assert session.snapshot.connection_state == ConnectionState.RECONNECTING

        transport.emit(TransportEventKind.CONNECTED)
        assert session.snapshot.connection_state == ConnectionState.CONNECTED

        transport.emit(TransportEventKind.CLOSED)
        assert session.snapshot.connection_state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_subscribe_failure_is_not_fatal() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.CONNECTED)
        transport.emit(
            TransportEventKind.SUBSCRIBE_FAILED,
            error=SubscribeError(f"Subscribe to {TOPIC} rejected", topic=TOPIC),
        )

        snapshot = session.snapshot
        assert snapshot.connection_state == ConnectionState.CONNECTED
        assert snapshot.error_kind == ErrorKind.SUBSCRIBE
        assert transport.stop_calls == 0


@pytest.mark.asyncio
async def test_reconnect_replaces_transport_and_drops_stale_events() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        old = factory.current
        old.emit(TransportEventKind.CONNECTED)
        old.emit(TransportEventKind.LOST)

        assert session.reconnect() is True
        assert session.snapshot.connection_state == ConnectionState.CONNECTING
        await _settle_reconnect(session)

        assert len(factory.created) == 2
        new = factory.current
        assert old.stop_calls == 1
        assert new.bootstraps[0].client_id != old.bootstraps[0].client_id

        old.emit(TransportEventKind.CLOSED)
        assert session.snapshot.connection_state == ConnectionState.CONNECTING

        new.emit(TransportEventKind.CONNECTED)
        assert session.snapshot.connection_state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_reconnect_is_noop_while_connected() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        factory.current.emit(TransportEventKind.CONNECTED)

        assert session.reconnect() is False
        assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_history_survives_reconnect() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        factory.current.emit(TransportEventKind.CONNECTED)
        factory.current.publish({"value": 1.5})
        factory.current.emit(TransportEventKind.LOST)

        session.reconnect()
        await _settle_reconnect(session)

        assert session.snapshot.history == (1.5,)


@pytest.mark.asyncio
async def test_foreground_after_background_reconnects_when_down() -> None:
    factory = FakeTransportFactory()
    lifecycle = ManualLifecycleSource()
    async with _session(factory, lifecycle=lifecycle) as session:
        assert lifecycle.listener_count == 1
        factory.current.emit(TransportEventKind.CONNECTED)
        factory.current.emit(TransportEventKind.LOST)

        lifecycle.emit(LifecycleSignal.BACKGROUND)
        lifecycle.emit(LifecycleSignal.ACTIVE)
        await _settle_reconnect(session)

        assert len(factory.created) == 2


@pytest.mark.asyncio
async def test_foreground_while_connected_keeps_transport() -> None:
    factory = FakeTransportFactory()
    lifecycle = ManualLifecycleSource()
    async with _session(factory, lifecycle=lifecycle):
        factory.current.emit(TransportEventKind.CONNECTED)

        lifecycle.emit(LifecycleSignal.BACKGROUND)
        lifecycle.emit(LifecycleSignal.ACTIVE)

        assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_active_active_never_reconnects() -> None:
    factory = FakeTransportFactory()
    lifecycle = ManualLifecycleSource()
    async with _session(factory, lifecycle=lifecycle):
        lifecycle.emit(LifecycleSignal.ACTIVE)
        lifecycle.emit(LifecycleSignal.ACTIVE)

        assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_shutdown_stops_transport_and_freezes_snapshot() -> None:
    factory = FakeTransportFactory()
    lifecycle = ManualLifecycleSource()
    session = _session(factory, lifecycle=lifecycle)
    await session.start()
    transport = factory.current
    transport.emit(TransportEventKind.CONNECTED)

    seen: list[SessionSnapshot] = []
    session.store.subscribe(seen.append)
    frozen = session.snapshot

    # Queued before shutdown, delivered while shutdown is in progress.
    loop = asyncio.get_running_loop()
    loop.call_soon(transport.on_event, TransportEvent(kind=TransportEventKind.MESSAGE, payload=b'{"value": 9}'))
    await session.shutdown()

    transport.emit(TransportEventKind.LOST)
    transport.publish({"value": 10})
    session.on_error(TransportError("late"))

    assert transport.stop_calls == 1
    assert lifecycle.listener_count == 0
    assert session.snapshot is frozen
    assert seen == []
    assert session.is_running is False
    assert session.reconnect() is False

    await session.shutdown()
    assert transport.stop_calls == 1

    with pytest.raises(SessionClosedError):
        await session.start()


@pytest.mark.asyncio
async def test_transport_start_failure_is_reported_not_raised() -> None:
    factory = FakeTransportFactory(fail_start=True)
    lifecycle = ManualLifecycleSource()
    session = _session(factory, lifecycle=lifecycle)

    await session.start()

    snapshot = session.snapshot
    assert snapshot.connection_state == ConnectionState.ERROR
    assert snapshot.error_kind == ErrorKind.TRANSPORT
    assert "tls setup failed" in (snapshot.last_error or "")
    assert lifecycle.listener_count == 1
    await session.shutdown()
    assert lifecycle.listener_count == 0


class _Abort(BaseException):
    pass


@pytest.mark.asyncio
async def test_lifecycle_listener_detached_when_start_aborts() -> None:
    lifecycle = ManualLifecycleSource()

    def _factory(**_kwargs: Any) -> FakeTransport:
        raise _Abort()

    session = SensorSession(_config(), lifecycle_source=lifecycle, transport_factory=_factory)

    with pytest.raises(_Abort):
        await session.start()

    assert lifecycle.listener_count == 0


@pytest.mark.asyncio
async def test_out_of_range_number_is_a_decode_error() -> None:
    factory = FakeTransportFactory()
    async with _session(factory) as session:
        transport = factory.current
        transport.emit(TransportEventKind.CONNECTED)
        transport.publish({"value": 20.0})

        transport.publish(b'{"value": 1' + b"0" * 400 + b"}")

        snapshot = session.snapshot
        assert snapshot.last_error == INVALID_DATA_MESSAGE
        assert snapshot.error_kind == ErrorKind.DECODE
        assert snapshot.history == (20.0,)
        assert snapshot.connection_state == ConnectionState.CONNECTED
