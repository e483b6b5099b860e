"""Internal MQTT bootstrap and runtime helpers."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from livesensor._redact import redact_for_log
from livesensor.config import BrokerEndpoint, SensorConfig, parse_broker_url
from livesensor.exceptions import SensorError, SubscribeError, TransportError


class TransportEventKind(StrEnum):
    CONNECTED = "connected"
    LOST = "lost"
    CLOSED = "closed"
    ERROR = "error"
    SUBSCRIBE_FAILED = "subscribe_failed"
    MESSAGE = "message"


@dataclass(frozen=True)
class TransportEvent:
    """One callback from the network thread, ready for the event loop."""

    kind: TransportEventKind
    topic: str | None = None
    payload: bytes = b""
    error: SensorError | None = None


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker/session data required for one connect."""

    endpoint: BrokerEndpoint
    topic: str
    client_id: str
    username: str | None
    password: str | None
    keepalive: int
    reconnect_period: float
    connect_timeout: float


def build_client_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(8)}"


def build_bootstrap(config: SensorConfig) -> MqttBootstrap:
    """Build connect parameters with a fresh client id."""
    endpoint = parse_broker_url(config.broker_url)
    username = config.username if config.username is not None else endpoint.username
    password = config.password if config.password is not None else endpoint.password
    return MqttBootstrap(
        endpoint=endpoint,
        topic=config.topic.strip(),
        client_id=build_client_id(config.client_id_prefix),
        username=username,
        password=password,
        keepalive=config.keepalive,
        reconnect_period=config.reconnect_period,
        connect_timeout=config.connect_timeout,
    )


class Transport(Protocol):
    """Structural interface of a broker runtime owned by a session.

    Keeping this a protocol lets tests hand a fake runtime to
    :class:`~livesensor.session.SensorSession` via its transport factory.
    """

    @property
    def is_connected(self) -> bool: ...

    def start(self, bootstrap: MqttBootstrap) -> None: ...

    def stop(self) -> None: ...


TransportFactory = Callable[..., Transport]


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits transport events onto an asyncio loop.

    paho owns the retry loop: a dropped or refused connection is retried
    every ``reconnect_period`` seconds, each attempt bounded by
    ``connect_timeout``.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[TransportEvent], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def is_connected(self) -> bool:
        """Whether the broker link is currently up."""
        client = self._client
        return client is not None and client.is_connected()

    def _emit(self, event: TransportEvent) -> None:
        try:
            self._loop.call_soon_threadsafe(self._on_event, event)
        except RuntimeError:
            self._logger.debug("Event loop closed, dropping MQTT %s event", event.kind)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug("MQTT runtime start requested %s", redact_for_log(asdict(bootstrap)))

        endpoint = bootstrap.endpoint
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
            transport=endpoint.transport,
        )
        client.enable_logger(self._logger)
        if bootstrap.username is not None:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if endpoint.tls:
            client.tls_set()
        if endpoint.transport == "websockets":
            client.ws_set_options(path=endpoint.path)
        delay = max(1, round(bootstrap.reconnect_period))
        client.reconnect_delay_set(min_delay=delay, max_delay=delay)
        client.connect_timeout = bootstrap.connect_timeout

        self._topic = bootstrap.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect refused: %s", reason_code)
                self._emit(
                    TransportEvent(
                        kind=TransportEventKind.ERROR,
                        error=TransportError(f"Connection refused: {reason_code}", reason_code=reason_code.value),
                    )
                )
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            topic = self._topic
            if not topic:
                return
            self._logger.debug("MQTT subscribing topic=%s", topic)
            result, _mid = c.subscribe(topic, qos=0)
            self._emit(TransportEvent(kind=TransportEventKind.CONNECTED))
            if result != mqtt.MQTT_ERR_SUCCESS:
                self._emit(
                    TransportEvent(
                        kind=TransportEventKind.SUBSCRIBE_FAILED,
                        error=SubscribeError(
                            f"Subscribe to {topic} failed: {mqtt.error_string(result)}",
                            topic=topic,
                        ),
                    )
                )

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_codes: list[Any],
            _properties: Any,
        ) -> None:
            for reason_code in reason_codes:
                if reason_code.is_failure:
                    self._logger.warning("MQTT subscribe rejected topic=%s: %s", self._topic, reason_code)
                    self._emit(
                        TransportEvent(
                            kind=TransportEventKind.SUBSCRIBE_FAILED,
                            error=SubscribeError(
                                f"Subscribe to {self._topic} rejected: {reason_code}",
                                topic=self._topic or "",
                            ),
                        )
                    )
                    return

        def on_connect_fail(_c: mqtt.Client, _userdata: Any) -> None:
            self._logger.warning("MQTT connect attempt to %s:%s failed", endpoint.host, endpoint.port)
            self._emit(
                TransportEvent(
                    kind=TransportEventKind.ERROR,
                    error=TransportError(f"Connection to {endpoint.host}:{endpoint.port} failed"),
                )
            )

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._logger.debug("Received PUBLISH topic=%s bytes=%d", msg.topic, len(msg.payload))
            self._emit(TransportEvent(kind=TransportEventKind.MESSAGE, topic=msg.topic, payload=bytes(msg.payload)))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if not self._running:
                return
            if reason_code.is_failure:
                self._logger.debug("MQTT connection lost: %s", reason_code)
                self._emit(TransportEvent(kind=TransportEventKind.LOST))
            else:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._emit(TransportEvent(kind=TransportEventKind.CLOSED))

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._client = client
        self._running = True
        client.connect_async(endpoint.host, endpoint.port, keepalive=bootstrap.keepalive)
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
