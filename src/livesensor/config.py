"""Configuration and broker URL validation for livesensor."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any
from urllib.parse import unquote, urlsplit

from livesensor.exceptions import ConfigError

#: Fixed delay between automatic reconnect attempts, in seconds.
DEFAULT_RECONNECT_PERIOD: float = 5.0
#: Upper bound for a single connect attempt, in seconds.
DEFAULT_CONNECT_TIMEOUT: float = 30.0
#: Number of readings kept in the trailing window.
DEFAULT_HISTORY_SIZE: int = 10

# scheme -> (paho transport, tls, default port)
_SCHEMES: dict[str, tuple[str, bool, int]] = {
    "mqtt": ("tcp", False, 1883),
    "tcp": ("tcp", False, 1883),
    "mqtts": ("tcp", True, 8883),
    "ssl": ("tcp", True, 8883),
    "tls": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}


def validate_config(broker_url: str | None, topic: str | None) -> None:
    """Gate startup on a broker endpoint and a topic being present.

    Raises
    ------
    ConfigError
        If either value is missing or blank.
    """
    if not isinstance(broker_url, str) or not broker_url.strip():
        raise ConfigError("missing broker URL or topic")
    if not isinstance(topic, str) or not topic.strip():
        raise ConfigError("missing broker URL or topic")


@dataclasses.dataclass(frozen=True)
class BrokerEndpoint:
    """Broker address split into the parts paho-mqtt needs."""

    host: str
    port: int
    transport: str = "tcp"
    tls: bool = False
    path: str = "/mqtt"
    username: str | None = None
    password: str | None = None


def parse_broker_url(url: str) -> BrokerEndpoint:
    """Parse ``mqtt://``, ``mqtts://``, ``ws://``, ``wss://`` or bare ``host[:port]``."""
    value = url.strip()
    if not value:
        raise ConfigError("missing broker URL or topic")

    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ConfigError(f"unsupported broker URL scheme: {parts.scheme}")
    transport, tls, default_port = _SCHEMES[scheme]

    host = parts.hostname
    if not host:
        raise ConfigError(f"broker URL has no host: {url}")
    try:
        port = parts.port or default_port
    except ValueError as exc:
        raise ConfigError(f"broker URL has an invalid port: {url}") from exc

    return BrokerEndpoint(
        host=host,
        port=port,
        transport=transport,
        tls=tls,
        path=parts.path or "/mqtt",
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


@dataclasses.dataclass(frozen=True)
class SensorConfig:
    """Session configuration.

    Parameters
    ----------
    broker_url : str
        Broker endpoint, e.g. ``"mqtt://broker.local:1883"`` or
        ``"wss://broker.example.com:8884/mqtt"``.
    topic : str
        Topic carrying the sensor readings.
    username, password : str or None
        Transport-level credentials passed through to the broker. Credentials
        embedded in ``broker_url`` are used when these are unset.
    client_id_prefix : str
        Prefix of the client id. A random suffix is generated for every
        connect so sessions never collide on the broker.
    keepalive : int
        MQTT keepalive in seconds.
    reconnect_period : float
        Fixed delay between automatic reconnect attempts, in seconds.
    connect_timeout : float
        Timeout of a single connect attempt, in seconds.
    history_size : int
        Capacity of the trailing reading window.
    history_url : str or None
        REST endpoint returning persisted readings, used by
        :class:`livesensor.history.HistoryClient`.
    """

    broker_url: str
    topic: str
    username: str | None = None
    password: str | None = None
    client_id_prefix: str = "livesensor"
    keepalive: int = 60
    reconnect_period: float = DEFAULT_RECONNECT_PERIOD
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    history_size: int = DEFAULT_HISTORY_SIZE
    history_url: str | None = None

    def validate(self) -> None:
        """Raise :class:`ConfigError` when the broker URL or topic is missing or a setting is invalid."""
        validate_config(self.broker_url, self.topic)
        if self.history_size < 1:
            raise ConfigError("history_size must be at least 1")

    @classmethod
    def from_env(cls, **overrides: Any) -> SensorConfig:
        """Create configuration from ``LIVESENSOR_*`` environment variables.

        Explicit keyword arguments override environment values. Missing
        broker URL or topic default to ``""`` so that validation, not
        construction, reports them.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "LIVESENSOR_BROKER_URL": "broker_url",
            "LIVESENSOR_TOPIC": "topic",
            "LIVESENSOR_USERNAME": "username",
            "LIVESENSOR_PASSWORD": "password",
            "LIVESENSOR_CLIENT_ID_PREFIX": "client_id_prefix",
            "LIVESENSOR_HISTORY_URL": "history_url",
        }
        config_kwargs: dict[str, Any] = {"broker_url": "", "topic": ""}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # numeric settings, handle separately
        _ENV_NUMERIC_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "LIVESENSOR_KEEPALIVE": ("keepalive", int),
            "LIVESENSOR_RECONNECT_PERIOD": ("reconnect_period", float),
            "LIVESENSOR_CONNECT_TIMEOUT": ("connect_timeout", float),
            "LIVESENSOR_HISTORY_SIZE": ("history_size", int),
        }
        for env_key, (field_name, convert) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = convert(val)
            except ValueError as exc:
                raise ConfigError(f"invalid {env_key}: {val!r}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
