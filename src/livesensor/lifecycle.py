"""Host application lifecycle bridge.

The host (mobile shell, desktop tray app, service supervisor...) reports
foreground/background transitions through a :class:`LifecycleSource`. The
bridge forces a reconnect when the host comes back to the foreground and
the broker link is down.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from livesensor.models import LifecycleSignal

_logger = logging.getLogger(__name__)

LifecycleListener = Callable[[LifecycleSignal | str], None]

_DORMANT = frozenset({LifecycleSignal.INACTIVE, LifecycleSignal.BACKGROUND})


class LifecycleSource(Protocol):
    """Anything that can deliver host lifecycle transitions to a listener."""

    def subscribe(self, listener: LifecycleListener) -> None: ...

    def unsubscribe(self, listener: LifecycleListener) -> None: ...


class ReconnectTarget(Protocol):
    @property
    def transport_connected(self) -> bool: ...

    def reconnect(self) -> bool: ...


class ManualLifecycleSource:
    """In-process lifecycle source driven by calling :meth:`emit`."""

    def __init__(self) -> None:
        self._listeners: list[LifecycleListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: LifecycleListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: LifecycleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, signal: LifecycleSignal | str) -> None:
        for listener in list(self._listeners):
            listener(signal)


class LifecycleBridge:
    """Translate host lifecycle edges into reconnect requests.

    Only the previous signal is remembered. An ``inactive``/``background``
    to ``active`` edge triggers ``target.reconnect()`` when
    ``target.transport_connected`` is false.
    """

    def __init__(
        self,
        target: ReconnectTarget,
        source: LifecycleSource,
        *,
        initial: LifecycleSignal = LifecycleSignal.ACTIVE,
    ) -> None:
        self._target = target
        self._source = source
        self._previous = initial
        self._attached = False
        self._listener: LifecycleListener = self.on_lifecycle_signal

    @property
    def previous(self) -> LifecycleSignal:
        return self._previous

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        if self._attached:
            return
        self._source.subscribe(self._listener)
        self._attached = True
        _logger.debug("Lifecycle bridge attached")

    def detach(self) -> None:
        if not self._attached:
            return
        self._attached = False
        try:
            self._source.unsubscribe(self._listener)
        except Exception:
            _logger.warning("Lifecycle listener removal failed", exc_info=True)
            return
        _logger.debug("Lifecycle bridge detached")

    def on_lifecycle_signal(self, next_signal: LifecycleSignal | str) -> None:
        try:
            signal = LifecycleSignal(next_signal)
        except ValueError:
            _logger.warning("Ignoring unknown lifecycle signal %r", next_signal)
            return

        previous = self._previous
        self._previous = signal

        if previous not in _DORMANT or signal is not LifecycleSignal.ACTIVE:
            return
        if self._target.transport_connected:
            _logger.debug("Host became active, broker link already up")
            return
        _logger.debug("Host became active with broker link down, forcing reconnect")
        self._target.reconnect()
