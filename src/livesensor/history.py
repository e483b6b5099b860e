"""REST client for persisted sensor readings.

The live session never calls this. It is a peer data source for the
presentation layer, next to the session snapshot.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp
from pydantic import TypeAdapter, ValidationError

from livesensor._redact import redact_url
from livesensor.config import SensorConfig
from livesensor.exceptions import ConfigError, HistoryFetchError
from livesensor.models import HistoryReading

_logger = logging.getLogger(__name__)

_READINGS = TypeAdapter(list[HistoryReading])


class HistoryClient:
    """Async client for the history endpoint.

    Usage::

        async with HistoryClient(config) as client:
            rows = await client.fetch_history()
    """

    def __init__(
        self,
        config: SensorConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not config.history_url:
            raise ConfigError("missing history URL")
        self._url = config.history_url
        self._external_session = session is not None
        self._http_session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> HistoryClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None

    async def fetch_history(self) -> list[HistoryReading]:
        """GET the persisted readings, oldest first as returned by the server.

        Accepts either a JSON array of rows or an object wrapping them in
        ``data``.
        """
        if self._http_session is None:
            raise HistoryFetchError("HistoryClient used outside 'async with'", url=self._url)

        safe_url = redact_url(self._url)
        _logger.debug("GET %s", safe_url)

        try:
            async with self._http_session.get(self._url, headers={"accept": "application/json"}) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise HistoryFetchError(
                        f"HTTP {resp.status} from {safe_url}: {text[:200]}",
                        status_code=resp.status,
                        url=safe_url,
                    )
        except HistoryFetchError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise HistoryFetchError(f"Request to {safe_url} failed: {exc!r}", url=safe_url) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise HistoryFetchError(f"Invalid JSON from {safe_url}: {text[:200]}", url=safe_url) from exc

        rows = body
        if isinstance(body, dict):
            if "data" not in body:
                raise HistoryFetchError(f"Missing 'data' field from {safe_url}", url=safe_url)
            rows = body["data"] or []
        try:
            return _READINGS.validate_python(rows)
        except ValidationError as exc:
            raise HistoryFetchError(f"Unexpected history payload from {safe_url}: {exc}", url=safe_url) from exc
