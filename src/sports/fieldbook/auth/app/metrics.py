"""
Metrics abstraction for the auth service.

Business code talks to ``MetricsClient`` and never to a specific backend, so the
session manager and the HTTP middlewares behave the same whether metrics are shipped
to Telegraf or discarded.

Backends:
- TelegrafMetricsClient: StatsD with Telegraf-style tags via aio-statsd
- NoOpMetricsClient: discards everything, used when metrics are disabled
- RecordingMetricsClient: keeps every observation in memory, used by tests

``create_metrics_client`` picks a backend from the ``METRICS_BACKEND`` setting.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple, Union

from aio_statsd import TelegrafStatsdClient

logger = logging.getLogger(__name__)

Tags = Optional[Dict[str, Any]]


class MetricsClient(ABC):
    """
    Vendor-agnostic metrics interface.

    Three metric types are supported: counters (monotonic event counts), gauges
    (point-in-time values) and timers (durations in seconds).
    """

    @abstractmethod
    def increment(
        self, name: str, value: Union[int, float] = 1, tag_dict: Tags = None
    ) -> None:
        """Increment a counter, e.g. ``fieldbook.auth.login``."""

    @abstractmethod
    def gauge(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        """Set a gauge to ``value``."""

    @abstractmethod
    def timer(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        """Record a duration in seconds."""

    async def connect(self) -> None:
        """Open any network resources the backend needs."""

    @abstractmethod
    async def close(self) -> None:
        """Flush pending metrics and release network resources."""


class TelegrafMetricsClient(MetricsClient):
    """Ships metrics to a Telegraf StatsD listener."""

    def __init__(self, host: str, port: int, prefix: str = "", debug: bool = False):
        self.client = TelegrafStatsdClient(host=host, port=port, debug=debug)
        self.prefix = prefix

    def _name(self, name: str) -> str:
        if not self.prefix or name.startswith(f"{self.prefix}."):
            return name
        return f"{self.prefix}.{name}"

    def increment(
        self, name: str, value: Union[int, float] = 1, tag_dict: Tags = None
    ) -> None:
        self.client.increment(self._name(name), value, tag_dict=tag_dict or {})

    def gauge(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        self.client.gauge(self._name(name), value, tag_dict=tag_dict or {})

    def timer(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        self.client.timer(self._name(name), value, tag_dict=tag_dict or {})

    async def connect(self) -> None:
        await self.client.connect()

    async def close(self) -> None:
        try:
            await self.client.close()
        except OSError as e:
            logger.warning("Error closing Telegraf client: %s", e)


class NoOpMetricsClient(MetricsClient):
    """Metrics client for environments where collection is disabled."""

    def increment(
        self, name: str, value: Union[int, float] = 1, tag_dict: Tags = None
    ) -> None:
        pass

    def gauge(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        pass

    def timer(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        pass

    async def close(self) -> None:
        pass


class RecordingMetricsClient(MetricsClient):
    """Keeps observations in memory so tests can assert on them."""

    def __init__(self) -> None:
        self.counters: Dict[str, Union[int, float]] = defaultdict(int)
        self.gauges: Dict[str, Union[int, float]] = {}
        self.timers: Dict[str, List[Union[int, float]]] = defaultdict(list)
        self.tags: List[Tuple[str, Dict[str, Any]]] = []

    def increment(
        self, name: str, value: Union[int, float] = 1, tag_dict: Tags = None
    ) -> None:
        self.counters[name] += value
        self.tags.append((name, dict(tag_dict or {})))

    def gauge(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        self.gauges[name] = value
        self.tags.append((name, dict(tag_dict or {})))

    def timer(self, name: str, value: Union[int, float], tag_dict: Tags = None) -> None:
        self.timers[name].append(value)
        self.tags.append((name, dict(tag_dict or {})))

    async def close(self) -> None:
        pass


def create_metrics_client(
    backend: str,
    host: str = "localhost",
    port: int = 8125,
    prefix: str = "",
    debug: bool = False,
) -> MetricsClient:
    """
    Create the metrics client for a backend name.

    Args:
        backend: One of "telegraf" or "none" (case-insensitive).
        host: Telegraf/StatsD host.
        port: Telegraf/StatsD port.
        prefix: Prepended to every metric name sent to Telegraf.
        debug: Enable aio-statsd debug logging.

    Raises:
        ValueError: If the backend is not supported.
    """
    backend = backend.lower()

    if backend == "telegraf":
        return TelegrafMetricsClient(host=host, port=port, prefix=prefix, debug=debug)

    if backend == "none":
        logger.info("Metrics collection disabled (no-op client)")
        return NoOpMetricsClient()

    raise ValueError(
        f"Invalid metrics backend: {backend}. Supported backends: 'telegraf', 'none'"
    )
