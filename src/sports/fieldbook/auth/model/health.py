import asyncio


class HealthGauge:
    """
    Exception counter backing the readiness probe.

    Unexpected errors (anything that is not a typed application error) bump the
    counter with ``womp``. A background task calls ``tick`` every 30 seconds to decay
    it. A burst of errors pushes the value past the threshold and ``is_healthy``
    starts returning false, which fails the readiness check until things calm down.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        return self._value

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self) -> None:
        async with self._lock:
            if self._value > 0:
                self._value -= 1

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._health_threshold
