from typing import List

import pytest
from resource_waiter.models import StatusResponse


class FakeClock:
    """Monotonic clock whose time only moves when ``sleep`` is awaited."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class ScriptedFetcher:
    """Replays a script of statuses and exception types, repeating the last entry."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0

    async def __call__(self, resource_id: str) -> StatusResponse:
        self.calls += 1
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, type) and issubclass(item, BaseException):
            raise item(f"scripted failure #{self.calls}")
        return StatusResponse(
            resource_id=resource_id, status=item, raw_response={}, elapsed_time=0.0
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
