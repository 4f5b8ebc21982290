from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterable

from app.services.prediction import OutputFetchError, Prediction, PredictionError


class FakePredictionClient:
    """Scripted stand-in for the prediction service that counts every call."""

    def __init__(
        self,
        statuses: Iterable[Prediction | Exception] = (),
        *,
        submitted: Prediction | Exception | None = None,
        output: bytes | Exception = b"\x89PNG processed",
        configured: bool = True,
    ) -> None:
        self.configured = configured
        self.submitted = submitted or Prediction(id="pred-1", status="pending")
        self.statuses = deque(statuses)
        self.output = output
        self.submits: list[dict[str, Any]] = []
        self.polls: list[str] = []
        self.fetches: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.submits) + len(self.polls) + len(self.fetches)

    async def submit(self, version: str, input: dict[str, Any]) -> Prediction:
        self.submits.append({"version": version, "input": input})
        if isinstance(self.submitted, Exception):
            raise self.submitted
        return self.submitted

    async def get_status(self, prediction_id: str) -> Prediction:
        self.polls.append(prediction_id)
        item = self.statuses.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_output(self, uri: str) -> bytes:
        self.fetches.append(uri)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output

    async def aclose(self) -> None:
        return None


class MemoryStore:
    """In-memory usage log exposing the store methods the ledger needs."""

    def __init__(self) -> None:
        self.events: list[tuple[int, str, datetime]] = []

    def insert_usage_event(
        self, user_id: int, action: str, occurred_at: datetime | None = None
    ) -> None:
        self.events.append((user_id, action, occurred_at or datetime.now(timezone.utc)))

    def count_usage_events(
        self,
        user_id: int,
        action: str,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        return sum(
            1
            for uid, act, ts in self.events
            if uid == user_id
            and act == action
            and ts >= since
            and (until is None or ts < until)
        )


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def prediction(status: str, output: Any = None, error: str | None = None) -> Prediction:
    return Prediction(id="pred-1", status=status, output=output, error=error)


__all__ = [
    "FakePredictionClient",
    "MemoryStore",
    "FakeClock",
    "prediction",
    "PredictionError",
    "OutputFetchError",
]
