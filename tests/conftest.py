from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chainlink_feed_reader import FeedPoint, FeedReadError, RoundNotFoundError  # noqa: E402


class FakeFeedReader:
    """In-memory aggregator: rounds keyed by feed address and round id."""

    def __init__(
        self,
        latest: Optional[FeedPoint] = None,
        rounds: Optional[Dict[int, FeedPoint]] = None,
        latest_error: Optional[Exception] = None,
    ):
        self._latest = latest
        self._rounds = rounds or {}
        self._latest_error = latest_error
        self.calls: List[int] = []

    def latest(self, feed_address: str) -> FeedPoint:
        if self._latest_error is not None:
            raise self._latest_error
        return self._latest

    def at(self, feed_address: str, round_id: int) -> FeedPoint:
        self.calls.append(round_id)
        point = self._rounds.get(round_id)
        if point is None:
            raise RoundNotFoundError(f"round {round_id} missing")
        return point


def uniform_feed(
    latest_round: int,
    latest_ts: int,
    seconds_per_round: int,
    missing: Set[int] = frozenset(),
) -> FakeFeedReader:
    """Every round populated at a fixed cadence, except `missing`."""
    rounds = {}
    for round_id in range(1, latest_round + 1):
        if round_id in missing:
            continue
        ts = latest_ts - (latest_round - round_id) * seconds_per_round
        rounds[round_id] = FeedPoint(round_id=round_id, timestamp=ts, value=200_000_000_000)
    return FakeFeedReader(latest=rounds.get(latest_round), rounds=rounds)


class FixedClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def latest_ts() -> int:
    return 1_700_000_000


@pytest.fixture()
def feed_error() -> FeedReadError:
    return FeedReadError("rpc unreachable")
