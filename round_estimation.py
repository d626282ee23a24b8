"""
Chainlink round id estimation.

Aggregators expose no timestamp -> round index, only `latestRoundData()` and
`getRoundData(roundId)`. To find the round that was active at a past
timestamp we sample up to ten rounds spread evenly back from the latest one,
derive a local seconds-per-round rate from the samples and extrapolate
backwards from the latest round.

Estimation never raises: feed failures and degenerate samples collapse into
a low-confidence answer that records why it degraded.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import logging
import time

from config import (
    PRICE_FEEDS,
    MAX_SAMPLE_SIZE,
    SAMPLE_DIVISOR,
    FALLBACK_SECONDS_PER_ROUND,
    HIGH_CONFIDENCE_SAMPLES,
    MEDIUM_CONFIDENCE_SAMPLES,
)
from round_validation import normalize_asset, resolve_feed_address

logger = logging.getLogger(__name__)

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"


@dataclass(frozen=True)
class RoundEstimate:
    """Raw estimator outcome. `degraded_reason` is None for a sampled estimate."""

    estimated_round_id: int
    confidence: str
    degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


@dataclass(frozen=True)
class EstimationResult:
    asset: str
    target_timestamp: int
    feed_address: str
    estimated_round_id: int
    confidence: str
    estimated_at: int
    degraded_reason: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict:
        data = {
            "asset": self.asset,
            "targetTimestamp": self.target_timestamp,
            "feedAddress": self.feed_address,
            "estimatedRoundId": self.estimated_round_id,
            "confidence": self.confidence,
            "estimatedAt": self.estimated_at,
        }
        if self.degraded_reason:
            data["degradedReason"] = self.degraded_reason
        return data


def confidence_for_samples(sample_count: int) -> str:
    if sample_count >= HIGH_CONFIDENCE_SAMPLES:
        return CONFIDENCE_HIGH
    if sample_count >= MEDIUM_CONFIDENCE_SAMPLES:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW


def sample_round_ids(latest_round_id: int) -> List[int]:
    """Round ids to sample, evenly spaced backwards from the latest round."""
    sample_size = min(MAX_SAMPLE_SIZE, latest_round_id // SAMPLE_DIVISOR)
    if sample_size < 1:
        return []
    step = latest_round_id // sample_size
    return [latest_round_id - i * step for i in range(sample_size)]


def _fallback_estimate(latest_round_id: int, latest_timestamp: int, target_timestamp: int,
                       reason: str) -> RoundEstimate:
    rounds_back = (latest_timestamp - target_timestamp) // FALLBACK_SECONDS_PER_ROUND
    return RoundEstimate(max(1, latest_round_id - rounds_back), CONFIDENCE_LOW, reason)


def _collect_samples(reader, feed_address: str, latest_round_id: int) -> List[Tuple[int, int]]:
    samples = []
    for round_id in sample_round_ids(latest_round_id):
        try:
            point = reader.at(feed_address, round_id)
        except Exception as e:
            logger.debug("Skipping round %s on %s: %s", round_id, feed_address, e)
            continue
        if point.value <= 0:
            logger.debug("Skipping round %s on %s: no valid answer", round_id, feed_address)
            continue
        samples.append((round_id, point.timestamp))
    return samples


def _rate_totals(samples: List[Tuple[int, int]]) -> Tuple[int, int]:
    """Sum (time delta, round delta) over adjacent samples ordered by time.

    Pairs where either delta is not positive are dropped.
    """
    ordered = sorted(samples, key=lambda s: s[1])
    total_time = 0
    total_rounds = 0
    for (prev_round, prev_ts), (round_id, ts) in zip(ordered, ordered[1:]):
        time_delta = ts - prev_ts
        round_delta = round_id - prev_round
        if time_delta > 0 and round_delta > 0:
            total_time += time_delta
            total_rounds += round_delta
    return total_time, total_rounds


def estimate_round_id(reader, feed_address: str, target_timestamp: int) -> RoundEstimate:
    """Estimate the round id active at `target_timestamp` on one aggregator.

    `reader` provides `latest(feed_address)` and `at(feed_address, round_id)`,
    both returning objects with `round_id`, `timestamp` and `value`.
    """
    try:
        latest = reader.latest(feed_address)
    except Exception as e:
        logger.warning("latest round unavailable for %s: %s", feed_address, e)
        return RoundEstimate(1, CONFIDENCE_LOW, f"latest round unavailable: {e}")

    latest_round_id = latest.round_id
    latest_timestamp = latest.timestamp

    if target_timestamp >= latest_timestamp:
        return RoundEstimate(latest_round_id, CONFIDENCE_HIGH)

    try:
        samples = _collect_samples(reader, feed_address, latest_round_id)
        if len(samples) < 2:
            return _fallback_estimate(latest_round_id, latest_timestamp, target_timestamp,
                                      f"only {len(samples)} usable sample rounds")

        total_time, total_rounds = _rate_totals(samples)
        if total_rounds == 0:
            return _fallback_estimate(latest_round_id, latest_timestamp, target_timestamp,
                                      "no increasing sample pairs")

        # floor(elapsed / (total_time / total_rounds)) in exact integer arithmetic
        rounds_back = (latest_timestamp - target_timestamp) * total_rounds // total_time
        estimated = max(1, latest_round_id - rounds_back)
        return RoundEstimate(estimated, confidence_for_samples(len(samples)))
    except Exception as e:
        logger.exception("Round estimation failed for %s at %s", feed_address, target_timestamp)
        return RoundEstimate(1, CONFIDENCE_LOW, f"estimation failed: {e}")


class RoundEstimator:
    """Resolve asset symbols to feeds and produce `EstimationResult`s."""

    def __init__(self, reader, feeds: Mapping[str, str] = PRICE_FEEDS,
                 clock: Callable[[], float] = time.time):
        self.reader = reader
        self.feeds = feeds
        self.clock = clock

    def supported_assets(self) -> List[str]:
        return list(self.feeds)

    def estimate(self, asset: str, timestamp: int) -> EstimationResult:
        """Raises UnsupportedAssetError for unknown symbols; otherwise always answers."""
        symbol = normalize_asset(asset)
        feed_address = resolve_feed_address(symbol, self.feeds)
        estimate = estimate_round_id(self.reader, feed_address, timestamp)
        if estimate.degraded:
            logger.warning("Degraded estimate for %s @ %s: %s", symbol, timestamp, estimate.degraded_reason)
        else:
            logger.info("Estimated %s @ %s -> round %s (%s)",
                        symbol, timestamp, estimate.estimated_round_id, estimate.confidence)
        return EstimationResult(
            asset=symbol,
            target_timestamp=timestamp,
            feed_address=feed_address,
            estimated_round_id=estimate.estimated_round_id,
            confidence=estimate.confidence,
            estimated_at=int(self.clock()),
            degraded_reason=estimate.degraded_reason,
        )
