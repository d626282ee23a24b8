"""
Batch and league round estimation on top of RoundEstimator.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence
import logging
import time

from config import ESTIMATOR_MAX_WORKERS, PRICE_FEEDS
from round_estimation import CONFIDENCE_LOW, EstimationResult, RoundEstimator
from round_validation import is_valid_asset, normalize_asset

logger = logging.getLogger(__name__)


class EstimationRequest(NamedTuple):
    asset: str
    timestamp: int


class LeagueRoundRequest(NamedTuple):
    asset: str
    timestamp: int
    kind: str  # "start" or "end"


class LeagueRounds(NamedTuple):
    start_rounds: Dict[str, EstimationResult]
    end_rounds: Dict[str, EstimationResult]

    def to_dict(self) -> Dict:
        return {
            "startRounds": {asset: r.to_dict() for asset, r in self.start_rounds.items()},
            "endRounds": {asset: r.to_dict() for asset, r in self.end_rounds.items()},
        }


def placeholder_result(request: EstimationRequest, reason: str, now: Optional[float] = None) -> EstimationResult:
    """Low-confidence stand-in for a request that could not be estimated."""
    return EstimationResult(
        asset=request.asset,
        target_timestamp=request.timestamp,
        feed_address="",
        estimated_round_id=1,
        confidence=CONFIDENCE_LOW,
        estimated_at=int(time.time() if now is None else now),
        degraded_reason=reason,
    )


def estimate_many(estimator: RoundEstimator, requests: Iterable, max_workers: Optional[int] = None) -> List[EstimationResult]:
    """Estimate every request concurrently; results line up with `requests`.

    A failing request never affects its siblings: it is replaced by a
    placeholder carrying the original asset and timestamp.
    """
    requests = [EstimationRequest(*r) for r in requests]
    if not requests:
        return []

    workers = max(1, min(max_workers or ESTIMATOR_MAX_WORKERS, len(requests)))
    results: List[Optional[EstimationResult]] = [None] * len(requests)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="round-estimate") as pool:
        futures = [pool.submit(estimator.estimate, r.asset, r.timestamp) for r in requests]
        for index, future in enumerate(futures):
            request = requests[index]
            try:
                results[index] = future.result()
            except Exception as e:
                logger.error("Failed to estimate round for %s @ %s: %s", request.asset, request.timestamp, e)
                results[index] = placeholder_result(request, str(e))
    return results


def create_league_round_requests(assets: Sequence[str], start_time: int, end_time: int,
                                 feeds: Mapping[str, str] = PRICE_FEEDS) -> List[LeagueRoundRequest]:
    """Start/end requests for every supported asset; unsupported ones are skipped."""
    requests = []
    for asset in assets:
        if not is_valid_asset(asset, feeds):
            logger.debug("Skipping unsupported league asset %r", asset)
            continue
        symbol = normalize_asset(asset)
        requests.append(LeagueRoundRequest(symbol, start_time, "start"))
        requests.append(LeagueRoundRequest(symbol, end_time, "end"))
    return requests


def estimate_league_rounds(estimator: RoundEstimator, assets: Sequence[str], start_time: int, end_time: int,
                           max_workers: Optional[int] = None) -> LeagueRounds:
    requests = create_league_round_requests(assets, start_time, end_time, estimator.feeds)
    results = estimate_many(estimator, [(r.asset, r.timestamp) for r in requests], max_workers=max_workers)

    start_rounds: Dict[str, EstimationResult] = {}
    end_rounds: Dict[str, EstimationResult] = {}
    for request, result in zip(requests, results):
        if request.kind == "start":
            start_rounds[request.asset] = result
        else:
            end_rounds[request.asset] = result
    return LeagueRounds(start_rounds, end_rounds)
