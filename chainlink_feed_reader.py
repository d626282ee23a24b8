"""
Chainlink AggregatorV3 point reads used by the round estimator.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import time

from web3 import Web3
from web3.exceptions import ContractLogicError

from config import ACTIVE_CHAIN, RPC_CALL_RETRIES, RPC_TIMEOUT_SECONDS
from web3_utils import get_web3, get_provider_manager, track_rpc_success, track_rpc_error

logger = logging.getLogger(__name__)

AGGREGATOR_ABI = [
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"internalType": "uint80", "name": "roundId", "type": "uint80"},
            {"internalType": "int256", "name": "answer", "type": "int256"},
            {"internalType": "uint256", "name": "startedAt", "type": "uint256"},
            {"internalType": "uint256", "name": "updatedAt", "type": "uint256"},
            {"internalType": "uint80", "name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint80", "name": "_roundId", "type": "uint80"}],
        "name": "getRoundData",
        "outputs": [
            {"internalType": "uint80", "name": "roundId", "type": "uint80"},
            {"internalType": "int256", "name": "answer", "type": "int256"},
            {"internalType": "uint256", "name": "startedAt", "type": "uint256"},
            {"internalType": "uint256", "name": "updatedAt", "type": "uint256"},
            {"internalType": "uint80", "name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


class FeedReadError(Exception):
    """Raised when a price feed cannot be read."""


class RoundNotFoundError(FeedReadError):
    """Raised when a round id has no populated data on the aggregator."""


@dataclass(frozen=True)
class FeedPoint:
    """One aggregator round. `timestamp` is the round's updatedAt."""

    round_id: int
    timestamp: int
    value: int
    started_at: int = 0
    answered_in_round: int = 0

    @classmethod
    def from_round_data(cls, data) -> "FeedPoint":
        round_id, answer, started_at, updated_at, answered_in_round = data
        return cls(
            round_id=int(round_id),
            timestamp=int(updated_at),
            value=int(answer),
            started_at=int(started_at),
            answered_in_round=int(answered_in_round),
        )


class ChainlinkFeedReader:
    """Read rounds from Chainlink aggregator proxies with retries and provider rotation."""

    def __init__(self, w3: Optional[Web3] = None, chain_name: str = ACTIVE_CHAIN,
                 call_retries: int = RPC_CALL_RETRIES, call_timeout: int = RPC_TIMEOUT_SECONDS):
        self.w3 = w3
        self.chain_name = chain_name
        self.call_retries = call_retries
        self.call_timeout = call_timeout

    def _get_w3(self) -> Web3:
        if self.w3 is None:
            self.w3 = get_web3(timeout=self.call_timeout, chain_name=self.chain_name, sticky=True)
        if self.w3 is None:
            raise FeedReadError(f"No healthy RPC provider for chain {self.chain_name}")
        return self.w3

    def _provider_url(self) -> str:
        return get_provider_manager(self.chain_name).active_url or "unknown"

    def _rotate_provider(self) -> bool:
        """Attempt to obtain a fresh Web3 provider."""
        logger.info("Rotating provider, requesting new Web3 (timeout=%ss)", self.call_timeout)
        new_w3 = get_web3(timeout=self.call_timeout, force_new=True, chain_name=self.chain_name, sticky=True)
        if new_w3 is not None:
            self.w3 = new_w3
            return True
        logger.warning("Provider rotation failed; no healthy providers available")
        return False

    def _safe_call(self, call_fn, feed_address: str, label: str):
        """Call an aggregator function with retries; contract reverts are not retried."""
        last_exc = None
        for attempt in range(1, self.call_retries + 1):
            w3 = self._get_w3()
            start_time = time.time()
            try:
                contract = w3.eth.contract(address=feed_address, abi=AGGREGATOR_ABI)
                result = call_fn(contract)
            except ContractLogicError:
                track_rpc_success(self._provider_url(), time.time() - start_time)
                raise
            except Exception as e:
                last_exc = e
                track_rpc_error(self._provider_url())
                logger.debug("%s attempt %s/%s for %s failed: %s",
                             label, attempt, self.call_retries, feed_address, e)
                if attempt < self.call_retries and not self._rotate_provider():
                    break
                continue
            track_rpc_success(self._provider_url(), time.time() - start_time)
            return result
        logger.warning("All %s attempts failed for %s: %s", label, feed_address, last_exc)
        raise FeedReadError(f"{label} failed for {feed_address}: {last_exc}") from last_exc

    def latest(self, feed_address: str) -> FeedPoint:
        try:
            data = self._safe_call(lambda c: c.functions.latestRoundData().call(),
                                   feed_address, "latestRoundData()")
        except ContractLogicError as e:
            raise FeedReadError(f"latestRoundData() reverted for {feed_address}: {e}") from e
        return FeedPoint.from_round_data(data)

    def at(self, feed_address: str, round_id: int) -> FeedPoint:
        try:
            data = self._safe_call(lambda c: c.functions.getRoundData(round_id).call(),
                                   feed_address, f"getRoundData({round_id})")
        except ContractLogicError as e:
            raise RoundNotFoundError(f"Round {round_id} not available on {feed_address}: {e}") from e
        point = FeedPoint.from_round_data(data)
        if point.timestamp == 0:
            raise RoundNotFoundError(f"Round {round_id} not complete on {feed_address}")
        return point


__all__ = [
    "AGGREGATOR_ABI",
    "ChainlinkFeedReader",
    "FeedPoint",
    "FeedReadError",
    "RoundNotFoundError",
]
