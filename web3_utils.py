"""
Chainlink Round Estimator - Web3 Connection Utilities
Centralized Web3 connection management with fallback RPC providers
"""
from web3 import Web3
from typing import Optional, List, Dict, Tuple
from dataclasses import dataclass
from datetime import datetime, timezone
from collections import defaultdict, deque
import logging
import threading
import requests
import time

from config import get_chain_config, ACTIVE_CHAIN, RPC_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Global RPC tracking (shared across all readers and batch worker threads)
_rpc_call_success = defaultdict(int)
_rpc_call_errors = defaultdict(int)
_rpc_response_times = defaultdict(lambda: deque(maxlen=100))
_current_provider_url = None
_stats_lock = threading.Lock()


def track_rpc_success(provider_url: str, response_time: float):
    """Track successful RPC call"""
    global _current_provider_url
    with _stats_lock:
        _rpc_call_success[provider_url] += 1
        _rpc_response_times[provider_url].append(response_time)
        _current_provider_url = provider_url


def track_rpc_error(provider_url: str):
    """Track failed RPC call"""
    with _stats_lock:
        _rpc_call_errors[provider_url] += 1


def get_rpc_stats(chain_name: Optional[str] = None) -> Dict:
    """Get global RPC statistics for the configured providers of a chain"""
    chain_cfg = get_chain_config(chain_name or ACTIVE_CHAIN)
    all_providers = chain_cfg.get("rpc", [])

    # Snapshot under the lock; .get() so unseen providers are not inserted
    with _stats_lock:
        success_counts = dict(_rpc_call_success)
        error_counts = dict(_rpc_call_errors)
        response_times = {url: list(times) for url, times in _rpc_response_times.items()}
        active_provider = _current_provider_url

    stats = []
    for url in all_providers:
        success = success_counts.get(url, 0)
        errors = error_counts.get(url, 0)
        total = success + errors
        times = response_times.get(url, [])

        stats.append({
            'url': url,
            'provider': url.split('/')[2] if '://' in url else url[:30],
            'success': success,
            'errors': errors,
            'total': total,
            'success_rate': (success / total * 100) if total > 0 else 0,
            'avg_response_time': sum(times) / len(times) if times else 0,
        })

    # Busiest first, then healthiest, then fastest
    stats.sort(key=lambda x: (-x['total'], -x['success_rate'], x['avg_response_time']))

    return {
        'stats': stats,
        'total_requests': sum(success_counts.values()) + sum(error_counts.values()),
        'total_success': sum(success_counts.values()),
        'total_errors': sum(error_counts.values()),
        'active_provider': active_provider,
    }


@dataclass
class ProviderState:
    """Track health metrics for a single RPC provider."""

    url: str
    error_count: int = 0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    def mark_success(self):
        self.last_success = datetime.now(timezone.utc)
        self.last_error = None

    def mark_failure(self, err: str):
        self.error_count += 1
        self.last_error = err


class ProviderManager:
    """Round-robin RPC manager with health tracking and chain-id validation."""

    def __init__(self, chain_name: Optional[str] = None):
        self.chain_name = chain_name or ACTIVE_CHAIN
        chain_cfg = get_chain_config(self.chain_name)
        self.providers: List[ProviderState] = [ProviderState(url) for url in chain_cfg.get("rpc", [])]
        self.expected_chain_id = chain_cfg.get("chain_id")
        self._last_index: int = -1
        self._sticky: Optional[Tuple[int, Web3]] = None
        self._lock = threading.Lock()

    def _provider_order(self) -> List[int]:
        if not self.providers:
            return []
        indices = list(range(len(self.providers)))
        start = (self._last_index + 1) % len(indices)
        rotated = indices[start:] + indices[:start]
        # Prefer providers with the fewest errors while keeping rotation order stable
        return sorted(rotated, key=lambda idx: (self.providers[idx].error_count, rotated.index(idx)))

    @property
    def active_url(self) -> Optional[str]:
        if self._sticky:
            return self.providers[self._sticky[0]].url
        if self._last_index >= 0:
            return self.providers[self._last_index].url
        return None

    def _log_status(self):
        status = [
            f"{p.url} (errors={p.error_count}, last_success={p.last_success}, last_error={p.last_error})"
            for p in self.providers
        ]
        logger.info("Provider status [%s]: %s", self.chain_name, "; ".join(status))

    def _connect(self, provider: ProviderState, timeout: int) -> Optional[Web3]:
        start_time = time.time()
        w3 = Web3(Web3.HTTPProvider(provider.url, request_kwargs={"timeout": timeout}))
        if not w3.is_connected():
            provider.mark_failure("connection check failed")
            track_rpc_error(provider.url)
            return None

        try:
            prov_chain = w3.eth.chain_id
        except Exception:
            prov_chain = None
        if self.expected_chain_id and prov_chain != self.expected_chain_id:
            provider.mark_failure(f"wrong chain (reported {prov_chain})")
            track_rpc_error(provider.url)
            logger.warning("Provider %s reports chain %s, expected %s -> skipping",
                           provider.url, prov_chain, self.expected_chain_id)
            return None

        provider.mark_success()
        track_rpc_success(provider.url, time.time() - start_time)
        return w3

    def get_web3(self, base_timeout: int = RPC_TIMEOUT_SECONDS, force_new: bool = False,
                 sticky: bool = False) -> Optional[Web3]:
        with self._lock:
            if sticky and not force_new and self._sticky:
                return self._sticky[1]

            if not self.providers:
                logger.error("No RPC providers configured for chain %s", self.chain_name)
                return None

            for attempt, idx in enumerate(self._provider_order(), start=1):
                provider = self.providers[idx]
                timeout = base_timeout * attempt
                logger.info("Connecting to provider %s (chain=%s, timeout=%ss, errors=%s)",
                            provider.url, self.chain_name, timeout, provider.error_count)
                try:
                    w3 = self._connect(provider, timeout)
                except requests.exceptions.RequestException as exc:
                    provider.mark_failure(str(exc))
                    track_rpc_error(provider.url)
                    logger.warning("Network error on provider %s: %s", provider.url, exc)
                    continue
                except Exception as exc:
                    provider.mark_failure(str(exc))
                    track_rpc_error(provider.url)
                    logger.debug("Provider %s failed with %s", provider.url, exc)
                    continue
                if w3 is None:
                    continue

                self._last_index = idx
                if sticky:
                    self._sticky = (idx, w3)
                self._log_status()
                return w3

            logger.error("All RPC providers failed for chain %s", self.chain_name)
            self._log_status()
            return None


_provider_managers: Dict[str, ProviderManager] = {}


def get_provider_manager(chain_name: Optional[str] = None) -> ProviderManager:
    chain_key = chain_name or ACTIVE_CHAIN
    manager = _provider_managers.get(chain_key)
    if manager is None:
        manager = _provider_managers.setdefault(chain_key, ProviderManager(chain_key))
    return manager


def get_web3(
    timeout: int = RPC_TIMEOUT_SECONDS,
    force_new: bool = False,
    chain_name: Optional[str] = None,
    sticky: bool = False,
) -> Optional[Web3]:
    """
    Get a Web3 instance using round-robin provider selection.

    Args:
        timeout: Base request timeout in seconds (increases per retry)
        force_new: Ignore sticky cache and force new connection
        chain_name: Chain identifier defined in config.CHAINS
        sticky: Reuse last healthy provider for subsequent calls
    """
    manager = get_provider_manager(chain_name)
    return manager.get_web3(base_timeout=timeout, force_new=force_new, sticky=sticky)
