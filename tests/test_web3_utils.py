from __future__ import annotations

import threading
from collections import defaultdict, deque
from types import SimpleNamespace

import pytest

import web3_utils
from web3_utils import ProviderManager, ProviderState, get_rpc_stats, track_rpc_error, track_rpc_success

SEPOLIA_CHAIN_ID = 11155111


class _FakeWeb3:
    down = {"http://down"}
    chain_ids = {"http://mainnet": 1}

    @staticmethod
    def HTTPProvider(url, request_kwargs=None):
        return url

    def __init__(self, provider):
        self.url = provider
        self.eth = SimpleNamespace(chain_id=self.chain_ids.get(provider, SEPOLIA_CHAIN_ID))

    def is_connected(self):
        return self.url not in self.down


@pytest.fixture()
def manager(monkeypatch) -> ProviderManager:
    monkeypatch.setattr(web3_utils, "Web3", _FakeWeb3)
    manager = ProviderManager("sepolia")
    manager.providers = [ProviderState(url) for url in ("http://down", "http://mainnet", "http://ok")]
    return manager


def test_skips_unreachable_and_wrong_chain_providers(manager) -> None:
    w3 = manager.get_web3()

    assert w3.url == "http://ok"
    assert manager.active_url == "http://ok"
    assert [p.error_count for p in manager.providers] == [1, 1, 0]
    assert manager.providers[1].last_error == "wrong chain (reported 1)"
    assert manager.providers[2].last_success is not None


def test_sticky_provider_is_reused_until_forced(manager) -> None:
    first = manager.get_web3(sticky=True)

    assert manager.get_web3(sticky=True) is first
    assert manager.get_web3(sticky=True, force_new=True) is not first


def test_healthy_providers_are_preferred(manager) -> None:
    manager.get_web3()

    # failing providers sort behind the healthy one on the next rotation
    assert manager._provider_order()[0] == 2


def test_no_healthy_provider_returns_none(manager) -> None:
    manager.providers = [ProviderState("http://down")]

    assert manager.get_web3() is None


def test_rpc_stats_report_configured_providers() -> None:
    stats = get_rpc_stats("sepolia")

    urls = [s["url"] for s in stats["stats"]]
    assert "https://ethereum-sepolia-rpc.publicnode.com" in urls
    assert stats["total_requests"] == stats["total_success"] + stats["total_errors"]


def test_rpc_counters_are_exact_under_concurrency(monkeypatch) -> None:
    monkeypatch.setattr(web3_utils, "_rpc_call_success", defaultdict(int))
    monkeypatch.setattr(web3_utils, "_rpc_call_errors", defaultdict(int))
    monkeypatch.setattr(web3_utils, "_rpc_response_times", defaultdict(lambda: deque(maxlen=100)))
    url = "https://ethereum-sepolia-rpc.publicnode.com"

    def hammer():
        for _ in range(500):
            track_rpc_success(url, 0.01)
            track_rpc_error(url)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = get_rpc_stats("sepolia")
    assert stats["total_success"] == 4000
    assert stats["total_errors"] == 4000
    assert stats["active_provider"] == url
    assert stats["stats"][0]["url"] == url


def test_rpc_stats_do_not_register_unseen_providers(monkeypatch) -> None:
    monkeypatch.setattr(web3_utils, "_rpc_call_success", defaultdict(int))
    monkeypatch.setattr(web3_utils, "_rpc_call_errors", defaultdict(int))
    monkeypatch.setattr(web3_utils, "_rpc_response_times", defaultdict(lambda: deque(maxlen=100)))

    stats = get_rpc_stats("sepolia")

    assert all(s["total"] == 0 for s in stats["stats"])
    assert dict(web3_utils._rpc_call_success) == {}
    assert dict(web3_utils._rpc_response_times) == {}
