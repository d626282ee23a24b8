"""
Chainlink Round Estimator - Centralized Configuration
Single source of truth for chains, feed addresses, and estimator settings
"""
import os
from types import MappingProxyType

from web3 import Web3

# ========== OPTIONAL API KEYS (from environment) ==========
ALCHEMY_API_KEY = os.environ.get('ALCHEMY_API_KEY', '')
INFURA_API_KEY = os.environ.get('INFURA_API_KEY', '')
SEPOLIA_RPC_URL = os.environ.get('SEPOLIA_RPC_URL', '')


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Build RPC list dynamically (user supplied endpoints first)
def _build_sepolia_rpcs():
    rpcs = []
    if SEPOLIA_RPC_URL:
        rpcs.append(SEPOLIA_RPC_URL)
    if ALCHEMY_API_KEY:
        rpcs.append(f"https://eth-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}")
    if INFURA_API_KEY:
        rpcs.append(f"https://sepolia.infura.io/v3/{INFURA_API_KEY}")
    # Public RPCs (no API key needed)
    rpcs.extend([
        "https://ethereum-sepolia-rpc.publicnode.com",
        "https://sepolia.drpc.org",
        "https://1rpc.io/sepolia",
    ])
    return rpcs


# ========== CHAIN CONFIGURATION ==========
CHAINS = {
    'sepolia': {
        'name': 'Sepolia',
        'chain_id': 11155111,
        'rpc': _build_sepolia_rpcs(),
        'explorer': 'https://sepolia.etherscan.io',
    },
}

# Default active chain
ACTIVE_CHAIN = 'sepolia'


def get_chain_config(chain_name=None):
    """Get configuration for specified chain or active chain"""
    chain = chain_name or ACTIVE_CHAIN
    return CHAINS.get(chain, CHAINS[ACTIVE_CHAIN])


# ========== CHAINLINK PRICE FEEDS (Sepolia) ==========
# Read-only after import. WBTC is priced off the BTC/USD aggregator.
PRICE_FEEDS = MappingProxyType({
    "ETH": Web3.to_checksum_address("0x694AA1769357215DE4FAC081bf1f309aDC325306"),
    "BTC": Web3.to_checksum_address("0x1b44F3514812d835EB1BDB0acB33d3fA3351Ee43"),
    "WBTC": Web3.to_checksum_address("0x1b44F3514812d835EB1BDB0acB33d3fA3351Ee43"),
})

# ========== ROUND ESTIMATION ==========
MAX_SAMPLE_SIZE = 10
SAMPLE_DIVISOR = 10
# Chainlink feeds update roughly once per hour when the heartbeat drives them
FALLBACK_SECONDS_PER_ROUND = 3600
HIGH_CONFIDENCE_SAMPLES = 8
MEDIUM_CONFIDENCE_SAMPLES = 4

# Advisory input window for user supplied timestamps
MIN_TIMESTAMP = 1577836800  # 2020-01-01
MAX_FUTURE_SECONDS = 365 * 24 * 60 * 60
STRICT_TIMESTAMP_WINDOW = _env_flag('STRICT_TIMESTAMP_WINDOW')

# ========== RPC / CONCURRENCY ==========
RPC_TIMEOUT_SECONDS = _env_int('RPC_TIMEOUT_SECONDS', 10)
RPC_CALL_RETRIES = 3
ESTIMATOR_MAX_WORKERS = _env_int('ESTIMATOR_MAX_WORKERS', 8)

# ========== SERVER / LOGGING ==========
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
PORT = _env_int('PORT', 5000)

# ========== STORAGE SETTINGS ==========
DATA_DIR = "data"
ROUND_EXPORT_CSV = os.path.join(DATA_DIR, "round_estimates.csv")
