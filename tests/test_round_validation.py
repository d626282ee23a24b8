from __future__ import annotations

from datetime import datetime, timezone

import pytest

from config import MIN_TIMESTAMP, PRICE_FEEDS
from round_validation import (
    InvalidTimestampError,
    UnsupportedAssetError,
    ValidationError,
    date_to_timestamp,
    format_confidence,
    is_valid_asset,
    is_valid_timestamp,
    normalize_asset,
    parse_timestamp,
    resolve_feed_address,
    timestamp_to_date,
)


def test_price_feeds_are_read_only() -> None:
    with pytest.raises(TypeError):
        PRICE_FEEDS["DOGE"] = "0x0"


@pytest.mark.parametrize("asset", ["ETH", "eth", " Btc ", "wbtc"])
def test_supported_assets_case_insensitive(asset) -> None:
    assert is_valid_asset(asset)
    assert resolve_feed_address(asset) == PRICE_FEEDS[normalize_asset(asset)]


def test_wbtc_shares_btc_feed() -> None:
    assert resolve_feed_address("WBTC") == resolve_feed_address("BTC")


@pytest.mark.parametrize("asset", ["XYZ", "", None, 42])
def test_unsupported_assets(asset) -> None:
    assert not is_valid_asset(asset)
    with pytest.raises(UnsupportedAssetError) as exc_info:
        resolve_feed_address(asset)
    assert isinstance(exc_info.value, ValidationError)
    assert "Supported assets: ETH, BTC, WBTC" in str(exc_info.value)


@pytest.mark.parametrize(
    "raw, expected",
    [(1_700_000_000, 1_700_000_000), ("1700000000", 1_700_000_000), (" 42 ", 42), (1.7e9, 1_700_000_000)],
)
def test_parse_timestamp_accepts(raw, expected) -> None:
    assert parse_timestamp(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "12.5", 0, -5, "-1", True, None, 1.5, [1]])
def test_parse_timestamp_rejects(raw) -> None:
    with pytest.raises(InvalidTimestampError, match="Invalid timestamp format"):
        parse_timestamp(raw)


def test_advisory_window() -> None:
    now = 1_760_000_000
    year = 365 * 24 * 60 * 60

    assert is_valid_timestamp(MIN_TIMESTAMP, now=now)
    assert not is_valid_timestamp(MIN_TIMESTAMP - 1, now=now)
    assert is_valid_timestamp(now + year, now=now)
    assert not is_valid_timestamp(now + year + 1, now=now)


def test_date_helpers_use_utc() -> None:
    assert date_to_timestamp(datetime(2020, 1, 1)) == MIN_TIMESTAMP
    assert date_to_timestamp(datetime(2020, 1, 1, tzinfo=timezone.utc)) == MIN_TIMESTAMP
    assert timestamp_to_date(MIN_TIMESTAMP) == datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_format_confidence() -> None:
    assert format_confidence("high") == "High"
    assert format_confidence("medium") == "Medium"
    assert format_confidence("") == ""
