"""
Input validation and small helpers shared by the HTTP layer, batch
estimation and the export script.
"""
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
import time

from config import PRICE_FEEDS, MIN_TIMESTAMP, MAX_FUTURE_SECONDS


class ValidationError(ValueError):
    """Client supplied input that can never be estimated."""


class MissingParameterError(ValidationError):
    pass


class UnsupportedAssetError(ValidationError):
    pass


class InvalidTimestampError(ValidationError):
    pass


def normalize_asset(asset: Any) -> str:
    if not isinstance(asset, str):
        return ""
    return asset.strip().upper()


def is_valid_asset(asset: Any, feeds: Mapping[str, str] = PRICE_FEEDS) -> bool:
    return normalize_asset(asset) in feeds


def resolve_feed_address(asset: Any, feeds: Mapping[str, str] = PRICE_FEEDS) -> str:
    """Return the aggregator address for an asset symbol (case-insensitive)."""
    symbol = normalize_asset(asset)
    try:
        return feeds[symbol]
    except KeyError:
        raise UnsupportedAssetError(
            f"Unsupported asset: {symbol or asset}. Supported assets: {', '.join(feeds)}"
        ) from None


def parse_timestamp(value: Any) -> int:
    """Parse a positive Unix timestamp (seconds) from JSON or query input."""
    if isinstance(value, bool):
        raise InvalidTimestampError("Invalid timestamp format")
    if isinstance(value, int):
        ts = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidTimestampError("Invalid timestamp format")
        ts = int(value)
    elif isinstance(value, str):
        try:
            ts = int(value.strip())
        except ValueError:
            raise InvalidTimestampError("Invalid timestamp format") from None
    else:
        raise InvalidTimestampError("Invalid timestamp format")
    if ts <= 0:
        raise InvalidTimestampError("Invalid timestamp format")
    return ts


def is_valid_timestamp(timestamp: int, now: Optional[float] = None) -> bool:
    """Advisory window check: not before 2020-01-01, at most one year ahead."""
    if now is None:
        now = time.time()
    max_timestamp = int(now) + MAX_FUTURE_SECONDS
    return MIN_TIMESTAMP <= timestamp <= max_timestamp


def date_to_timestamp(dt: datetime) -> int:
    # Naive datetimes are treated as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def timestamp_to_date(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def format_confidence(confidence: str) -> str:
    if not confidence:
        return ""
    return confidence[0].upper() + confidence[1:]


__all__ = [
    "ValidationError",
    "MissingParameterError",
    "UnsupportedAssetError",
    "InvalidTimestampError",
    "normalize_asset",
    "is_valid_asset",
    "resolve_feed_address",
    "parse_timestamp",
    "is_valid_timestamp",
    "date_to_timestamp",
    "timestamp_to_date",
    "format_confidence",
]
