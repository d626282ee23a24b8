"""
Export Chainlink Round Estimates for a League or a Batch of Timestamps

League mode estimates the start and end rounds of every supported asset:

    python scripts/export_league_rounds.py --assets ETH,BTC --start 2025-01-01 --end 2025-01-08

Batch mode reads a CSV with `asset,timestamp` columns:

    python scripts/export_league_rounds.py --input requests.csv

Results are printed and written to data/round_estimates.csv (file-locked).
"""

import os
import sys
from datetime import datetime
from typing import List

import pandas as pd

# Add parent directory to path for imports
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from config import ROUND_EXPORT_CSV, ESTIMATOR_MAX_WORKERS
from chainlink_feed_reader import ChainlinkFeedReader
from round_estimation import EstimationResult, RoundEstimator
from round_batch import EstimationRequest, estimate_many, estimate_league_rounds, placeholder_result
from round_validation import (
    date_to_timestamp,
    format_confidence,
    is_valid_timestamp,
    parse_timestamp,
    timestamp_to_date,
)
from tools.csv_utils import safe_append_row, safe_overwrite_rows

EXPORT_FIELDS = [
    'kind', 'asset', 'target_timestamp', 'target_utc', 'feed_address',
    'estimated_round_id', 'confidence', 'estimated_at', 'degraded_reason',
]


def parse_time_arg(value: str) -> int:
    """Accept a Unix timestamp or an ISO-8601 date/datetime (UTC if naive)."""
    try:
        return parse_timestamp(value)
    except ValueError:
        if not isinstance(value, str):
            raise
        return date_to_timestamp(datetime.fromisoformat(value))


def results_to_frame(results: List[EstimationResult], kinds: List[str]) -> pd.DataFrame:
    records = []
    for kind, r in zip(kinds, results):
        records.append({
            'kind': kind,
            'asset': r.asset,
            'target_timestamp': r.target_timestamp,
            'target_utc': timestamp_to_date(r.target_timestamp).isoformat() if isinstance(r.target_timestamp, int) else '',
            'feed_address': r.feed_address,
            'estimated_round_id': str(r.estimated_round_id),  # composite ids exceed int64
            'confidence': r.confidence,
            'estimated_at': r.estimated_at,
            'degraded_reason': r.degraded_reason or '',
        })
    return pd.DataFrame(records, columns=EXPORT_FIELDS)


def run_league(estimator: RoundEstimator, assets: List[str], start: int, end: int) -> pd.DataFrame:
    rounds = estimate_league_rounds(estimator, assets, start, end, max_workers=ESTIMATOR_MAX_WORKERS)
    results = list(rounds.start_rounds.values()) + list(rounds.end_rounds.values())
    kinds = ['start'] * len(rounds.start_rounds) + ['end'] * len(rounds.end_rounds)
    return results_to_frame(results, kinds)


def run_batch(estimator: RoundEstimator, input_csv: str) -> pd.DataFrame:
    requests_df = pd.read_csv(input_csv, dtype={'asset': str, 'timestamp': str})
    missing = {'asset', 'timestamp'} - set(requests_df.columns)
    if missing:
        raise ValueError(f"Input CSV is missing columns: {', '.join(sorted(missing))}")

    # Rows with an unusable timestamp keep their slot as a placeholder
    slots = []
    valid = []
    for row in requests_df.itertuples(index=False):
        asset = None if pd.isna(row.asset) else row.asset
        raw_timestamp = None if pd.isna(row.timestamp) else row.timestamp
        try:
            valid.append((asset, parse_time_arg(raw_timestamp)))
            slots.append(None)
        except ValueError as e:
            print(f"WARNING: skipping row {asset},{raw_timestamp}: {e}")
            slots.append(placeholder_result(EstimationRequest(asset, raw_timestamp), str(e)))

    estimated = iter(estimate_many(estimator, valid, max_workers=ESTIMATOR_MAX_WORKERS))
    results = [slot if slot is not None else next(estimated) for slot in slots]
    return results_to_frame(results, ['batch'] * len(results))


def main(argv=None) -> int:
    import argparse
    parser = argparse.ArgumentParser(description='Estimate Chainlink round ids and export them to CSV')
    parser.add_argument('--assets', help='Comma separated asset symbols (league mode)')
    parser.add_argument('--start', help='League start (unix seconds or ISO date)')
    parser.add_argument('--end', help='League end (unix seconds or ISO date)')
    parser.add_argument('--input', help='CSV with asset,timestamp columns (batch mode)')
    parser.add_argument('--output', default=os.path.join(PROJECT_ROOT, ROUND_EXPORT_CSV),
                        help='Output CSV path')
    parser.add_argument('--append', action='store_true', help='Append rows instead of overwriting')
    args = parser.parse_args(argv)

    if not args.input and not (args.assets and args.start and args.end):
        parser.error('either --input or --assets/--start/--end is required')

    print("\n" + "=" * 80)
    print("CHAINLINK ROUND ESTIMATE EXPORT")
    print("=" * 80)

    try:
        estimator = RoundEstimator(ChainlinkFeedReader())
        if args.input:
            df = run_batch(estimator, args.input)
        else:
            start, end = parse_time_arg(args.start), parse_time_arg(args.end)
            for label, ts in (('start', start), ('end', end)):
                if not is_valid_timestamp(ts):
                    print(f"WARNING: {label} timestamp {ts} is outside the expected range")
            df = run_league(estimator, [a for a in args.assets.split(',') if a.strip()], start, end)
    except Exception as e:
        print(f"\nFATAL ERROR: {e}")
        import traceback
        traceback.print_exc()
        return 1

    if df.empty:
        print("\nNo supported assets / requests. Nothing to export.")
        return 1

    display = df.assign(confidence=df['confidence'].map(format_confidence))
    print(display[['kind', 'asset', 'target_utc', 'estimated_round_id', 'confidence']].to_string(index=False))

    rows = df.to_dict('records')
    if args.append:
        for row in rows:
            safe_append_row(args.output, row, EXPORT_FIELDS)
    else:
        safe_overwrite_rows(args.output, rows, EXPORT_FIELDS)
    print(f"\n{len(rows)} estimates saved to: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
