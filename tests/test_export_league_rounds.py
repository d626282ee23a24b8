from __future__ import annotations

import csv
import importlib.util

import pytest

from conftest import ROOT, uniform_feed
from tools.csv_utils import safe_append_row, safe_overwrite_rows

LATEST_TS = 1_700_000_000


@pytest.fixture()
def export_script(monkeypatch):
    spec = importlib.util.spec_from_file_location(
        "export_league_rounds", ROOT / "scripts" / "export_league_rounds.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    reader = uniform_feed(1000, LATEST_TS, 600)
    monkeypatch.setattr(module, "ChainlinkFeedReader", lambda: reader)
    return module


def _read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def test_csv_helpers_overwrite_then_append(tmp_path) -> None:
    path = str(tmp_path / "out" / "rows.csv")

    safe_overwrite_rows(path, [{"a": 1, "b": 2}], ["a", "b"])
    safe_append_row(path, {"a": 3, "b": 4, "ignored": 5}, ["a", "b"])

    assert _read_rows(path) == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]


def test_append_creates_header(tmp_path) -> None:
    path = str(tmp_path / "new.csv")

    safe_append_row(path, {"a": 1}, ["a"])

    assert _read_rows(path) == [{"a": "1"}]


def test_parse_time_arg(export_script) -> None:
    assert export_script.parse_time_arg("1700000000") == 1_700_000_000
    assert export_script.parse_time_arg("2020-01-01") == 1_577_836_800
    with pytest.raises(ValueError):
        export_script.parse_time_arg("not a date")
    with pytest.raises(ValueError):
        export_script.parse_time_arg(None)


def test_league_export(export_script, tmp_path) -> None:
    output = tmp_path / "rounds.csv"

    code = export_script.main([
        "--assets", "ETH,XYZ,btc",
        "--start", str(LATEST_TS - 6000),
        "--end", str(LATEST_TS + 60),
        "--output", str(output),
    ])

    assert code == 0
    rows = _read_rows(output)
    assert [(r["kind"], r["asset"], r["estimated_round_id"]) for r in rows] == [
        ("start", "ETH", "990"),
        ("start", "BTC", "990"),
        ("end", "ETH", "1000"),
        ("end", "BTC", "1000"),
    ]
    assert rows[0]["confidence"] == "high"


def test_batch_export_appends(export_script, tmp_path) -> None:
    requests_csv = tmp_path / "requests.csv"
    requests_csv.write_text(f"asset,timestamp\nETH,{LATEST_TS}\nDOGE,{LATEST_TS}\n", encoding="utf-8")
    output = tmp_path / "rounds.csv"

    for _ in range(2):
        assert export_script.main(["--input", str(requests_csv), "--output", str(output), "--append"]) == 0

    rows = _read_rows(output)
    assert len(rows) == 4
    assert rows[1]["asset"] == "DOGE"
    assert rows[1]["feed_address"] == ""
    assert rows[1]["confidence"] == "low"


def test_nothing_to_export(export_script, tmp_path) -> None:
    output = tmp_path / "rounds.csv"

    code = export_script.main(["--assets", "XYZ", "--start", "1600000000", "--end", "1600000100",
                               "--output", str(output)])

    assert code == 1
    assert not output.exists()


def test_batch_export_keeps_going_past_bad_timestamps(export_script, tmp_path) -> None:
    requests_csv = tmp_path / "requests.csv"
    requests_csv.write_text(
        f"asset,timestamp\nETH,{LATEST_TS - 6000}\nBTC,\nWBTC,soon\nETH,{LATEST_TS}\n", encoding="utf-8"
    )
    output = tmp_path / "rounds.csv"

    assert export_script.main(["--input", str(requests_csv), "--output", str(output)]) == 0

    rows = _read_rows(output)
    assert [r["asset"] for r in rows] == ["ETH", "BTC", "WBTC", "ETH"]
    assert [r["estimated_round_id"] for r in rows] == ["990", "1", "1", "1000"]
    assert [r["confidence"] for r in rows] == ["high", "low", "low", "high"]
    assert rows[1]["feed_address"] == ""
    assert rows[1]["degraded_reason"] == "Invalid timestamp format"
    assert rows[2]["target_utc"] == ""
