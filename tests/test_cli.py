import csv
import json

import pytest

from adinsight import cli
from conftest import raw_row


@pytest.fixture
def insights_csv(tmp_path):
    rows = [raw_row("ad_1", d) for d in ("2024-01-01", "2024-01-02", "2024-01-05")]
    rows.append(raw_row("ad_2", "2024-01-03", impressions="1,500"))
    path = tmp_path / "insights.csv"
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0]))
        writer.writeheader()
        writer.writerows(rows)
    return path


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ADINSIGHT_SETTINGS", raising=False)
    monkeypatch.delenv("ADINSIGHT_MAX_WORKERS", raising=False)


def run(capsys, *argv):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if code == 0 else None)


def test_aggregate_command(capsys, insights_csv):
    code, out = run(capsys, "aggregate", str(insights_csv), "--sort", "--check-consistency")
    assert code == 0
    records = {r["entity_id"]: r for r in out["records"]}
    assert records["ad_1"]["summary"]["metrics"]["impressions"] == 3000
    assert records["ad_2"]["summary"]["metrics"]["impressions"] == 1500
    assert out["metadata"]["total_input_rows"] == 4
    assert all(c["is_consistent"] for c in out["consistency"])


def test_aggregate_json_input(capsys, tmp_path):
    path = tmp_path / "insights.json"
    path.write_text(json.dumps([raw_row("ad_9", "2024-01-01", clicks="30")]))
    code, out = run(capsys, "aggregate", str(path), "--entity", "ad_9")
    assert code == 0
    assert out["records"][0]["summary"]["metrics"]["ctr"] == pytest.approx(3.0)


def test_delivery_command(capsys, insights_csv):
    code, out = run(capsys, "delivery", str(insights_csv), "--since", "2024-01-01", "--until", "2024-01-05")
    assert code == 0
    assert out["entities"]["ad_1"]["actual_delivery_days"] == 3
    assert out["entities"]["ad_1"]["pattern"] == "intermittent"
    assert out["entities"]["ad_2"]["pattern"] == "single"


def test_gaps_command(capsys, insights_csv):
    code, out = run(capsys, "gaps", str(insights_csv), "--entity", "ad_1", "--since", "2024-01-01", "--until", "2024-01-06")
    assert code == 0
    ad = out["entities"]["ad_1"]
    assert ad["timeline"] == {"total_days": 6, "delivery_days": 3, "gap_days": 3}
    assert [g["duration_days"] for g in ad["gaps"]] == [2, 1]
    assert ad["gaps"][1]["is_ongoing"] is True


def test_fatigue_command(capsys, insights_csv):
    code, out = run(capsys, "fatigue", str(insights_csv), "--date-range", "last_7d")
    assert code == 0
    assert out["summary"]["total_entities"] == 2
    assert out["time_series_analysis"]["enabled"] is False


def test_configuration_error_exits_1(capsys, tmp_path, insights_csv):
    settings = tmp_path / "bad.yaml"
    settings.write_text("gap_detection:\n  thresholds:\n    major_gap_days: 9\n")
    code, _ = run(capsys, "--settings", str(settings), "gaps", str(insights_csv), "--date-range", "last_7d")
    assert code == 1


def test_missing_window_is_configuration_error(capsys, insights_csv):
    code, _ = run(capsys, "delivery", str(insights_csv))
    assert code == 1


def test_missing_input_file(capsys, tmp_path):
    code, _ = run(capsys, "aggregate", str(tmp_path / "nope.csv"))
    assert code == 2
