import csv
import json
from dataclasses import replace
from io import StringIO

import pytest
from rich.console import Console


@pytest.mark.unit
class TestRunReport:
    """Report properties, rendering and persistence."""

    def test_exit_codes(self, make_report):
        assert make_report(thresholds=[("http_req_failed", "rate<0.1")]).exit_code == 0
        assert make_report(failures=3, thresholds=[("http_req_failed", "rate<0.1")]).exit_code == 1
        assert make_report(stop_reason="cancelled by user").exit_code == 1
        assert make_report(durations=(), thresholds=[("http_req_duration", "p(95)<100")]).exit_code == 1

    def test_to_dict(self, make_report):
        data = make_report(failures=1, thresholds=[("http_req_failed", "rate<0.5")]).to_dict()

        assert data["plan_name"] == "health"
        assert data["duration"] == 30.0
        assert data["expected_iterations"] == 4
        assert data["pool"]["peak_active"] == 3
        assert data["metrics"]["count"] == 4
        assert data["verdict"]["overall_pass"] is True
        json.dumps(data)

    def test_save_json(self, make_report, tmp_path):
        path = make_report().save_json(output_dir=str(tmp_path))

        assert path.endswith("loadpace_health_20240501_120000.json")
        with open(path, encoding="utf-8") as f:
            assert json.load(f)["plan_name"] == "health"

    def test_save_csv_one_row_per_threshold(self, make_report, tmp_path):
        report = make_report(thresholds=[("http_req_failed", "rate<0.1"), ("http_req_duration", "p(95)<10")])
        path = report.save("csv", filepath=str(tmp_path / "nested" / "report.csv"))

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert [r["threshold"] for r in rows] == ["http_req_failed: rate<0.1", "http_req_duration: p(95)<10"]
        assert [r["outcome"] for r in rows] == ["pass", "fail"]
        assert rows[0]["count"] == "3"

    def test_save_csv_without_thresholds(self, make_report, tmp_path):
        path = make_report().save_csv(filepath=str(tmp_path / "report.csv"))

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert len(rows) == 1
        assert rows[0]["threshold"] == ""

    def test_unsupported_format(self, make_report, tmp_path):
        with pytest.raises(ValueError):
            make_report().save("xml", output_dir=str(tmp_path))

    def test_print_summary(self, make_report):
        buffer = StringIO()
        report = make_report(failures=1, thresholds=[("http_req_failed", "rate<0.1")], stop_reason="cancelled by user")

        report.print_summary(Console(file=buffer, width=120, color_system=None))

        output = buffer.getvalue()
        assert "FAILED" in output
        assert "http_req_failed: rate<0.1" in output
        assert "status is 200" in output
        assert "cancelled by user" in output
        assert "timeout=1" in output

    def test_request_name_and_tags_are_reported(self, make_report, tmp_path):
        report = replace(make_report(), request_name="HealthCheck", tags={"env": "staging", "build": "42"})

        data = report.to_dict()
        path = report.save_csv(filepath=str(tmp_path / "report.csv"))
        with open(path, newline="", encoding="utf-8") as f:
            row = next(csv.DictReader(f))
        buffer = StringIO()
        report.print_summary(Console(file=buffer, width=120, color_system=None))

        assert data["request_name"] == "HealthCheck"
        assert data["tags"] == {"env": "staging", "build": "42"}
        assert row["request_name"] == "HealthCheck"
        assert row["tags"] == "build=42, env=staging"
        assert "HealthCheck" in buffer.getvalue()
        assert "env=staging" in buffer.getvalue()
