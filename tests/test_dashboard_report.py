import json
from datetime import datetime, timezone

import pytest

from scripts import dashboard_report
from skinscan.db import SessionLocal
from skinscan.models import Detection


def test_report_prints_stats(capsys):
    with SessionLocal() as db:
        db.add(
            Detection(
                user_id="cli-user",
                image_url="https://cdn.example.com/a.jpg",
                condition="Eczema",
                confidence=0.5,
                raw="{}",
                created_at=datetime.now(timezone.utc),
            )
        )
        db.commit()

    assert dashboard_report.main(["--user-id", "cli-user", "--window", "trailing"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["totalScans"] == 1
    assert report["accuracyRate"] == "50.0%"
    assert report["conditionsOverview"] == [{"name": "Eczema", "value": 1}]
    assert report["monthlyScans"][-1]["scans"] == 1


def test_report_rejects_unknown_window():
    with pytest.raises(SystemExit):
        dashboard_report.main(["--user-id", "cli-user", "--window", "weekly"])


def test_report_failure_exit_code(monkeypatch):
    def broken(user_id, window):
        raise RuntimeError("db down")

    monkeypatch.setattr(dashboard_report, "build_report", broken)
    assert dashboard_report.main(["--user-id", "cli-user"]) == 1
