import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pm_autopilot.cli import app
from pm_autopilot.control_plane.db.db import AutomationDB
from pm_autopilot.control_plane.fixtures import apply_fixture, load_fixture, read_fixture

DEMO_FIXTURE = Path(__file__).resolve().parents[1] / "fixtures" / "demo_work_state.yml"


def _cli_env(tmp_path: Path) -> dict[str, str]:
    return {
        "PMAUTO_DATA_DIR": str(tmp_path / "data"),
        "PMAUTO_INSIGHT_PROVIDER": "none",
        "PMAUTO_JIRA_BASE_URL": "",
        "PMAUTO_JIRA_EMAIL": "",
        "PMAUTO_JIRA_API_TOKEN": "",
    }


def test_demo_fixture_loads_every_section() -> None:
    db = AutomationDB()

    counts = load_fixture(db, DEMO_FIXTURE)

    assert counts["team_members"] == 3
    assert counts["tickets"] == 5
    assert counts["pull_requests"] == 1
    assert db.get_active_sprint() is not None
    pr = db.list_pull_requests(state="MERGED")[0]
    assert pr.external_key == "FOAM-102"
    assert db.list_commits()[0].external_key == "FOAM-102"
    assert db.get_last_activity_for_member("ada") is not None
    assert [t.external_key for t in db.list_unassigned_tickets()] == ["FOAM-104", "FOAM-105"]


def test_missing_fixture_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_fixture(tmp_path / "absent.yml")


def test_unknown_fixture_section_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "bad.yml"
    path.write_text("epics:\n  - id: e1\n")

    with pytest.raises(ValueError, match="unknown_fixture_section:epics"):
        read_fixture(path)


def test_apply_fixture_validates_rows() -> None:
    with pytest.raises(ValueError):
        apply_fixture(AutomationDB(), {"tickets": [{"id": "t1", "title": "x", "status": "blocked"}]})


def test_cli_load_run_and_approve(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _cli_env(tmp_path)

    loaded = runner.invoke(app, ["load-fixture", str(DEMO_FIXTURE)], env=env)
    assert loaded.exit_code == 0, loaded.output
    assert json.loads(loaded.stdout)["tickets"] == 5

    cycle = runner.invoke(app, ["run-cycle"], env=env)
    assert cycle.exit_code == 0, cycle.output
    outcome = json.loads(cycle.stdout)
    assert outcome["success"] is True
    assert outcome["run"]["checks_run"] == [
        "pm_check",
        "stale_ticket_check",
        "accountability_check",
        "sprint_health_check",
    ]

    listed = runner.invoke(app, ["actions", "--type", "stale_ticket"], env=env)
    stale = json.loads(listed.stdout)
    merged = [a for a in stale if a["payload"]["detection_type"] == "pr_merged_ticket_open"]
    assert [a["payload"]["external_key"] for a in merged] == ["FOAM-102"]
    assert merged[0]["confidence"] == 0.85

    approved = runner.invoke(app, ["approve", merged[0]["id"], "--actor", "lead"], env=env)
    assert approved.exit_code == 0, approved.output
    assert json.loads(approved.stdout)["status"] == "approved"

    rejected = runner.invoke(app, ["reject", merged[0]["id"]], env=env)
    assert rejected.exit_code == 1
    assert "invalid_transition:not_allowed" in rejected.output

    runs = runner.invoke(app, ["runs", "--limit", "5"], env=env)
    assert len(json.loads(runs.stdout)) == 1


def test_cli_config_set_validates_and_persists(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _cli_env(tmp_path)

    bad = runner.invoke(app, ["config-set", "--interval-hours", "0"], env=env)
    assert bad.exit_code == 1
    assert "invalid_interval_hours" in bad.output

    good = runner.invoke(
        app, ["config-set", "--auto-approve-threshold", "0.8", "--auto-execute"], env=env
    )
    assert good.exit_code == 0, good.output

    shown = json.loads(runner.invoke(app, ["config-show"], env=env).stdout)
    assert shown["auto_approve_threshold"] == 0.8
    assert shown["auto_execute"] is True
    assert shown["enabled"] is False


def test_cli_serve_streams_scheduled_cycle_events(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _cli_env(tmp_path)
    enabled = runner.invoke(
        app, ["config-set", "--enabled", "--interval-hours", "0.0001"], env=env
    )
    assert enabled.exit_code == 0, enabled.output

    served = runner.invoke(
        app, ["serve", "--heartbeat-seconds", "0.05", "--max-events", "1"], env=env
    )

    assert served.exit_code == 0, served.output
    assert "event: run_started\n" in served.stdout
