"""Load team work state (tickets, code activity, sprints) from a YAML fixture file."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.work_state_contracts import (
    Commit,
    Pipeline,
    PullRequest,
    Sprint,
    TeamMember,
    Ticket,
    extract_external_key,
)


SECTIONS = (
    "team_members",
    "sprints",
    "tickets",
    "status_history",
    "pull_requests",
    "commits",
    "pipelines",
    "assignments",
    "activity",
)


def read_fixture(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Fixture not found: {path}")
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError("fixture_root_not_mapping")
    unknown = sorted(set(data) - set(SECTIONS))
    if unknown:
        raise ValueError(f"unknown_fixture_section:{unknown[0]}")
    return data


def apply_fixture(storage: AutomationStorage, data: dict[str, Any]) -> dict[str, int]:
    """Upsert every section into storage; returns the number of rows per section."""

    counts = {section: 0 for section in SECTIONS}
    for row in data.get("team_members") or []:
        storage.upsert_team_member(TeamMember.model_validate(row))
        counts["team_members"] += 1
    for row in data.get("sprints") or []:
        storage.upsert_sprint(Sprint.model_validate(row))
        counts["sprints"] += 1
    for row in data.get("tickets") or []:
        storage.upsert_ticket(Ticket.model_validate(row))
        counts["tickets"] += 1
    for row in data.get("status_history") or []:
        storage.record_status_transition(
            str(row["external_key"]),
            row.get("old_status"),
            str(row["new_status"]),
            changed_at=_as_datetime(row.get("changed_at")),
        )
        counts["status_history"] += 1
    for row in data.get("pull_requests") or []:
        row = dict(row)
        row.setdefault("external_key", extract_external_key(str(row.get("title", ""))))
        storage.upsert_pull_request(PullRequest.model_validate(row))
        counts["pull_requests"] += 1
    for row in data.get("commits") or []:
        row = dict(row)
        row.setdefault("external_key", extract_external_key(str(row.get("message", ""))))
        storage.add_commit(Commit.model_validate(row))
        counts["commits"] += 1
    for row in data.get("pipelines") or []:
        storage.add_pipeline(Pipeline.model_validate(row))
        counts["pipelines"] += 1
    for row in data.get("assignments") or []:
        storage.create_assignment(
            assignee_id=str(row["assignee_id"]),
            ticket_id=row.get("ticket_id"),
            external_key=row.get("external_key"),
            assigned_by=str(row.get("assigned_by", "pm")),
            assigned_at=_as_datetime(row.get("assigned_at")),
        )
        counts["assignments"] += 1
    for row in data.get("activity") or []:
        storage.record_engineer_activity(
            str(row["team_member_id"]), at=_as_datetime(row.get("at"))
        )
        counts["activity"] += 1
    return counts


def load_fixture(storage: AutomationStorage, path: Path) -> dict[str, int]:
    return apply_fixture(storage, read_fixture(path))


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
