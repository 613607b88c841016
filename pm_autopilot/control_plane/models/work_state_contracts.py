"""Read models for the team work state the check modules inspect."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


TicketStatus = Literal["backlog", "todo", "in_progress", "in_review", "done", "closed"]

INITIAL_TICKET_STATUSES: frozenset[str] = frozenset({"backlog", "todo"})
IN_FLIGHT_TICKET_STATUSES: frozenset[str] = frozenset({"in_progress", "in_review"})
TERMINAL_TICKET_STATUSES: frozenset[str] = frozenset({"done", "closed"})

EXTERNAL_KEY_RE = re.compile(r"([A-Z][A-Z0-9]*-\d+)")


def extract_external_key(text: str) -> str | None:
    """Return the first tracker key (``ABC-123``) embedded in ``text``."""

    match = EXTERNAL_KEY_RE.search(text or "")
    return match.group(1) if match else None


def normalize_ticket_status(raw: str, category: str = "") -> TicketStatus:
    """Map a tracker status name (and optional status category) onto the local vocabulary."""

    lowered = raw.strip().lower().replace("-", " ").replace("_", " ")
    category = category.strip().lower()
    if lowered in {"done", "resolved", "complete", "completed"} or category == "done":
        return "done"
    if lowered in {"closed", "won't do", "wont do", "cancelled", "canceled"}:
        return "closed"
    if "review" in lowered:
        return "in_review"
    if "progress" in lowered or category == "indeterminate":
        return "in_progress"
    if lowered == "backlog":
        return "backlog"
    return "todo"


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so stored and computed times compare safely."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TeamMember(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    role: str = ""
    skills: list[str] = Field(default_factory=list)
    tracker_account_id: str | None = None
    tracker_username: str | None = None
    member_type: Literal["human", "agent"] = "human"


class Ticket(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    status: TicketStatus = "todo"
    external_key: str | None = None
    assignee_id: str | None = None
    sprint_id: str | None = None
    ticket_type: str = "task"
    priority: str = "medium"
    required_skills: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None


class StatusTransition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    external_key: str = Field(min_length=1)
    old_status: str | None = None
    new_status: str = Field(min_length=1)
    changed_at: datetime


class PullRequestReviewer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = ""
    approved_at: datetime | None = None


class PullRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    pr_number: int = Field(ge=1)
    repo_slug: str = Field(min_length=1)
    title: str = ""
    state: Literal["OPEN", "MERGED", "DECLINED"] = "OPEN"
    external_key: str | None = None
    team_member_id: str | None = None
    created_at: datetime
    merged_at: datetime | None = None
    reviewers: list[PullRequestReviewer] = Field(default_factory=list)

    @property
    def has_approval(self) -> bool:
        return any(reviewer.approved_at is not None for reviewer in self.reviewers)


class Commit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    repo_slug: str = Field(min_length=1)
    message: str = ""
    external_key: str | None = None
    team_member_id: str | None = None
    committed_at: datetime


class Pipeline(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    repo_slug: str = Field(min_length=1)
    build_number: int = Field(ge=0)
    branch: str = ""
    state: Literal["SUCCESSFUL", "FAILED", "IN_PROGRESS", "STOPPED"] = "IN_PROGRESS"
    completed_at: datetime | None = None


class Sprint(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    state: Literal["active", "future", "closed"] = "future"
    start_date: datetime | None = None
    end_date: datetime | None = None


class Assignment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    assignee_id: str = Field(min_length=1)
    ticket_id: str | None = None
    external_key: str | None = None
    assigned_by: str = "pm"
    assigned_at: datetime
    completed_at: datetime | None = None


class PMAlert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    alert_type: Literal["no_assignment", "no_activity"]
    severity: Literal["info", "warning", "critical"]
    message: str = ""
    is_dismissed: bool = False
    created_at: datetime


class TicketSuggestion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    ticket_id: str | None = None
    external_key: str | None = None
    title: str = ""
    reasoning: str = ""
    skill_match_score: float = Field(ge=0.0, le=1.0)
    status: Literal["pending", "approved", "rejected"] = "pending"
    created_at: datetime


class AccountabilityFlag(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    flag_type: Literal["no_commits", "sprint_risk"]
    severity: Literal["low", "medium", "high", "critical"]
    message: str = ""
    external_key: str | None = None
    status: Literal["active", "acknowledged", "resolved"] = "active"
    created_at: datetime
