"""Pydantic contracts for automation runs, proposed actions, and their typed payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


ActionType = Literal[
    "pm_alert",
    "pm_suggestion",
    "stale_ticket",
    "accountability_flag",
    "sprint_gap_warning",
    "assign_ticket",
    "slack_insight",
]
ModuleName = Literal[
    "pm_check",
    "stale_ticket_check",
    "accountability_check",
    "sprint_health_check",
]
ActionStatus = Literal["pending", "approved", "rejected", "executed", "failed"]
RunStatus = Literal["running", "completed", "failed"]
DetectionType = Literal[
    "pr_merged_ticket_open",
    "commits_no_progress",
    "ticket_stale_in_status",
    "pr_open_no_review",
    "pipeline_failing",
]
Severity = Literal["low", "medium", "high", "critical"]

ADVISORY_ACTION_TYPES: frozenset[str] = frozenset(
    {"pm_alert", "accountability_flag", "slack_insight", "pm_suggestion"}
)
TERMINAL_ACTION_STATUSES: frozenset[str] = frozenset({"rejected", "executed", "failed"})
OPEN_ACTION_STATUSES: frozenset[str] = frozenset({"pending", "approved"})
ALLOWED_ACTION_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected"},
    "approved": {"executed", "failed"},
    "rejected": set(),
    "executed": set(),
    "failed": set(),
}


class AssignTicketPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["assign_ticket"] = "assign_ticket"
    team_member_id: str = Field(min_length=1)
    member_name: str = ""
    external_key: str | None = None
    ticket_id: str | None = None
    ticket_title: str = ""
    snapshot_id: str | None = None

    @property
    def dedup_key(self) -> str:
        target = self.external_key or self.ticket_id or self.ticket_title
        return f"assign_ticket:{self.team_member_id}:{target}"


class StaleTicketPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["stale_ticket"] = "stale_ticket"
    detection_id: str = Field(min_length=1)
    external_key: str = Field(min_length=1)
    detection_type: DetectionType
    reason: Literal["pr_merged", "no_progress"] = "no_progress"

    @property
    def dedup_key(self) -> str:
        return f"stale_ticket:{self.external_key}:{self.detection_type}"


class SprintGapWarningPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["sprint_gap_warning"] = "sprint_gap_warning"
    snapshot_id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    member_name: str = ""
    remaining: int = Field(ge=0)
    in_progress: int = Field(ge=0)
    days_remaining: int | None = None
    external_key: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"sprint_gap_warning:{self.team_member_id}"


class PMAlertPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["pm_alert"] = "pm_alert"
    alert_id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    alert_type: str = Field(min_length=1)
    severity: Literal["info", "warning", "critical"]

    @property
    def dedup_key(self) -> str:
        return f"pm_alert:{self.team_member_id}:{self.alert_type}"


class PMSuggestionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["pm_suggestion"] = "pm_suggestion"
    suggestion_id: str = Field(min_length=1)
    team_member_id: str = Field(min_length=1)
    member_name: str = ""
    suggested_title: str = ""
    external_key: str | None = None
    ticket_id: str | None = None

    @property
    def dedup_key(self) -> str:
        target = self.external_key or self.ticket_id or self.suggested_title
        return f"pm_suggestion:{self.team_member_id}:{target}"


class AccountabilityFlagPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["accountability_flag"] = "accountability_flag"
    flag_id: str = Field(min_length=1)
    flag_type: Literal["no_commits", "sprint_risk"]
    team_member_id: str | None = None
    external_key: str | None = None

    @property
    def dedup_key(self) -> str:
        target = self.external_key or self.team_member_id or self.flag_id
        return f"accountability_flag:{self.flag_type}:{target}"


class SlackInsightPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["slack_insight"] = "slack_insight"
    channel: str = Field(min_length=1)
    summary: str = ""

    @property
    def dedup_key(self) -> str:
        return f"slack_insight:{self.channel}:{self.summary[:64]}"


ActionPayload = Annotated[
    Union[
        AssignTicketPayload,
        StaleTicketPayload,
        SprintGapWarningPayload,
        PMAlertPayload,
        PMSuggestionPayload,
        AccountabilityFlagPayload,
        SlackInsightPayload,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[Any] = TypeAdapter(ActionPayload)


def parse_action_payload(raw: dict[str, Any]) -> ActionPayload:
    """Rehydrate a stored payload dict into its typed variant."""

    return _PAYLOAD_ADAPTER.validate_python(raw)


class ProposedAction(BaseModel):
    """Candidate correction produced by a check module, not yet persisted."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    check_module: ModuleName
    title: str = Field(min_length=1)
    description: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    payload: ActionPayload

    @property
    def type(self) -> ActionType:
        return self.payload.kind

    @property
    def metadata(self) -> dict[str, Any]:
        return self.payload.model_dump(mode="json")

    @property
    def dedup_key(self) -> str:
        return self.payload.dedup_key


class AutomationAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    run_id: str = Field(min_length=1)
    check_module: ModuleName
    title: str = Field(min_length=1)
    description: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    payload: ActionPayload
    status: ActionStatus = "pending"
    dedup_key: str = ""
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    executed_at: datetime | None = None
    error: str | None = None

    @property
    def type(self) -> ActionType:
        return self.payload.kind

    @property
    def metadata(self) -> dict[str, Any]:
        return self.payload.model_dump(mode="json")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ACTION_STATUSES


class AutomationRun(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    started_at: datetime
    finished_at: datetime | None = None
    status: RunStatus = "running"
    checks_run: list[str] = Field(default_factory=list)
    actions_proposed: int = Field(default=0, ge=0)
    actions_auto_approved: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)


class AutomationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    interval_hours: float = Field(default=1.0, gt=0)
    auto_approve_threshold: float = Field(default=1.0, ge=0.0, le=1.0)
    auto_execute: bool = False
    updated_at: datetime | None = None


class StaleDetection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    external_key: str = Field(min_length=1)
    detection_type: DetectionType
    severity: Severity
    evidence: dict[str, Any] = Field(default_factory=dict)
    team_member_id: str | None = None
    status: Literal["open", "resolved"] = "open"
    created_at: datetime
    resolved_at: datetime | None = None


class EngineerLoad(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    member_id: str
    name: str
    assigned: int = Field(ge=0)
    completed: int = Field(ge=0)
    in_progress: int = Field(ge=0)

    @property
    def remaining(self) -> int:
        return max(0, self.assigned - self.completed)

    @property
    def is_underloaded(self) -> bool:
        return self.remaining < 2 or self.in_progress == 0


class SprintSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    sprint_id: str = Field(min_length=1)
    sprint_name: str = ""
    snapshot_date: str = Field(min_length=10)
    total_tickets: int = Field(ge=0)
    completed_tickets: int = Field(ge=0)
    in_progress_tickets: int = Field(ge=0)
    todo_tickets: int = Field(ge=0)
    per_engineer_data: list[EngineerLoad] = Field(default_factory=list)
    health_score: int = Field(ge=0, le=100)
    ai_analysis: str | None = None
    days_remaining: int | None = None
    created_at: datetime | None = None


class SyncFailure(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    external_key: str | None = None
    error_message: str = ""
    retry_count: int = Field(default=0, ge=0)
    resolved: bool = False
    created_at: datetime
