"""Pull active tickets from the issue tracker into local storage."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.work_state_contracts import (
    TeamMember,
    Ticket,
    normalize_ticket_status,
)
from pm_autopilot.control_plane.tracker.tracker_client import (
    IssueTrackerClient,
    TrackerIssue,
    TrackerRequestError,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerSyncResult:
    synced: int
    errors: list[str] = field(default_factory=list)
    synced_at: str = ""


class TrackerSyncService:
    def __init__(
        self,
        *,
        storage: AutomationStorage,
        tracker: IssueTrackerClient | None,
        max_results: int = 100,
    ) -> None:
        self.storage = storage
        self.tracker = tracker
        self.max_results = max_results
        self._lock = threading.Lock()

    def sync_active_tickets(self) -> TrackerSyncResult:
        if self.tracker is None:
            return TrackerSyncResult(synced=0, errors=["tracker_not_configured"])
        if not self._lock.acquire(blocking=False):
            return TrackerSyncResult(synced=0, errors=["sync_in_progress"])
        try:
            return self._sync(self.tracker)
        finally:
            self._lock.release()

    def _sync(self, tracker: IssueTrackerClient) -> TrackerSyncResult:
        synced_at = _utc_now_iso()
        try:
            issues = tracker.list_active_issues(max_results=self.max_results)
        except TrackerRequestError as exc:
            logger.warning("Tracker sync failed: %s", exc)
            return TrackerSyncResult(synced=0, errors=[exc.reason_code], synced_at=synced_at)

        members = self.storage.list_team_members()
        errors: list[str] = []
        synced = 0
        for issue in issues:
            try:
                self._upsert_issue(issue, members)
            except ValueError as exc:
                errors.append(f"{issue.key}: {exc}")
                continue
            synced += 1
        logger.info("Synced %d active tickets from tracker", synced)
        return TrackerSyncResult(synced=synced, errors=errors, synced_at=synced_at)

    def _upsert_issue(self, issue: TrackerIssue, members: list[TeamMember]) -> None:
        existing = self.storage.get_ticket_by_key(issue.key)
        assignee = _match_member(issue, members)
        status = normalize_ticket_status(issue.status, issue.status_category)
        ticket = Ticket(
            id=existing.id if existing else issue.key,
            title=issue.summary,
            status=status,
            external_key=issue.key,
            assignee_id=assignee.id if assignee else None,
            sprint_id=existing.sprint_id if existing else None,
            ticket_type=issue.issue_type or "task",
            priority=issue.priority or "medium",
            required_skills=existing.required_skills if existing else list(issue.labels),
            updated_at=datetime.now(timezone.utc),
        )
        self.storage.upsert_ticket(ticket)


def _match_member(issue: TrackerIssue, members: list[TeamMember]) -> TeamMember | None:
    if issue.assignee_account_id:
        for member in members:
            if member.tracker_account_id == issue.assignee_account_id:
                return member
    name = (issue.assignee_name or "").strip().lower()
    if not name:
        return None
    for member in members:
        if (member.tracker_username or "").lower() == name:
            return member
    for member in members:
        if member.name.lower() == name:
            return member
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
