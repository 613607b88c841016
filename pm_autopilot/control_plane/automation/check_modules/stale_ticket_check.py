"""Detect tickets whose tracker status lags behind code activity."""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import timedelta
from typing import Any

from pm_autopilot.control_plane.automation.check_modules.base import CheckContext
from pm_autopilot.control_plane.models.automation_contracts import (
    ActionType,
    DetectionType,
    ProposedAction,
    Severity,
    StaleTicketPayload,
)
from pm_autopilot.control_plane.models.work_state_contracts import (
    INITIAL_TICKET_STATUSES,
    IN_FLIGHT_TICKET_STATUSES,
    TERMINAL_TICKET_STATUSES,
    as_utc,
)


logger = logging.getLogger(__name__)

BRANCH_KEY_RE = re.compile(r"([A-Z]+-\d+)")

COMMIT_WINDOW = timedelta(days=3)
STALE_STATUS_WINDOW = timedelta(days=5)
REVIEW_WINDOW = timedelta(days=2)
PIPELINE_WINDOW = timedelta(days=3)


class StaleTicketCheckModule:
    name = "stale_ticket_check"
    auto_approve_types: frozenset[ActionType] = frozenset({"stale_ticket"})

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def run(self, context: CheckContext) -> list[ProposedAction]:
        actions: list[ProposedAction] = []
        actions.extend(self._merged_pr_ticket_open(context))
        actions.extend(self._commits_no_progress(context))
        actions.extend(self._stale_in_status(context))
        actions.extend(self._pr_open_no_review(context))
        actions.extend(self._pipeline_failing(context))
        logger.info("Stale-ticket check proposed %d actions", len(actions))
        return actions

    def _merged_pr_ticket_open(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        actions: list[ProposedAction] = []
        for pr in storage.list_pull_requests(state="MERGED", limit=100):
            if not pr.external_key:
                continue
            ticket = storage.get_ticket_by_key(pr.external_key)
            if ticket is None or ticket.status in TERMINAL_TICKET_STATUSES:
                continue
            action = self._detect(
                context,
                external_key=pr.external_key,
                detection_type="pr_merged_ticket_open",
                severity="high",
                confidence=0.85,
                evidence={
                    "pr_number": pr.pr_number,
                    "pr_title": pr.title,
                    "merged_at": pr.merged_at.isoformat() if pr.merged_at else None,
                    "ticket_status": ticket.status,
                    "repo_slug": pr.repo_slug,
                },
                team_member_id=pr.team_member_id,
                title=f"PR merged but ticket {pr.external_key} still {ticket.status}",
                description=(
                    f'PR #{pr.pr_number} "{pr.title}" was merged but the ticket is still '
                    f'in "{ticket.status}" status.'
                ),
            )
            if action is not None:
                actions.append(action)
        return actions

    def _commits_no_progress(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        since = context.now - COMMIT_WINDOW
        counts = Counter(
            commit.external_key
            for commit in storage.list_commits(since=since, limit=200)
            if commit.external_key
        )
        actions: list[ProposedAction] = []
        for external_key, commit_count in sorted(counts.items()):
            ticket = storage.get_ticket_by_key(external_key)
            if ticket is None or ticket.status not in INITIAL_TICKET_STATUSES:
                continue
            action = self._detect(
                context,
                external_key=external_key,
                detection_type="commits_no_progress",
                severity="medium",
                confidence=0.70,
                evidence={
                    "commit_count": commit_count,
                    "since": since.isoformat(),
                    "ticket_status": ticket.status,
                },
                team_member_id=ticket.assignee_id,
                title=f"{commit_count} commits for {external_key} but ticket still in {ticket.status}",
                description=(
                    f"{commit_count} commits found in the last 3 days for {external_key}, "
                    f'but the ticket status is "{ticket.status}".'
                ),
            )
            if action is not None:
                actions.append(action)
        return actions

    def _stale_in_status(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        cutoff = context.now - STALE_STATUS_WINDOW
        active_keys = {
            commit.external_key
            for commit in storage.list_commits(since=cutoff, limit=1000)
            if commit.external_key
        }
        actions: list[ProposedAction] = []
        for status in sorted(IN_FLIGHT_TICKET_STATUSES):
            for ticket in storage.list_tickets(status=status):
                if not ticket.external_key or ticket.external_key in active_keys:
                    continue
                history = storage.list_status_history(ticket.external_key)
                if not history or as_utc(history[0].changed_at) >= as_utc(cutoff):
                    continue
                last_change = history[0].changed_at
                action = self._detect(
                    context,
                    external_key=ticket.external_key,
                    detection_type="ticket_stale_in_status",
                    severity="medium",
                    confidence=0.65,
                    evidence={
                        "last_status_change": last_change.isoformat(),
                        "current_status": ticket.status,
                        "days_since_activity": STALE_STATUS_WINDOW.days,
                    },
                    team_member_id=ticket.assignee_id,
                    title=f'{ticket.external_key} stale in "{ticket.status}" for >5 days',
                    description=(
                        f'Ticket {ticket.external_key} "{ticket.title}" has been in '
                        f'"{ticket.status}" since {last_change.isoformat()} with no code activity.'
                    ),
                )
                if action is not None:
                    actions.append(action)
        return actions

    def _pr_open_no_review(self, context: CheckContext) -> list[ProposedAction]:
        cutoff = as_utc(context.now - REVIEW_WINDOW)
        actions: list[ProposedAction] = []
        for pr in context.storage.list_pull_requests(state="OPEN", limit=100):
            if as_utc(pr.created_at) > cutoff or pr.has_approval:
                continue
            external_key = pr.external_key or f"PR-{pr.pr_number}"
            action = self._detect(
                context,
                external_key=external_key,
                detection_type="pr_open_no_review",
                severity="medium",
                confidence=0.60,
                evidence={
                    "pr_number": pr.pr_number,
                    "pr_title": pr.title,
                    "created_at": pr.created_at.isoformat(),
                    "reviewer_count": len(pr.reviewers),
                    "repo_slug": pr.repo_slug,
                },
                team_member_id=pr.team_member_id,
                title=f"PR #{pr.pr_number} open >48h with no review",
                description=(
                    f'PR "{pr.title}" in {pr.repo_slug} has been open since '
                    f"{pr.created_at.isoformat()} with no approved reviews."
                ),
            )
            if action is not None:
                actions.append(action)
        return actions

    def _pipeline_failing(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        since = context.now - PIPELINE_WINDOW
        actions: list[ProposedAction] = []
        for pipeline in storage.list_pipelines(state="FAILED", since=since, limit=50):
            match = BRANCH_KEY_RE.search(pipeline.branch)
            if not match:
                continue
            external_key = match.group(1)
            ticket = storage.get_ticket_by_key(external_key)
            action = self._detect(
                context,
                external_key=external_key,
                detection_type="pipeline_failing",
                severity="high",
                confidence=0.75,
                evidence={
                    "branch": pipeline.branch,
                    "build_number": pipeline.build_number,
                    "repo_slug": pipeline.repo_slug,
                    "failed_at": pipeline.completed_at.isoformat() if pipeline.completed_at else None,
                },
                team_member_id=ticket.assignee_id if ticket else None,
                title=f"Pipeline failing for {external_key} on branch {pipeline.branch}",
                description=(
                    f"Build #{pipeline.build_number} in {pipeline.repo_slug} failed for branch "
                    f"{pipeline.branch} (linked to {external_key})."
                ),
            )
            if action is not None:
                actions.append(action)
        return actions

    def _detect(
        self,
        context: CheckContext,
        *,
        external_key: str,
        detection_type: DetectionType,
        severity: Severity,
        confidence: float,
        evidence: dict[str, Any],
        team_member_id: str | None,
        title: str,
        description: str,
    ) -> ProposedAction | None:
        """Record a detection and build its action, unless one is already open."""

        storage = context.storage
        existing = storage.list_stale_detections(
            external_key=external_key, detection_type=detection_type, status="open"
        )
        if existing:
            return None
        detection = storage.create_stale_detection(
            external_key=external_key,
            detection_type=detection_type,
            severity=severity,
            evidence=evidence,
            team_member_id=team_member_id,
        )
        return ProposedAction(
            check_module="stale_ticket_check",
            title=title,
            description=description,
            confidence=confidence,
            payload=StaleTicketPayload(
                detection_id=detection.id,
                external_key=external_key,
                detection_type=detection_type,
                reason="pr_merged" if detection_type == "pr_merged_ticket_open" else "no_progress",
            ),
        )
