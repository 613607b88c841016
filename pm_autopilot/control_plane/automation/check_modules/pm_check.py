"""Workload alerts and ticket suggestions for the engineering team."""

from __future__ import annotations

import logging

from pm_autopilot.control_plane.automation.check_modules.base import CheckContext
from pm_autopilot.control_plane.automation.workload import WorkloadService
from pm_autopilot.control_plane.models.automation_contracts import (
    ActionType,
    PMAlertPayload,
    PMSuggestionPayload,
    ProposedAction,
)
from pm_autopilot.control_plane.tracker.sync_service import TrackerSyncService


logger = logging.getLogger(__name__)

SEVERITY_CONFIDENCE = {"critical": 0.9, "warning": 0.7, "info": 0.5}


class PMCheckModule:
    name = "pm_check"
    auto_approve_types: frozenset[ActionType] = frozenset()

    def __init__(
        self,
        workload: WorkloadService,
        sync: TrackerSyncService | None = None,
        enabled: bool = True,
    ) -> None:
        self.workload = workload
        self.sync = sync
        self.enabled = enabled

    def run(self, context: CheckContext) -> list[ProposedAction]:
        self._sync_tickets()

        actions: list[ProposedAction] = []
        for alert in self.workload.create_alerts(now=context.now):
            actions.append(
                ProposedAction(
                    check_module="pm_check",
                    title=f"Alert: {alert.alert_type} - {alert.team_member_id}",
                    description=alert.message,
                    confidence=SEVERITY_CONFIDENCE.get(alert.severity, 0.5),
                    payload=PMAlertPayload(
                        alert_id=alert.id,
                        team_member_id=alert.team_member_id,
                        alert_type=alert.alert_type,
                        severity=alert.severity,
                    ),
                )
            )

        for engineer in self.workload.detect_underutilized(now=context.now):
            for suggestion in self.workload.generate_suggestions(engineer.member_id):
                actions.append(
                    ProposedAction(
                        check_module="pm_check",
                        title=f"Suggestion for {engineer.member_name}: {suggestion.title}",
                        description=suggestion.reasoning,
                        confidence=suggestion.skill_match_score,
                        payload=PMSuggestionPayload(
                            suggestion_id=suggestion.id,
                            team_member_id=engineer.member_id,
                            member_name=engineer.member_name,
                            suggested_title=suggestion.title,
                            external_key=suggestion.external_key,
                            ticket_id=suggestion.ticket_id,
                        ),
                    )
                )
        return actions

    def _sync_tickets(self) -> None:
        if self.sync is None:
            return
        try:
            result = self.sync.sync_active_tickets()
        except Exception:
            logger.warning("Ticket sync failed; continuing with stored data", exc_info=True)
            return
        if result.errors:
            logger.warning("Ticket sync reported errors: %s", ", ".join(result.errors))
