"""Application facade wiring storage, collaborators, and the automation engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pm_autopilot.control_plane.automation.check_modules import (
    AccountabilityCheckModule,
    PMCheckModule,
    SprintHealthCheckModule,
    StaleTicketCheckModule,
)
from pm_autopilot.control_plane.automation.engine import AutomationEngine, CycleOutcome
from pm_autopilot.control_plane.automation.events import Subscription
from pm_autopilot.control_plane.automation.executor import ActionExecutor
from pm_autopilot.control_plane.automation.workload import WorkloadService
from pm_autopilot.control_plane.db.db import AutomationDB
from pm_autopilot.control_plane.fixtures import load_fixture
from pm_autopilot.control_plane.insight import TextInsightProvider, build_insight_provider
from pm_autopilot.control_plane.models.automation_contracts import AutomationAction
from pm_autopilot.control_plane.tracker.sync_service import TrackerSyncService
from pm_autopilot.control_plane.tracker.tracker_client import (
    IssueTrackerClient,
    build_tracker_from_env,
)
from pm_autopilot.shared.settings import AutopilotSettings


class AutomationApp:
    """Thin callable facade over the engine for the CLI and embedding hosts."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        settings: AutopilotSettings | None = None,
        tracker: IssueTrackerClient | None = None,
        insight: TextInsightProvider | None = None,
    ) -> None:
        self.settings = settings
        self.db = AutomationDB(db_path)
        self.tracker = tracker
        self.sync_service = TrackerSyncService(storage=self.db, tracker=tracker)
        self.workload = WorkloadService(
            storage=self.db,
            underutilization_days=settings.underutilization_days if settings else 2,
            inactivity_days=settings.inactivity_days if settings else 3,
        )
        self.executor = ActionExecutor(storage=self.db, tracker=tracker, workload=self.workload)
        self.engine = AutomationEngine(
            storage=self.db,
            executor=self.executor,
            modules=[
                PMCheckModule(self.workload, sync=self.sync_service),
                StaleTicketCheckModule(),
                AccountabilityCheckModule(),
                SprintHealthCheckModule(insight=insight),
            ],
        )

    def run_cycle(self) -> dict[str, Any]:
        return _outcome_dict(self.engine.run_cycle())

    def get_config(self) -> dict[str, Any]:
        return self.engine.get_config().model_dump(mode="json")

    def set_config(self, **changes: Any) -> dict[str, Any]:
        return self.engine.set_config(**changes).model_dump(mode="json")

    def list_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        return [run.model_dump(mode="json") for run in self.engine.list_runs(limit=limit)]

    def list_actions(
        self, status: str | None = None, action_type: str | None = None
    ) -> list[dict[str, Any]]:
        return [
            _action_dict(action)
            for action in self.engine.list_actions(status=status, action_type=action_type)
        ]

    def approve_action(self, action_id: str, actor: str = "user") -> dict[str, Any]:
        return _action_dict(self.engine.approve_action(action_id, actor=actor))

    def reject_action(self, action_id: str, actor: str = "user") -> dict[str, Any]:
        return _action_dict(self.engine.reject_action(action_id, actor=actor))

    def execute_action(self, action_id: str) -> dict[str, Any]:
        return _action_dict(self.engine.execute_action(action_id))

    def load_fixture(self, path: str | Path) -> dict[str, int]:
        return load_fixture(self.db, Path(path))

    def subscribe(self) -> Subscription:
        return self.engine.subscribe()

    def status(self) -> dict[str, Any]:
        return self.engine.status()

    def close(self) -> None:
        self.engine.stop()
        self.db.conn.close()


def create_app(
    settings: AutopilotSettings | None = None,
    env: dict[str, str] | None = None,
) -> AutomationApp:
    """Build the app from settings and environment, resolving optional collaborators."""

    env_map = os.environ if env is None else env
    settings = settings or AutopilotSettings.from_env(dict(env_map))
    settings.ensure_directories()
    return AutomationApp(
        settings.sqlite_path,
        settings=settings,
        tracker=build_tracker_from_env(dict(env_map)),
        insight=build_insight_provider(
            settings.insight_provider, timeout_s=settings.insight_timeout_s, env=dict(env_map)
        ),
    )


def _outcome_dict(outcome: CycleOutcome) -> dict[str, Any]:
    return {
        "success": outcome.success,
        "reason": outcome.reason,
        "run": outcome.run.model_dump(mode="json") if outcome.run else None,
    }


def _action_dict(action: AutomationAction) -> dict[str, Any]:
    data = action.model_dump(mode="json")
    data["type"] = action.type
    return data
