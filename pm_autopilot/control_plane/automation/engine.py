"""Automation engine: scheduled check cycles and the action approval lifecycle."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from pm_autopilot.control_plane.automation.check_modules.base import CheckContext, CheckModule
from pm_autopilot.control_plane.automation.events import (
    AutomationEvent,
    EventBus,
    EventType,
    Subscription,
)
from pm_autopilot.control_plane.automation.executor import ActionExecutor
from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.automation_contracts import (
    ALLOWED_ACTION_TRANSITIONS,
    AutomationAction,
    AutomationConfig,
    AutomationRun,
    ProposedAction,
)


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CycleOutcome:
    success: bool
    run: AutomationRun | None = None
    reason: str = ""


class AutomationEngine:
    def __init__(
        self,
        *,
        storage: AutomationStorage,
        executor: ActionExecutor,
        modules: list[CheckModule] | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.storage = storage
        self.executor = executor
        self.events = events or EventBus()
        self._clock = clock
        self._modules: list[CheckModule] = []
        self._cycle_lock = threading.Lock()
        self._timer_thread: threading.Thread | None = None
        self._timer_stop = threading.Event()
        for module in modules or []:
            self.register(module)

    def register(self, module: CheckModule) -> None:
        self._modules.append(module)
        logger.info("Registered check module: %s", module.name)

    @property
    def modules(self) -> list[CheckModule]:
        return list(self._modules)

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    # scheduling

    def start(self) -> bool:
        config = self.storage.get_automation_config()
        if not config.enabled:
            logger.info("Automation engine is disabled, not starting")
            return False
        self.stop()
        interval_s = config.interval_hours * 3600
        self._timer_stop = threading.Event()
        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            args=(self._timer_stop, interval_s),
            name="automation-timer",
            daemon=True,
        )
        self._timer_thread.start()
        logger.info("Automation engine started (interval=%.2fh)", config.interval_hours)
        return True

    def stop(self) -> None:
        thread = self._timer_thread
        if thread is None:
            return
        self._timer_stop.set()
        if thread is not threading.current_thread():
            thread.join(timeout=5)
        self._timer_thread = None
        logger.info("Automation engine stopped")

    def _timer_loop(self, stop: threading.Event, interval_s: float) -> None:
        while not stop.wait(interval_s):
            outcome = self.run_cycle()
            if not outcome.success:
                logger.info("Scheduled cycle did not complete: %s", outcome.reason)

    # cycles

    def run_cycle(self) -> CycleOutcome:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Cycle already in progress, skipping")
            return CycleOutcome(success=False, reason="cycle_in_progress")
        try:
            return self._run_cycle_locked()
        finally:
            self._cycle_lock.release()

    def _run_cycle_locked(self) -> CycleOutcome:
        run_id = str(uuid.uuid4())
        now = self._clock()
        config = self.storage.get_automation_config()
        enabled = [module for module in self._modules if module.enabled]
        names = [module.name for module in enabled]
        run = self.storage.create_automation_run(run_id, names, now)
        self.events.publish("run_started", {"run_id": run_id, "checks": names})

        errors: list[str] = []
        proposed_count = 0
        auto_approved = 0
        seen_keys: set[str] = set()
        try:
            context = CheckContext(storage=self.storage, run_id=run_id, now=now)
            for module in enabled:
                try:
                    proposed = module.run(context)
                except Exception as exc:
                    logger.exception("Check module %s failed", module.name)
                    errors.append(f"{module.name}: {exc}")
                    continue

                for candidate in proposed:
                    if candidate.dedup_key in seen_keys:
                        continue
                    seen_keys.add(candidate.dedup_key)
                    if self.storage.find_open_action(candidate.dedup_key) is not None:
                        logger.debug("Skipping duplicate action %s", candidate.dedup_key)
                        continue
                    action = self._persist(run_id, candidate, now)
                    proposed_count += 1
                    if self._eligible_for_auto_approval(module, candidate, config):
                        action = self.storage.update_automation_action_status(
                            action.id, "approved", resolved_by="auto", at=self._clock()
                        )
                        auto_approved += 1
                        self.events.publish("action_auto_approved", _action_data(action))
                        if config.auto_execute:
                            self._execute(action)
                    else:
                        self.events.publish("action_proposed", _action_data(action))
        except Exception as exc:
            logger.exception("Automation cycle %s failed", run_id)
            failed = self.storage.finalize_automation_run(
                run_id,
                status="failed",
                finished_at=self._clock(),
                actions_proposed=proposed_count,
                actions_auto_approved=auto_approved,
                errors=[*errors, str(exc)],
            )
            self.events.publish("run_failed", {"run_id": run_id, "errors": failed.errors})
            return CycleOutcome(success=False, run=failed, reason="cycle_failed")

        completed = self.storage.finalize_automation_run(
            run_id,
            status="completed",
            finished_at=self._clock(),
            actions_proposed=proposed_count,
            actions_auto_approved=auto_approved,
            errors=errors,
        )
        self.events.publish("run_completed", completed.model_dump(mode="json"))
        logger.info(
            "Cycle %s completed: %d actions proposed, %d auto-approved, %d module errors",
            run.id,
            proposed_count,
            auto_approved,
            len(errors),
        )
        return CycleOutcome(success=True, run=completed)

    def _persist(self, run_id: str, candidate: ProposedAction, now: datetime) -> AutomationAction:
        return self.storage.create_automation_action(
            AutomationAction(
                id=str(uuid.uuid4()),
                run_id=run_id,
                check_module=candidate.check_module,
                title=candidate.title,
                description=candidate.description,
                confidence=candidate.confidence,
                payload=candidate.payload,
                dedup_key=candidate.dedup_key,
                created_at=now,
            )
        )

    @staticmethod
    def _eligible_for_auto_approval(
        module: CheckModule, candidate: ProposedAction, config: AutomationConfig
    ) -> bool:
        return (
            candidate.type in module.auto_approve_types
            and candidate.confidence >= config.auto_approve_threshold
        )

    def _execute(self, action: AutomationAction) -> AutomationAction:
        result = self.executor.execute(action)
        if result.success:
            updated = self.storage.update_automation_action_status(
                action.id, "executed", at=self._clock()
            )
            self.events.publish("action_executed", _action_data(updated))
        else:
            updated = self.storage.update_automation_action_status(
                action.id, "failed", error=result.error, at=self._clock()
            )
            self.events.publish("action_failed", _action_data(updated))
        return updated

    # configuration

    def get_config(self) -> AutomationConfig:
        return self.storage.get_automation_config()

    def set_config(
        self,
        enabled: bool | None = None,
        interval_hours: float | None = None,
        auto_approve_threshold: float | None = None,
        auto_execute: bool | None = None,
    ) -> AutomationConfig:
        if interval_hours is not None and interval_hours <= 0:
            raise ValueError("invalid_interval_hours")
        if auto_approve_threshold is not None and not 0.0 <= auto_approve_threshold <= 1.0:
            raise ValueError("invalid_auto_approve_threshold")

        before = self.storage.get_automation_config()
        after = self.storage.update_automation_config(
            enabled=enabled,
            interval_hours=interval_hours,
            auto_approve_threshold=auto_approve_threshold,
            auto_execute=auto_execute,
        )
        if before.enabled != after.enabled or before.interval_hours != after.interval_hours:
            self.stop()
            if after.enabled:
                self.start()
        self.events.publish("config_updated", after.model_dump(mode="json"))
        return after

    # runs and actions

    def list_runs(self, limit: int = 20) -> list[AutomationRun]:
        return self.storage.list_automation_runs(limit=limit)

    def list_actions(
        self, status: str | None = None, action_type: str | None = None
    ) -> list[AutomationAction]:
        return self.storage.list_automation_actions(status=status, action_type=action_type)

    def approve_action(self, action_id: str, actor: str = "user") -> AutomationAction:
        return self._resolve(action_id, "approved", actor, "action_approved")

    def reject_action(self, action_id: str, actor: str = "user") -> AutomationAction:
        return self._resolve(action_id, "rejected", actor, "action_rejected")

    def _resolve(
        self, action_id: str, to_status: str, actor: str, event_type: EventType
    ) -> AutomationAction:
        action = self.storage.get_automation_action(action_id)
        if action is None:
            raise ValueError("unknown_action")
        if action.status == to_status or action.is_terminal:
            return action
        if to_status not in ALLOWED_ACTION_TRANSITIONS.get(action.status, set()):
            raise ValueError("invalid_transition:not_allowed")
        updated = self.storage.update_automation_action_status(
            action_id, to_status, resolved_by=actor, at=self._clock()
        )
        self.events.publish(event_type, _action_data(updated))
        return updated

    def execute_action(self, action_id: str) -> AutomationAction:
        action = self.storage.get_automation_action(action_id)
        if action is None:
            raise ValueError("unknown_action")
        if action.is_terminal:
            return action
        if action.status != "approved":
            raise ValueError("invalid_transition:not_allowed")
        return self._execute(action)

    # observation

    def subscribe(
        self, callback: Callable[[AutomationEvent], None] | None = None
    ) -> Subscription:
        return self.events.subscribe(callback)

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "has_timer": self._timer_thread is not None and self._timer_thread.is_alive(),
            "registered_checks": [module.name for module in self._modules],
            "config": self.storage.get_automation_config().model_dump(mode="json"),
        }


def _action_data(action: AutomationAction) -> dict[str, Any]:
    data = action.model_dump(mode="json")
    data["type"] = action.type
    return data
