"""Check-module contract shared by every automation check."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.automation_contracts import ActionType, ProposedAction


@dataclass(frozen=True)
class CheckContext:
    storage: AutomationStorage
    run_id: str
    now: datetime


class CheckModule(Protocol):
    """Inspects work state and proposes corrective actions; ``run`` may raise."""

    name: str
    enabled: bool
    auto_approve_types: frozenset[ActionType]

    def run(self, context: CheckContext) -> list[ProposedAction]: ...
