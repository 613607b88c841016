"""Built-in automation check modules."""

from pm_autopilot.control_plane.automation.check_modules.accountability_check import (
    AccountabilityCheckModule,
)
from pm_autopilot.control_plane.automation.check_modules.base import CheckContext, CheckModule
from pm_autopilot.control_plane.automation.check_modules.pm_check import PMCheckModule
from pm_autopilot.control_plane.automation.check_modules.sprint_health_check import (
    SprintHealthCheckModule,
)
from pm_autopilot.control_plane.automation.check_modules.stale_ticket_check import (
    StaleTicketCheckModule,
)

__all__ = [
    "AccountabilityCheckModule",
    "CheckContext",
    "CheckModule",
    "PMCheckModule",
    "SprintHealthCheckModule",
    "StaleTicketCheckModule",
]
