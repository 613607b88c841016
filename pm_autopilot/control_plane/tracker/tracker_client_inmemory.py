"""In-memory issue tracker for deterministic tests and fixture-driven runs."""

from __future__ import annotations

from dataclasses import replace

from pm_autopilot.control_plane.tracker.tracker_client import (
    TrackerIssue,
    TrackerRequestError,
    TrackerTransition,
)


DEFAULT_TRANSITIONS = [
    TrackerTransition(id="11", name="To Do", to_status="To Do", to_category="new"),
    TrackerTransition(
        id="21", name="Start Progress", to_status="In Progress", to_category="indeterminate"
    ),
    TrackerTransition(id="31", name="Done", to_status="Done", to_category="done"),
]


class InMemoryTrackerClient:
    """Records every write; ``fail_operations`` makes named operations raise."""

    def __init__(
        self,
        issues: list[TrackerIssue] | None = None,
        transitions: list[TrackerTransition] | None = None,
        fail_operations: set[str] | None = None,
    ) -> None:
        self.issues: dict[str, TrackerIssue] = {issue.key: issue for issue in issues or []}
        self.transitions = list(DEFAULT_TRANSITIONS if transitions is None else transitions)
        self.fail_operations = set(fail_operations or set())
        self.comments: list[tuple[str, str]] = []
        self.assignments: list[tuple[str, str]] = []
        self.applied_transitions: list[tuple[str, str]] = []

    def get_transitions(self, external_key: str) -> list[TrackerTransition]:
        self._maybe_fail("get_transitions", external_key)
        return list(self.transitions)

    def transition_issue(self, external_key: str, transition_id: str) -> None:
        self._maybe_fail("transition_issue", external_key)
        self.applied_transitions.append((external_key, transition_id))
        transition = next((t for t in self.transitions if t.id == transition_id), None)
        issue = self.issues.get(external_key)
        if issue is not None and transition is not None:
            self.issues[external_key] = replace(
                issue, status=transition.to_status, status_category=transition.to_category
            )

    def assign_issue(self, external_key: str, account_id: str) -> None:
        self._maybe_fail("assign_issue", external_key)
        self.assignments.append((external_key, account_id))
        issue = self.issues.get(external_key)
        if issue is not None:
            self.issues[external_key] = replace(issue, assignee_account_id=account_id)

    def add_comment(self, external_key: str, text: str) -> None:
        self._maybe_fail("add_comment", external_key)
        self.comments.append((external_key, text))

    def list_active_issues(self, max_results: int = 100) -> list[TrackerIssue]:
        self._maybe_fail("list_active_issues", "")
        active = [issue for issue in self.issues.values() if issue.status_category != "done"]
        return active[: max(1, int(max_results))]

    def _maybe_fail(self, operation: str, external_key: str) -> None:
        if operation in self.fail_operations:
            raise TrackerRequestError(
                f"Tracker API error: {operation} failed for {external_key or 'search'}",
                reason_code="tracker_500",
                status_code=500,
            )
