"""Issue-tracker client contracts, error types, and factory helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Protocol

from pm_autopilot.control_plane.tracker.tracker_auth import TrackerAuth, load_tracker_auth_from_env


@dataclass(frozen=True)
class TrackerTransition:
    id: str
    name: str
    to_status: str
    to_category: str = ""

    @property
    def is_done(self) -> bool:
        label = self.name.lower()
        return self.to_category == "done" or "done" in label or "closed" in label

    @property
    def is_in_progress(self) -> bool:
        return self.to_category == "indeterminate" or "in progress" in self.name.lower()


@dataclass(frozen=True)
class TrackerIssue:
    key: str
    summary: str
    status: str
    status_category: str = ""
    issue_type: str = "task"
    priority: str = "medium"
    assignee_account_id: str | None = None
    assignee_name: str | None = None
    labels: list[str] = field(default_factory=list)
    updated: str | None = None


class TrackerRequestError(RuntimeError):
    def __init__(self, message: str, reason_code: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.status_code = status_code


class RetryableTrackerError(TrackerRequestError):
    """Raised for rate limits and 5xx responses once every retry attempt is spent."""


class IssueTrackerClient(Protocol):
    """Remote work-tracking system the executor and sync service write to and read from."""

    def get_transitions(self, external_key: str) -> list[TrackerTransition]: ...

    def transition_issue(self, external_key: str, transition_id: str) -> None: ...

    def assign_issue(self, external_key: str, account_id: str) -> None: ...

    def add_comment(self, external_key: str, text: str) -> None: ...

    def list_active_issues(self, max_results: int = 100) -> list[TrackerIssue]: ...


def build_tracker_from_env(env: dict[str, str] | None = None) -> IssueTrackerClient | None:
    """Return a Jira client when credentials are present, otherwise ``None``."""

    env_map = os.environ if env is None else env
    auth = load_tracker_auth_from_env(env_map)
    if not auth.is_configured:
        return None

    from pm_autopilot.control_plane.tracker.tracker_client_api import JiraAPIClient

    return JiraAPIClient(auth=auth)


__all__ = [
    "IssueTrackerClient",
    "RetryableTrackerError",
    "TrackerAuth",
    "TrackerIssue",
    "TrackerRequestError",
    "TrackerTransition",
    "build_tracker_from_env",
]
