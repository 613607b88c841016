from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
import requests

from pm_autopilot.control_plane.tracker.tracker_auth import TrackerAuth, load_tracker_auth_from_env
from pm_autopilot.control_plane.tracker.tracker_client import (
    RetryableTrackerError,
    TrackerRequestError,
    build_tracker_from_env,
)
from pm_autopilot.control_plane.tracker.tracker_client_api import JiraAPIClient


@dataclass
class FakeResponse:
    status_code: int
    payload: Any
    headers: dict[str, str] | None = None

    @property
    def content(self) -> bytes:
        if self.payload is None:
            return b""
        return b"json"

    def json(self) -> Any:
        if self.payload is None:
            raise ValueError("no body")
        return self.payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("No fake response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


AUTH = TrackerAuth(
    base_url="https://acme.atlassian.net",
    email="pm@acme.test",
    api_token="token-abcdef123456",
    project_key="ENG",
)


def _client(session: FakeSession, sleeps: list[float] | None = None) -> JiraAPIClient:
    recorded = sleeps if sleeps is not None else []
    return JiraAPIClient(AUTH, session=session, backoff_s=0.5, sleep=recorded.append)


def test_build_tracker_from_env_requires_full_credentials() -> None:
    assert build_tracker_from_env(env={}) is None
    assert build_tracker_from_env(env={"PMAUTO_JIRA_BASE_URL": "https://x"}) is None
    client = build_tracker_from_env(
        env={
            "PMAUTO_JIRA_BASE_URL": "https://acme.atlassian.net/",
            "PMAUTO_JIRA_EMAIL": "pm@acme.test",
            "PMAUTO_JIRA_API_TOKEN": "secret",
        }
    )
    assert isinstance(client, JiraAPIClient)
    assert client.base_url == "https://acme.atlassian.net"


def test_explicit_empty_env_ignores_process(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PMAUTO_JIRA_BASE_URL", "https://acme.atlassian.net")
    monkeypatch.setenv("PMAUTO_JIRA_EMAIL", "pm@acme.test")
    monkeypatch.setenv("PMAUTO_JIRA_API_TOKEN", "secret")

    assert build_tracker_from_env(env={}) is None
    assert load_tracker_auth_from_env({}).is_configured is False


def test_auth_redacts_token() -> None:
    assert AUTH.redacted()["api_token"] == "toke...3456"
    assert TrackerAuth(None, None, "short").redacted()["api_token"] == "***"
    assert AUTH.basic_header().startswith("Basic ")


def test_unconfigured_auth_is_rejected() -> None:
    with pytest.raises(ValueError, match="tracker_not_configured"):
        JiraAPIClient(TrackerAuth(None, None, None))


def test_get_transitions_parses_target_status_category() -> None:
    session = FakeSession(
        [
            FakeResponse(
                200,
                {
                    "transitions": [
                        {
                            "id": "21",
                            "name": "Start Progress",
                            "to": {"name": "In Progress", "statusCategory": {"key": "indeterminate"}},
                        },
                        {
                            "id": "31",
                            "name": "Ship it",
                            "to": {"name": "Released", "statusCategory": {"key": "done"}},
                        },
                    ]
                },
            )
        ]
    )

    transitions = _client(session).get_transitions("ENG-1")

    assert [t.id for t in transitions] == ["21", "31"]
    assert transitions[0].is_in_progress is True
    assert transitions[1].is_done is True
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == "https://acme.atlassian.net/rest/api/3/issue/ENG-1/transitions"
    assert session.calls[0]["headers"]["Authorization"] == AUTH.basic_header()


def test_add_comment_sends_document_body() -> None:
    session = FakeSession([FakeResponse(201, {"id": "100"})])

    _client(session).add_comment("ENG-1", "Please update progress.")

    body = session.calls[0]["json"]["body"]
    assert body["type"] == "doc"
    assert body["content"][0]["content"][0] == {"type": "text", "text": "Please update progress."}


def test_assign_and_transition_accept_empty_responses() -> None:
    session = FakeSession([FakeResponse(204, None), FakeResponse(204, None)])
    client = _client(session)

    client.assign_issue("ENG-1", "acc-1")
    client.transition_issue("ENG-1", "31")

    assert session.calls[0]["method"] == "PUT"
    assert session.calls[0]["json"] == {"accountId": "acc-1"}
    assert session.calls[1]["json"] == {"transition": {"id": "31"}}


def test_retryable_errors_back_off_then_succeed() -> None:
    sleeps: list[float] = []
    session = FakeSession(
        [
            FakeResponse(429, {"errorMessages": ["Rate limit exceeded"]}),
            requests.ConnectionError("reset by peer"),
            FakeResponse(204, None),
        ]
    )

    _client(session, sleeps).assign_issue("ENG-1", "acc-1")

    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_retry_exhaustion_raises_last_error() -> None:
    sleeps: list[float] = []
    session = FakeSession([FakeResponse(503, {}), FakeResponse(503, {}), FakeResponse(503, {})])

    with pytest.raises(RetryableTrackerError) as excinfo:
        _client(session, sleeps).assign_issue("ENG-1", "acc-1")

    assert excinfo.value.reason_code == "tracker_503"
    assert excinfo.value.status_code == 503
    assert len(sleeps) == 2


def test_client_errors_are_not_retried() -> None:
    session = FakeSession([FakeResponse(404, {"errorMessages": ["Issue does not exist"]})])

    with pytest.raises(TrackerRequestError) as excinfo:
        _client(session).assign_issue("ENG-404", "acc-1")

    assert not isinstance(excinfo.value, RetryableTrackerError)
    assert excinfo.value.reason_code == "tracker_404"
    assert str(excinfo.value) == "Issue does not exist"
    assert len(session.calls) == 1


def test_list_active_issues_scopes_to_project_and_maps_fields() -> None:
    session = FakeSession(
        [
            FakeResponse(
                200,
                {
                    "issues": [
                        {
                            "key": "ENG-7",
                            "fields": {
                                "summary": "Parser bug",
                                "status": {
                                    "name": "In Progress",
                                    "statusCategory": {"key": "indeterminate"},
                                },
                                "issuetype": {"name": "Bug"},
                                "priority": {"name": "High"},
                                "assignee": {"accountId": "acc-1", "displayName": "Ada"},
                                "labels": ["python"],
                                "updated": "2024-06-01T10:00:00.000+0000",
                            },
                        }
                    ]
                },
            )
        ]
    )

    issues = _client(session).list_active_issues(max_results=25)

    request_body = session.calls[0]["json"]
    assert request_body["jql"] == "project = ENG AND statusCategory != Done ORDER BY updated DESC"
    assert request_body["maxResults"] == 25
    assert len(issues) == 1
    issue = issues[0]
    assert issue.key == "ENG-7"
    assert issue.issue_type == "bug"
    assert issue.priority == "high"
    assert issue.assignee_account_id == "acc-1"
    assert issue.labels == ["python"]
