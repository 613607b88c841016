"""Jira Cloud REST API client implementation."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from pm_autopilot.control_plane.tracker.tracker_auth import TrackerAuth
from pm_autopilot.control_plane.tracker.tracker_client import (
    RetryableTrackerError,
    TrackerIssue,
    TrackerRequestError,
    TrackerTransition,
)


logger = logging.getLogger(__name__)

ISSUE_FIELDS = ["summary", "status", "issuetype", "priority", "assignee", "labels", "updated"]


class JiraAPIClient:
    def __init__(
        self,
        auth: TrackerAuth,
        session: requests.Session | None = None,
        max_attempts: int = 3,
        backoff_s: float = 1.0,
        timeout_s: float = 15,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not auth.is_configured:
            raise ValueError("tracker_not_configured")
        self.auth = auth
        self.base_url = (auth.base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_s = max(0.0, float(backoff_s))
        self.timeout_s = timeout_s
        self._sleep = sleep

    def get_transitions(self, external_key: str) -> list[TrackerTransition]:
        payload = self._request("GET", f"/rest/api/3/issue/{external_key}/transitions")
        rows = payload.get("transitions", []) if isinstance(payload, dict) else []
        transitions: list[TrackerTransition] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            target = row.get("to") or {}
            category = (target.get("statusCategory") or {}).get("key", "")
            transitions.append(
                TrackerTransition(
                    id=str(row.get("id", "")),
                    name=str(row.get("name", "")),
                    to_status=str(target.get("name", "")),
                    to_category=str(category),
                )
            )
        return transitions

    def transition_issue(self, external_key: str, transition_id: str) -> None:
        self._request(
            "POST",
            f"/rest/api/3/issue/{external_key}/transitions",
            json={"transition": {"id": transition_id}},
        )

    def assign_issue(self, external_key: str, account_id: str) -> None:
        self._request(
            "PUT",
            f"/rest/api/3/issue/{external_key}/assignee",
            json={"accountId": account_id},
        )

    def add_comment(self, external_key: str, text: str) -> None:
        self._request(
            "POST",
            f"/rest/api/3/issue/{external_key}/comment",
            json={"body": _adf_document(text)},
        )

    def list_active_issues(self, max_results: int = 100) -> list[TrackerIssue]:
        jql = "statusCategory != Done ORDER BY updated DESC"
        if self.auth.project_key:
            jql = f"project = {self.auth.project_key} AND {jql}"
        payload = self._request(
            "POST",
            "/rest/api/3/search/jql",
            json={"jql": jql, "maxResults": int(max_results), "fields": ISSUE_FIELDS},
        )
        rows = payload.get("issues", []) if isinstance(payload, dict) else []
        return [_issue_from_row(row) for row in rows if isinstance(row, dict) and row.get("key")]

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        last_error: TrackerRequestError | None = None
        for attempt in range(self.max_attempts):
            try:
                return self._send(method=method, path=path, json=json, params=params)
            except RetryableTrackerError as exc:
                last_error = exc
            if attempt < self.max_attempts - 1:
                delay = self.backoff_s * (2**attempt)
                logger.warning(
                    "Tracker %s %s failed (%s); retrying in %.1fs",
                    method,
                    path,
                    last_error.reason_code,
                    delay,
                )
                self._sleep(delay)
        assert last_error is not None
        raise last_error

    def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None,
        params: dict[str, str] | None,
    ) -> Any:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": self.auth.basic_header(),
        }
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise RetryableTrackerError(
                f"Tracker connection failed: {exc}", reason_code="tracker_connection_error"
            ) from exc

        if response.status_code == 429 or response.status_code in {500, 502, 503, 504}:
            raise RetryableTrackerError(
                _error_message(response),
                reason_code=_reason_code_for_status(response.status_code),
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise TrackerRequestError(
                _error_message(response),
                reason_code=_reason_code_for_status(response.status_code),
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


def _adf_document(text: str) -> dict[str, Any]:
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}],
    }


def _issue_from_row(row: dict[str, Any]) -> TrackerIssue:
    fields = row.get("fields") or {}
    status = fields.get("status") or {}
    assignee = fields.get("assignee") or {}
    labels = fields.get("labels") or []
    return TrackerIssue(
        key=str(row["key"]),
        summary=str(fields.get("summary") or row["key"]),
        status=str(status.get("name", "")),
        status_category=str((status.get("statusCategory") or {}).get("key", "")),
        issue_type=str((fields.get("issuetype") or {}).get("name", "task")).lower(),
        priority=str((fields.get("priority") or {}).get("name", "medium")).lower(),
        assignee_account_id=assignee.get("accountId"),
        assignee_name=assignee.get("displayName"),
        labels=[str(label) for label in labels],
        updated=fields.get("updated"),
    )


def _error_message(response: requests.Response) -> str:
    fallback = f"Tracker API error: {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if not isinstance(payload, dict):
        return fallback
    messages = payload.get("errorMessages") or []
    if messages:
        return ", ".join(str(message) for message in messages)
    errors = payload.get("errors") or {}
    if isinstance(errors, dict) and errors:
        return ", ".join(str(value) for value in errors.values())
    return fallback


def _reason_code_for_status(status: int) -> str:
    if status == 429:
        return "tracker_rate_limited"
    return f"tracker_{status}"
