"""Issue-tracker credential loading with safe handling."""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class TrackerAuth:
    base_url: str | None
    email: str | None
    api_token: str | None
    project_key: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)

    def basic_header(self) -> str:
        credentials = f"{self.email or ''}:{self.api_token or ''}".encode("utf-8")
        return f"Basic {base64.b64encode(credentials).decode('ascii')}"

    def redacted(self) -> dict[str, str]:
        return {
            "base_url": self.base_url or "unset",
            "email": self.email or "unset",
            "api_token": _redact_token(self.api_token),
            "project_key": self.project_key or "unset",
        }


def load_tracker_auth_from_env(env: dict[str, str] | None = None) -> TrackerAuth:
    env_map = os.environ if env is None else env

    base_url = _clean(env_map.get("PMAUTO_JIRA_BASE_URL"))
    return TrackerAuth(
        base_url=base_url.rstrip("/") if base_url else None,
        email=_clean(env_map.get("PMAUTO_JIRA_EMAIL")),
        api_token=_clean(env_map.get("PMAUTO_JIRA_API_TOKEN")),
        project_key=_clean(env_map.get("PMAUTO_JIRA_PROJECT_KEY")),
    )


def _clean(token: str | None) -> str | None:
    if token is None:
        return None
    value = token.strip()
    return value or None


def _redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
