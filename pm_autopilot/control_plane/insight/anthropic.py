"""Anthropic Messages API provider."""

from __future__ import annotations

import json
from typing import Any

import requests

from pm_autopilot.control_plane.insight.base import InsightRequest, InsightResponse


DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicInsightProvider:
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = "https://api.anthropic.com",
        session: requests.Session | None = None,
        timeout_s: float = 20.0,
    ) -> None:
        if not api_key:
            raise ValueError("anthropic_api_key_missing")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def run(self, request: InsightRequest) -> InsightResponse:
        response = self.session.request(
            method="POST",
            url=f"{self.base_url}/v1/messages",
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": request.max_tokens,
                "system": request.system,
                "messages": [{"role": "user", "content": request.prompt}],
            },
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        body = response.json()
        raw_text = _first_text_block(body)
        return InsightResponse(
            output=_parse_output_json(raw_text),
            model=str(body.get("model", self.model)),
            provider=self.name,
            raw_text=raw_text,
        )


def _first_text_block(body: dict[str, Any]) -> str:
    for block in body.get("content", []) or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return str(block.get("text", ""))
    raise ValueError("anthropic_response_missing_text")


def _parse_output_json(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    parsed = json.loads(text.strip())
    if not isinstance(parsed, dict):
        raise ValueError("insight_output_not_object")
    return parsed
