"""Provider selection from settings and environment."""

from __future__ import annotations

import os

from pm_autopilot.control_plane.insight.anthropic import DEFAULT_MODEL, AnthropicInsightProvider
from pm_autopilot.control_plane.insight.base import TextInsightProvider
from pm_autopilot.control_plane.insight.local import LocalInsightProvider


def build_insight_provider(
    name: str,
    *,
    timeout_s: float = 20.0,
    env: dict[str, str] | None = None,
) -> TextInsightProvider | None:
    env_map = os.environ if env is None else env
    normalized = name.strip().lower()
    if normalized == "none":
        return None
    if normalized == "local":
        return LocalInsightProvider()
    if normalized == "anthropic":
        return AnthropicInsightProvider(
            api_key=(env_map.get("ANTHROPIC_API_KEY") or "").strip(),
            model=(env_map.get("PMAUTO_ANTHROPIC_MODEL") or "").strip()
            or DEFAULT_MODEL,
            timeout_s=timeout_s,
        )
    raise ValueError(f"unknown_insight_provider:{normalized}")
