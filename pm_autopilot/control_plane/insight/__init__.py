"""Text-insight providers for sprint trajectory summaries."""

from pm_autopilot.control_plane.insight.anthropic import AnthropicInsightProvider
from pm_autopilot.control_plane.insight.base import (
    InsightRequest,
    InsightResponse,
    TextInsightProvider,
)
from pm_autopilot.control_plane.insight.local import LocalInsightProvider
from pm_autopilot.control_plane.insight.registry import build_insight_provider

__all__ = [
    "AnthropicInsightProvider",
    "InsightRequest",
    "InsightResponse",
    "LocalInsightProvider",
    "TextInsightProvider",
    "build_insight_provider",
]
