"""Provider interface and normalized request/response contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class InsightRequest:
    """Normalized request independent of vendor-specific APIs."""

    system: str
    prompt: str
    facts: dict[str, Any] = field(default_factory=dict)
    max_tokens: int = 1024


@dataclass(frozen=True)
class InsightResponse:
    output: dict[str, Any]
    model: str
    provider: str
    raw_text: str = ""

    @property
    def analysis(self) -> str | None:
        value = self.output.get("analysis")
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()


class TextInsightProvider(Protocol):
    """Returns a short natural-language summary; may raise or time out."""

    name: str

    def run(self, request: InsightRequest) -> InsightResponse:
        """Execute a normalized request and return normalized output."""
