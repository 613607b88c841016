"""Shared runtime settings and logging setup for local-first deployments."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
INSIGHT_PROVIDERS = {"local", "anthropic", "none"}


@dataclass(frozen=True)
class AutopilotSettings:
    """Filesystem locations and engine thresholds read from the environment."""

    data_dir: Path
    sqlite_path: Path
    log_level: str = "INFO"
    underutilization_days: int = 2
    inactivity_days: int = 3
    insight_provider: str = "local"
    insight_timeout_s: float = 20.0

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "AutopilotSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("PMAUTO_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("PMAUTO_SQLITE_PATH", str(data_dir / "control_plane" / "pm_autopilot.sqlite"))
        )
        insight_provider = (source.get("PMAUTO_INSIGHT_PROVIDER") or "local").strip().lower()
        if insight_provider not in INSIGHT_PROVIDERS:
            raise ValueError(f"unknown_insight_provider:{insight_provider}")
        return cls(
            data_dir=data_dir,
            sqlite_path=sqlite_path,
            log_level=(source.get("PMAUTO_LOG_LEVEL") or "INFO").strip().upper(),
            underutilization_days=_positive_int(source, "PMAUTO_UNDERUTILIZATION_DAYS", 2),
            inactivity_days=_positive_int(source, "PMAUTO_INACTIVITY_DAYS", 3),
            insight_provider=insight_provider,
            insight_timeout_s=float(source.get("PMAUTO_INSIGHT_TIMEOUT_S", "20") or 20),
        )

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


def _positive_int(source: Mapping[str, str], key: str, default: int) -> int:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"invalid_int_setting:{key}") from exc
    return max(1, value)


def get_settings(env: dict[str, str] | None = None) -> AutopilotSettings:
    """Build settings from environment variables and create the data directories."""

    settings = AutopilotSettings.from_env(env)
    settings.ensure_directories()
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI and scheduler processes."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
