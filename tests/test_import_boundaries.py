from __future__ import annotations

import ast
from pathlib import Path


def _imported_names(path: Path) -> list[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    names: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            names.append(node.module or "")
    return names


def test_control_plane_does_not_import_cli_layer() -> None:
    forbidden = ("typer", "pm_autopilot.cli")
    for path in Path("pm_autopilot/control_plane").rglob("*.py"):
        for name in _imported_names(path):
            assert not any(name == token or name.startswith(f"{token}.") for token in forbidden), (
                f"{path} imports CLI dependency: {name}"
            )


def test_check_modules_do_not_touch_tracker_http_client() -> None:
    for path in Path("pm_autopilot/control_plane/automation/check_modules").rglob("*.py"):
        for name in _imported_names(path):
            assert name not in {"requests", "pm_autopilot.control_plane.tracker.tracker_client_api"}, (
                f"{path} imports tracker transport: {name}"
            )
