"""SQLite persistence for automation state and the team work state it inspects."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pm_autopilot.control_plane.models.automation_contracts import (
    OPEN_ACTION_STATUSES,
    AutomationAction,
    AutomationConfig,
    AutomationRun,
    SprintSnapshot,
    StaleDetection,
    SyncFailure,
    parse_action_payload,
)
from pm_autopilot.control_plane.models.work_state_contracts import (
    TERMINAL_TICKET_STATUSES,
    AccountabilityFlag,
    Assignment,
    Commit,
    Pipeline,
    PMAlert,
    PullRequest,
    Sprint,
    StatusTransition,
    TeamMember,
    Ticket,
    TicketSuggestion,
)


_CONFIG_FIELDS = {"enabled", "interval_hours", "auto_approve_threshold", "auto_execute"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """Fixed-width UTC text so lexical order matches chronological order."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _new_id() -> str:
    return str(uuid.uuid4())


class AutomationDB:
    """Small SQLite wrapper implementing the automation storage contract."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        """Apply local-first SQLite settings for durability and concurrent reads."""

        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.execute("PRAGMA temp_store=MEMORY")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS automation_config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                enabled INTEGER NOT NULL DEFAULT 0,
                interval_hours REAL NOT NULL DEFAULT 1.0,
                auto_approve_threshold REAL NOT NULL DEFAULT 1.0,
                auto_execute INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            );

            INSERT OR IGNORE INTO automation_config (id) VALUES (1);

            CREATE TABLE IF NOT EXISTS automation_runs (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                checks_run_json TEXT NOT NULL DEFAULT '[]',
                actions_proposed INTEGER NOT NULL DEFAULT 0,
                actions_auto_approved INTEGER NOT NULL DEFAULT 0,
                errors_json TEXT NOT NULL DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS automation_actions (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                check_module TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                confidence REAL NOT NULL,
                payload_json TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                dedup_key TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                resolved_at TEXT,
                resolved_by TEXT,
                executed_at TEXT,
                error TEXT,
                FOREIGN KEY(run_id) REFERENCES automation_runs(id)
            );

            CREATE TABLE IF NOT EXISTS stale_detections (
                id TEXT PRIMARY KEY,
                external_key TEXT NOT NULL,
                detection_type TEXT NOT NULL,
                severity TEXT NOT NULL,
                evidence_json TEXT NOT NULL DEFAULT '{}',
                team_member_id TEXT,
                status TEXT NOT NULL DEFAULT 'open',
                created_at TEXT NOT NULL,
                resolved_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_stale_detections_one_open
                ON stale_detections(external_key, detection_type) WHERE status = 'open';

            CREATE TABLE IF NOT EXISTS sprint_snapshots (
                id TEXT PRIMARY KEY,
                sprint_id TEXT NOT NULL,
                snapshot_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_failures (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                external_key TEXT,
                error_message TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                resolved INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS team_members (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tickets (
                id TEXT PRIMARY KEY,
                external_key TEXT UNIQUE,
                status TEXT NOT NULL,
                assignee_id TEXT,
                sprint_id TEXT,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS status_history (
                id TEXT PRIMARY KEY,
                external_key TEXT NOT NULL,
                old_status TEXT,
                new_status TEXT NOT NULL,
                changed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pull_requests (
                id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                created_at TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS commits (
                id TEXT PRIMARY KEY,
                team_member_id TEXT,
                committed_at TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pipelines (
                id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                completed_at TEXT,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sprints (
                id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS assignments (
                id TEXT PRIMARY KEY,
                assignee_id TEXT NOT NULL,
                ticket_id TEXT,
                external_key TEXT,
                assigned_by TEXT NOT NULL DEFAULT 'pm',
                assigned_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS engineer_activity (
                team_member_id TEXT PRIMARY KEY,
                last_activity_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pm_alerts (
                id TEXT PRIMARY KEY,
                team_member_id TEXT NOT NULL,
                alert_type TEXT NOT NULL,
                severity TEXT NOT NULL,
                message TEXT NOT NULL,
                is_dismissed INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ticket_suggestions (
                id TEXT PRIMARY KEY,
                team_member_id TEXT NOT NULL,
                ticket_id TEXT,
                external_key TEXT,
                title TEXT NOT NULL,
                reasoning TEXT NOT NULL,
                skill_match_score REAL NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS accountability_flags (
                id TEXT PRIMARY KEY,
                team_member_id TEXT NOT NULL,
                flag_type TEXT NOT NULL,
                severity TEXT NOT NULL,
                message TEXT NOT NULL,
                external_key TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_automation_actions_status ON automation_actions(status);
            CREATE INDEX IF NOT EXISTS idx_automation_actions_dedup ON automation_actions(dedup_key);
            CREATE INDEX IF NOT EXISTS idx_status_history_key ON status_history(external_key);
            CREATE INDEX IF NOT EXISTS idx_commits_committed_at ON commits(committed_at);
            """
        )
        self.conn.commit()

    # automation config

    def get_automation_config(self) -> AutomationConfig:
        row = self.conn.execute("SELECT * FROM automation_config WHERE id = 1").fetchone()
        return AutomationConfig(
            enabled=bool(row["enabled"]),
            interval_hours=float(row["interval_hours"]),
            auto_approve_threshold=float(row["auto_approve_threshold"]),
            auto_execute=bool(row["auto_execute"]),
            updated_at=row["updated_at"],
        )

    def update_automation_config(self, **changes: Any) -> AutomationConfig:
        unknown = set(changes) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"unknown_config_field:{sorted(unknown)[0]}")
        current = self.get_automation_config()
        merged = current.model_copy(update={k: v for k, v in changes.items() if v is not None})
        validated = AutomationConfig.model_validate(
            {**merged.model_dump(), "updated_at": utc_now()}
        )
        self.conn.execute(
            """
            UPDATE automation_config
            SET enabled = ?, interval_hours = ?, auto_approve_threshold = ?,
                auto_execute = ?, updated_at = ?
            WHERE id = 1
            """,
            (
                int(validated.enabled),
                validated.interval_hours,
                validated.auto_approve_threshold,
                int(validated.auto_execute),
                to_db_time(validated.updated_at),
            ),
        )
        self.conn.commit()
        return self.get_automation_config()

    # runs

    def create_automation_run(
        self, run_id: str, checks_run: list[str], started_at: datetime
    ) -> AutomationRun:
        self.conn.execute(
            "INSERT INTO automation_runs (id, started_at, checks_run_json) VALUES (?, ?, ?)",
            (run_id, to_db_time(started_at), json.dumps(list(checks_run))),
        )
        self.conn.commit()
        run = self.get_automation_run(run_id)
        if run is None:
            raise RuntimeError("automation_run_missing_after_insert")
        return run

    def finalize_automation_run(
        self,
        run_id: str,
        *,
        status: str,
        finished_at: datetime,
        actions_proposed: int,
        actions_auto_approved: int,
        errors: list[str],
    ) -> AutomationRun:
        self.conn.execute(
            """
            UPDATE automation_runs
            SET status = ?, finished_at = ?, actions_proposed = ?,
                actions_auto_approved = ?, errors_json = ?
            WHERE id = ?
            """,
            (
                status,
                to_db_time(finished_at),
                int(actions_proposed),
                int(actions_auto_approved),
                json.dumps(list(errors)),
                run_id,
            ),
        )
        self.conn.commit()
        run = self.get_automation_run(run_id)
        if run is None:
            raise ValueError("unknown_run")
        return run

    def get_automation_run(self, run_id: str) -> AutomationRun | None:
        row = self.conn.execute("SELECT * FROM automation_runs WHERE id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def list_automation_runs(self, limit: int = 20) -> list[AutomationRun]:
        rows = self.conn.execute(
            "SELECT * FROM automation_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (max(1, int(limit)),),
        ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def _row_to_run(self, row: sqlite3.Row) -> AutomationRun:
        return AutomationRun(
            id=row["id"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            status=row["status"],
            checks_run=json.loads(row["checks_run_json"]),
            actions_proposed=row["actions_proposed"],
            actions_auto_approved=row["actions_auto_approved"],
            errors=json.loads(row["errors_json"]),
        )

    # actions

    def create_automation_action(self, action: AutomationAction) -> AutomationAction:
        self.conn.execute(
            """
            INSERT INTO automation_actions (
                id, run_id, action_type, check_module, title, description, confidence,
                payload_json, status, dedup_key, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                action.id,
                action.run_id,
                action.type,
                action.check_module,
                action.title,
                action.description,
                action.confidence,
                json.dumps(action.metadata, sort_keys=True),
                action.status,
                action.dedup_key,
                to_db_time(action.created_at),
            ),
        )
        self.conn.commit()
        stored = self.get_automation_action(action.id)
        if stored is None:
            raise RuntimeError("automation_action_missing_after_insert")
        return stored

    def get_automation_action(self, action_id: str) -> AutomationAction | None:
        row = self.conn.execute(
            "SELECT * FROM automation_actions WHERE id = ?", (action_id,)
        ).fetchone()
        return self._row_to_action(row) if row else None

    def list_automation_actions(
        self,
        status: str | None = None,
        action_type: str | None = None,
        run_id: str | None = None,
    ) -> list[AutomationAction]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("status", status), ("action_type", action_type), ("run_id", run_id)):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM automation_actions {where} ORDER BY created_at DESC, rowid DESC",
            params,
        ).fetchall()
        return [self._row_to_action(row) for row in rows]

    def find_open_action(self, dedup_key: str) -> AutomationAction | None:
        placeholders = ",".join("?" for _ in OPEN_ACTION_STATUSES)
        row = self.conn.execute(
            f"""
            SELECT * FROM automation_actions
            WHERE dedup_key = ? AND status IN ({placeholders})
            ORDER BY created_at DESC LIMIT 1
            """,
            (dedup_key, *sorted(OPEN_ACTION_STATUSES)),
        ).fetchone()
        return self._row_to_action(row) if row else None

    def update_automation_action_status(
        self,
        action_id: str,
        status: str,
        *,
        resolved_by: str | None = None,
        error: str | None = None,
        at: datetime | None = None,
    ) -> AutomationAction:
        stamp = to_db_time(at or utc_now())
        if status in {"executed", "failed"}:
            self.conn.execute(
                "UPDATE automation_actions SET status = ?, executed_at = ?, error = ? WHERE id = ?",
                (status, stamp, error, action_id),
            )
        else:
            self.conn.execute(
                """
                UPDATE automation_actions
                SET status = ?, resolved_at = ?, resolved_by = ?
                WHERE id = ?
                """,
                (status, stamp, resolved_by, action_id),
            )
        self.conn.commit()
        action = self.get_automation_action(action_id)
        if action is None:
            raise ValueError("unknown_action")
        return action

    def _row_to_action(self, row: sqlite3.Row) -> AutomationAction:
        return AutomationAction(
            id=row["id"],
            run_id=row["run_id"],
            check_module=row["check_module"],
            title=row["title"],
            description=row["description"],
            confidence=row["confidence"],
            payload=parse_action_payload(json.loads(row["payload_json"])),
            status=row["status"],
            dedup_key=row["dedup_key"],
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
            resolved_by=row["resolved_by"],
            executed_at=row["executed_at"],
            error=row["error"],
        )

    # stale detections

    def list_stale_detections(
        self,
        external_key: str | None = None,
        detection_type: str | None = None,
        status: str | None = None,
    ) -> list[StaleDetection]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("external_key", external_key),
            ("detection_type", detection_type),
            ("status", status),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM stale_detections {where} ORDER BY created_at DESC, rowid DESC",
            params,
        ).fetchall()
        return [self._row_to_detection(row) for row in rows]

    def create_stale_detection(
        self,
        *,
        external_key: str,
        detection_type: str,
        severity: str,
        evidence: dict[str, Any],
        team_member_id: str | None = None,
    ) -> StaleDetection:
        detection = StaleDetection(
            id=_new_id(),
            external_key=external_key,
            detection_type=detection_type,
            severity=severity,
            evidence=evidence,
            team_member_id=team_member_id,
            created_at=utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO stale_detections (
                id, external_key, detection_type, severity, evidence_json,
                team_member_id, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, 'open', ?)
            """,
            (
                detection.id,
                detection.external_key,
                detection.detection_type,
                detection.severity,
                json.dumps(detection.evidence, sort_keys=True, default=str),
                detection.team_member_id,
                to_db_time(detection.created_at),
            ),
        )
        self.conn.commit()
        return detection

    def resolve_stale_detection(self, detection_id: str) -> StaleDetection | None:
        self.conn.execute(
            "UPDATE stale_detections SET status = 'resolved', resolved_at = ? WHERE id = ?",
            (to_db_time(utc_now()), detection_id),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT * FROM stale_detections WHERE id = ?", (detection_id,)
        ).fetchone()
        return self._row_to_detection(row) if row else None

    def _row_to_detection(self, row: sqlite3.Row) -> StaleDetection:
        return StaleDetection(
            id=row["id"],
            external_key=row["external_key"],
            detection_type=row["detection_type"],
            severity=row["severity"],
            evidence=json.loads(row["evidence_json"]),
            team_member_id=row["team_member_id"],
            status=row["status"],
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
        )

    # sprint snapshots

    def create_sprint_snapshot(self, snapshot: SprintSnapshot) -> SprintSnapshot:
        stored = snapshot.model_copy(update={"created_at": snapshot.created_at or utc_now()})
        self.conn.execute(
            "INSERT INTO sprint_snapshots (id, sprint_id, snapshot_json, created_at) VALUES (?, ?, ?, ?)",
            (
                stored.id,
                stored.sprint_id,
                stored.model_dump_json(),
                to_db_time(stored.created_at),
            ),
        )
        self.conn.commit()
        return stored

    def list_sprint_snapshots(self, sprint_id: str | None = None) -> list[SprintSnapshot]:
        if sprint_id:
            rows = self.conn.execute(
                "SELECT snapshot_json FROM sprint_snapshots WHERE sprint_id = ? ORDER BY created_at DESC, rowid DESC",
                (sprint_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT snapshot_json FROM sprint_snapshots ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [SprintSnapshot.model_validate_json(row["snapshot_json"]) for row in rows]

    # sync failures

    def create_sync_failure(
        self,
        *,
        entity_type: str,
        entity_id: str,
        error_message: str,
        external_key: str | None = None,
    ) -> SyncFailure:
        failure = SyncFailure(
            id=_new_id(),
            entity_type=entity_type,
            entity_id=entity_id,
            external_key=external_key,
            error_message=error_message,
            created_at=utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO sync_failures (
                id, entity_type, entity_id, external_key, error_message, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                failure.id,
                failure.entity_type,
                failure.entity_id,
                failure.external_key,
                failure.error_message,
                to_db_time(failure.created_at),
            ),
        )
        self.conn.commit()
        return failure

    def list_sync_failures(self, entity_id: str | None = None) -> list[SyncFailure]:
        if entity_id:
            rows = self.conn.execute(
                "SELECT * FROM sync_failures WHERE entity_id = ? ORDER BY created_at DESC",
                (entity_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM sync_failures ORDER BY created_at DESC"
            ).fetchall()
        return [
            SyncFailure(
                id=row["id"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                external_key=row["external_key"],
                error_message=row["error_message"],
                retry_count=row["retry_count"],
                resolved=bool(row["resolved"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # team members and tickets

    def list_team_members(self) -> list[TeamMember]:
        rows = self.conn.execute("SELECT payload_json FROM team_members ORDER BY id").fetchall()
        return [TeamMember.model_validate_json(row["payload_json"]) for row in rows]

    def get_team_member(self, member_id: str) -> TeamMember | None:
        row = self.conn.execute(
            "SELECT payload_json FROM team_members WHERE id = ?", (member_id,)
        ).fetchone()
        return TeamMember.model_validate_json(row["payload_json"]) if row else None

    def upsert_team_member(self, member: TeamMember) -> TeamMember:
        self.conn.execute(
            """
            INSERT INTO team_members (id, payload_json) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET payload_json = excluded.payload_json
            """,
            (member.id, member.model_dump_json()),
        )
        self.conn.commit()
        return member

    def list_tickets(
        self,
        status: str | None = None,
        assignee_id: str | None = None,
        sprint_id: str | None = None,
    ) -> list[Ticket]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("status", status),
            ("assignee_id", assignee_id),
            ("sprint_id", sprint_id),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT payload_json FROM tickets {where} ORDER BY id", params
        ).fetchall()
        return [Ticket.model_validate_json(row["payload_json"]) for row in rows]

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        row = self.conn.execute(
            "SELECT payload_json FROM tickets WHERE id = ?", (ticket_id,)
        ).fetchone()
        return Ticket.model_validate_json(row["payload_json"]) if row else None

    def get_ticket_by_key(self, external_key: str) -> Ticket | None:
        row = self.conn.execute(
            "SELECT payload_json FROM tickets WHERE external_key = ?", (external_key,)
        ).fetchone()
        return Ticket.model_validate_json(row["payload_json"]) if row else None

    def list_unassigned_tickets(self) -> list[Ticket]:
        placeholders = ",".join("?" for _ in TERMINAL_TICKET_STATUSES)
        rows = self.conn.execute(
            f"""
            SELECT payload_json FROM tickets
            WHERE assignee_id IS NULL
              AND external_key IS NOT NULL
              AND status NOT IN ({placeholders})
            ORDER BY id
            """,
            tuple(sorted(TERMINAL_TICKET_STATUSES)),
        ).fetchall()
        return [Ticket.model_validate_json(row["payload_json"]) for row in rows]

    def upsert_ticket(self, ticket: Ticket) -> Ticket:
        self.conn.execute(
            """
            INSERT INTO tickets (id, external_key, status, assignee_id, sprint_id, payload_json)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              external_key = excluded.external_key,
              status = excluded.status,
              assignee_id = excluded.assignee_id,
              sprint_id = excluded.sprint_id,
              payload_json = excluded.payload_json
            """,
            (
                ticket.id,
                ticket.external_key,
                ticket.status,
                ticket.assignee_id,
                ticket.sprint_id,
                ticket.model_dump_json(),
            ),
        )
        self.conn.commit()
        return ticket

    def list_status_history(self, external_key: str) -> list[StatusTransition]:
        rows = self.conn.execute(
            """
            SELECT * FROM status_history WHERE external_key = ?
            ORDER BY changed_at DESC, rowid DESC
            """,
            (external_key,),
        ).fetchall()
        return [
            StatusTransition(
                id=row["id"],
                external_key=row["external_key"],
                old_status=row["old_status"],
                new_status=row["new_status"],
                changed_at=row["changed_at"],
            )
            for row in rows
        ]

    def record_status_transition(
        self,
        external_key: str,
        old_status: str | None,
        new_status: str,
        changed_at: datetime | None = None,
    ) -> StatusTransition:
        transition = StatusTransition(
            id=_new_id(),
            external_key=external_key,
            old_status=old_status,
            new_status=new_status,
            changed_at=changed_at or utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO status_history (id, external_key, old_status, new_status, changed_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                transition.id,
                transition.external_key,
                transition.old_status,
                transition.new_status,
                to_db_time(transition.changed_at),
            ),
        )
        self.conn.commit()
        return transition

    # source-control activity

    def list_pull_requests(self, state: str | None = None, limit: int = 100) -> list[PullRequest]:
        if state:
            rows = self.conn.execute(
                "SELECT payload_json FROM pull_requests WHERE state = ? ORDER BY created_at DESC LIMIT ?",
                (state, max(1, int(limit))),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT payload_json FROM pull_requests ORDER BY created_at DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        return [PullRequest.model_validate_json(row["payload_json"]) for row in rows]

    def upsert_pull_request(self, pull_request: PullRequest) -> PullRequest:
        self.conn.execute(
            """
            INSERT INTO pull_requests (id, state, created_at, payload_json) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              state = excluded.state,
              created_at = excluded.created_at,
              payload_json = excluded.payload_json
            """,
            (
                pull_request.id,
                pull_request.state,
                to_db_time(pull_request.created_at),
                pull_request.model_dump_json(),
            ),
        )
        self.conn.commit()
        return pull_request

    def list_commits(
        self,
        since: datetime | None = None,
        limit: int = 200,
        team_member_id: str | None = None,
    ) -> list[Commit]:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("committed_at >= ?")
            params.append(to_db_time(since))
        if team_member_id:
            clauses.append("team_member_id = ?")
            params.append(team_member_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(1, int(limit)))
        rows = self.conn.execute(
            f"SELECT payload_json FROM commits {where} ORDER BY committed_at DESC LIMIT ?",
            params,
        ).fetchall()
        return [Commit.model_validate_json(row["payload_json"]) for row in rows]

    def add_commit(self, commit: Commit) -> Commit:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO commits (id, team_member_id, committed_at, payload_json)
            VALUES (?, ?, ?, ?)
            """,
            (
                commit.id,
                commit.team_member_id,
                to_db_time(commit.committed_at),
                commit.model_dump_json(),
            ),
        )
        self.conn.commit()
        return commit

    def list_pipelines(
        self, state: str | None = None, since: datetime | None = None, limit: int = 50
    ) -> list[Pipeline]:
        clauses: list[str] = []
        params: list[Any] = []
        if state:
            clauses.append("state = ?")
            params.append(state)
        if since is not None:
            clauses.append("completed_at >= ?")
            params.append(to_db_time(since))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(1, int(limit)))
        rows = self.conn.execute(
            f"SELECT payload_json FROM pipelines {where} ORDER BY completed_at DESC LIMIT ?",
            params,
        ).fetchall()
        return [Pipeline.model_validate_json(row["payload_json"]) for row in rows]

    def add_pipeline(self, pipeline: Pipeline) -> Pipeline:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO pipelines (id, state, completed_at, payload_json)
            VALUES (?, ?, ?, ?)
            """,
            (
                pipeline.id,
                pipeline.state,
                to_db_time(pipeline.completed_at),
                pipeline.model_dump_json(),
            ),
        )
        self.conn.commit()
        return pipeline

    def get_active_sprint(self) -> Sprint | None:
        row = self.conn.execute(
            "SELECT payload_json FROM sprints WHERE state = 'active' ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return Sprint.model_validate_json(row["payload_json"]) if row else None

    def upsert_sprint(self, sprint: Sprint) -> Sprint:
        self.conn.execute(
            """
            INSERT INTO sprints (id, state, payload_json) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              state = excluded.state,
              payload_json = excluded.payload_json
            """,
            (sprint.id, sprint.state, sprint.model_dump_json()),
        )
        self.conn.commit()
        return sprint

    # workload tracking

    def create_assignment(
        self,
        *,
        assignee_id: str,
        ticket_id: str | None = None,
        external_key: str | None = None,
        assigned_by: str = "pm",
        assigned_at: datetime | None = None,
    ) -> Assignment:
        assignment = Assignment(
            id=_new_id(),
            assignee_id=assignee_id,
            ticket_id=ticket_id,
            external_key=external_key,
            assigned_by=assigned_by,
            assigned_at=assigned_at or utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO assignments (id, assignee_id, ticket_id, external_key, assigned_by, assigned_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                assignment.id,
                assignment.assignee_id,
                assignment.ticket_id,
                assignment.external_key,
                assignment.assigned_by,
                to_db_time(assignment.assigned_at),
            ),
        )
        self.conn.commit()
        return assignment

    def complete_assignment(
        self, assignment_id: str, completed_at: datetime | None = None
    ) -> Assignment | None:
        self.conn.execute(
            "UPDATE assignments SET completed_at = ? WHERE id = ? AND completed_at IS NULL",
            (to_db_time(completed_at or utc_now()), assignment_id),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT * FROM assignments WHERE id = ?", (assignment_id,)
        ).fetchone()
        return self._row_to_assignment(row) if row else None

    def get_last_assignment_for_member(self, member_id: str) -> Assignment | None:
        row = self.conn.execute(
            """
            SELECT * FROM assignments WHERE assignee_id = ?
            ORDER BY assigned_at DESC, rowid DESC LIMIT 1
            """,
            (member_id,),
        ).fetchone()
        return self._row_to_assignment(row) if row else None

    def list_active_assignments_for_member(self, member_id: str) -> list[Assignment]:
        rows = self.conn.execute(
            """
            SELECT * FROM assignments
            WHERE assignee_id = ? AND completed_at IS NULL
            ORDER BY assigned_at DESC
            """,
            (member_id,),
        ).fetchall()
        return [self._row_to_assignment(row) for row in rows]

    def _row_to_assignment(self, row: sqlite3.Row) -> Assignment:
        return Assignment(
            id=row["id"],
            assignee_id=row["assignee_id"],
            ticket_id=row["ticket_id"],
            external_key=row["external_key"],
            assigned_by=row["assigned_by"],
            assigned_at=row["assigned_at"],
            completed_at=row["completed_at"],
        )

    def record_engineer_activity(self, member_id: str, at: datetime | None = None) -> None:
        self.conn.execute(
            """
            INSERT INTO engineer_activity (team_member_id, last_activity_at) VALUES (?, ?)
            ON CONFLICT(team_member_id) DO UPDATE SET
              last_activity_at = MAX(last_activity_at, excluded.last_activity_at)
            """,
            (member_id, to_db_time(at or utc_now())),
        )
        self.conn.commit()

    def get_last_activity_for_member(self, member_id: str) -> datetime | None:
        row = self.conn.execute(
            "SELECT last_activity_at FROM engineer_activity WHERE team_member_id = ?",
            (member_id,),
        ).fetchone()
        if row is None:
            return None
        return datetime.strptime(row["last_activity_at"], "%Y-%m-%dT%H:%M:%S.%fZ").replace(
            tzinfo=timezone.utc
        )

    def has_active_alert_for_member(self, member_id: str, alert_type: str) -> bool:
        row = self.conn.execute(
            """
            SELECT 1 FROM pm_alerts
            WHERE team_member_id = ? AND alert_type = ? AND is_dismissed = 0
            LIMIT 1
            """,
            (member_id, alert_type),
        ).fetchone()
        return row is not None

    def create_pm_alert(
        self, *, team_member_id: str, alert_type: str, severity: str, message: str
    ) -> PMAlert:
        alert = PMAlert(
            id=_new_id(),
            team_member_id=team_member_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            created_at=utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO pm_alerts (id, team_member_id, alert_type, severity, message, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.team_member_id,
                alert.alert_type,
                alert.severity,
                alert.message,
                to_db_time(alert.created_at),
            ),
        )
        self.conn.commit()
        return alert

    def list_active_pm_alerts(self) -> list[PMAlert]:
        rows = self.conn.execute(
            "SELECT * FROM pm_alerts WHERE is_dismissed = 0 ORDER BY created_at DESC"
        ).fetchall()
        return [
            PMAlert(
                id=row["id"],
                team_member_id=row["team_member_id"],
                alert_type=row["alert_type"],
                severity=row["severity"],
                message=row["message"],
                is_dismissed=bool(row["is_dismissed"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def dismiss_alerts_for_member(self, member_id: str) -> int:
        cursor = self.conn.execute(
            "UPDATE pm_alerts SET is_dismissed = 1 WHERE team_member_id = ? AND is_dismissed = 0",
            (member_id,),
        )
        self.conn.commit()
        return int(cursor.rowcount)

    def create_suggestion(
        self,
        *,
        team_member_id: str,
        title: str,
        reasoning: str,
        skill_match_score: float,
        ticket_id: str | None = None,
        external_key: str | None = None,
    ) -> TicketSuggestion:
        suggestion = TicketSuggestion(
            id=_new_id(),
            team_member_id=team_member_id,
            ticket_id=ticket_id,
            external_key=external_key,
            title=title,
            reasoning=reasoning,
            skill_match_score=skill_match_score,
            created_at=utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO ticket_suggestions (
                id, team_member_id, ticket_id, external_key, title, reasoning,
                skill_match_score, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                suggestion.id,
                suggestion.team_member_id,
                suggestion.ticket_id,
                suggestion.external_key,
                suggestion.title,
                suggestion.reasoning,
                suggestion.skill_match_score,
                to_db_time(suggestion.created_at),
            ),
        )
        self.conn.commit()
        return suggestion

    def list_suggestions(
        self, team_member_id: str | None = None, status: str | None = None
    ) -> list[TicketSuggestion]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("team_member_id", team_member_id), ("status", status)):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM ticket_suggestions {where} ORDER BY skill_match_score DESC, rowid",
            params,
        ).fetchall()
        return [
            TicketSuggestion(
                id=row["id"],
                team_member_id=row["team_member_id"],
                ticket_id=row["ticket_id"],
                external_key=row["external_key"],
                title=row["title"],
                reasoning=row["reasoning"],
                skill_match_score=row["skill_match_score"],
                status=row["status"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def clear_pending_suggestions_for_member(self, member_id: str) -> int:
        cursor = self.conn.execute(
            "DELETE FROM ticket_suggestions WHERE team_member_id = ? AND status = 'pending'",
            (member_id,),
        )
        self.conn.commit()
        return int(cursor.rowcount)

    def list_accountability_flags(
        self,
        team_member_id: str | None = None,
        flag_type: str | None = None,
        status: str | None = None,
    ) -> list[AccountabilityFlag]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("team_member_id", team_member_id),
            ("flag_type", flag_type),
            ("status", status),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM accountability_flags {where} ORDER BY created_at DESC", params
        ).fetchall()
        return [
            AccountabilityFlag(
                id=row["id"],
                team_member_id=row["team_member_id"],
                flag_type=row["flag_type"],
                severity=row["severity"],
                message=row["message"],
                external_key=row["external_key"],
                status=row["status"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def create_accountability_flag(
        self,
        *,
        team_member_id: str,
        flag_type: str,
        severity: str,
        message: str,
        external_key: str | None = None,
    ) -> AccountabilityFlag:
        flag = AccountabilityFlag(
            id=_new_id(),
            team_member_id=team_member_id,
            flag_type=flag_type,
            severity=severity,
            message=message,
            external_key=external_key,
            created_at=utc_now(),
        )
        self.conn.execute(
            """
            INSERT INTO accountability_flags (
                id, team_member_id, flag_type, severity, message, external_key, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                flag.id,
                flag.team_member_id,
                flag.flag_type,
                flag.severity,
                flag.message,
                flag.external_key,
                to_db_time(flag.created_at),
            ),
        )
        self.conn.commit()
        return flag
