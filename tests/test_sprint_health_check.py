from datetime import datetime, timedelta, timezone

from pm_autopilot.control_plane.automation.check_modules import (
    CheckContext,
    SprintHealthCheckModule,
)
from pm_autopilot.control_plane.automation.check_modules.sprint_health_check import (
    compute_health_score,
    days_remaining,
)
from pm_autopilot.control_plane.automation.engine import AutomationEngine
from pm_autopilot.control_plane.automation.executor import ActionExecutor
from pm_autopilot.control_plane.db.db import AutomationDB
from pm_autopilot.control_plane.insight import InsightRequest, InsightResponse, LocalInsightProvider
from pm_autopilot.control_plane.models.work_state_contracts import Sprint, TeamMember, Ticket

NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


class ExplodingInsight:
    name = "exploding"

    def run(self, request: InsightRequest) -> InsightResponse:
        raise TimeoutError("insight timed out")


def _seed_sprint(db: AutomationDB) -> None:
    db.upsert_sprint(
        Sprint(
            id="s1",
            name="Sprint 14",
            state="active",
            start_date=NOW - timedelta(days=7),
            end_date=NOW + timedelta(days=3, hours=2),
        )
    )
    db.upsert_team_member(TeamMember(id="ada", name="Ada"))
    db.upsert_team_member(TeamMember(id="bo", name="Bo"))
    statuses = {
        "ada": ["done", "done", "done", "todo"],
        "bo": ["done", "done", "done", "in_progress", "in_progress", "todo"],
    }
    number = 0
    for member_id, member_statuses in statuses.items():
        for status in member_statuses:
            number += 1
            db.upsert_ticket(
                Ticket(
                    id=f"t{number}",
                    title=f"{member_id} task {number}",
                    status=status,
                    external_key=f"ENG-{number}",
                    assignee_id=member_id,
                    sprint_id="s1",
                )
            )


def _context(db: AutomationDB) -> CheckContext:
    return CheckContext(storage=db, run_id="run-1", now=NOW)


def _idle_team_with_backlog(db: AutomationDB, engineers: int, backlog: int) -> None:
    db.upsert_sprint(Sprint(id="s1", name="Sprint 14", state="active"))
    for number in range(1, engineers + 1):
        db.upsert_team_member(TeamMember(id=f"m{number}", name=f"Engineer {number}"))
    for number in range(1, backlog + 1):
        db.upsert_ticket(
            Ticket(id=f"b{number}", title=f"Backlog {number}", external_key=f"ENG-{90 + number}")
        )


def test_health_score_formula() -> None:
    assert compute_health_score(total=0, completed=0, in_progress=0, underloaded=0, engineers=0) == 50
    assert compute_health_score(total=10, completed=6, in_progress=2, underloaded=1, engineers=2) == 73
    assert compute_health_score(total=10, completed=10, in_progress=0, underloaded=0, engineers=2) == 100
    assert compute_health_score(total=10, completed=0, in_progress=0, underloaded=3, engineers=3) == 0


def test_health_score_stays_within_bounds_for_all_counts() -> None:
    for total in range(25):
        for completed in range(total + 1):
            for in_progress in range(total - completed + 1):
                for engineers in range(6):
                    for underloaded in range(engineers + 1):
                        score = compute_health_score(
                            total=total,
                            completed=completed,
                            in_progress=in_progress,
                            underloaded=underloaded,
                            engineers=engineers,
                        )
                        assert 0 <= score <= 100, (total, completed, in_progress, engineers)

    capped = compute_health_score(
        total=24, completed=23, in_progress=1, underloaded=0, engineers=1
    )
    assert capped == 100


def test_days_remaining_rounds_up_and_floors_at_zero() -> None:
    sprint = Sprint(id="s", name="S", end_date=NOW + timedelta(days=2, hours=1))
    ended = Sprint(id="s", name="S", end_date=NOW - timedelta(days=1))

    assert days_remaining(sprint, NOW) == 3
    assert days_remaining(ended, NOW) == 0
    assert days_remaining(Sprint(id="s", name="S"), NOW) is None


def test_underloaded_engineer_gets_sprint_gap_warning() -> None:
    db = AutomationDB()
    _seed_sprint(db)

    actions = SprintHealthCheckModule().run(_context(db))

    assert [a.type for a in actions] == ["sprint_gap_warning"]
    warning = actions[0]
    assert warning.confidence == 0.65
    assert warning.metadata["team_member_id"] == "ada"
    assert warning.metadata["remaining"] == 1

    snapshot = db.list_sprint_snapshots("s1")[0]
    assert snapshot.total_tickets == 10
    assert snapshot.completed_tickets == 6
    assert snapshot.in_progress_tickets == 2
    assert snapshot.todo_tickets == 2
    assert snapshot.health_score == 73
    assert snapshot.days_remaining == 4
    assert snapshot.ai_analysis is None
    assert {load.member_id for load in snapshot.per_engineer_data} == {"ada", "bo"}


def test_engineer_with_nothing_remaining_gets_higher_confidence() -> None:
    db = AutomationDB()
    db.upsert_sprint(Sprint(id="s1", name="Sprint 14", state="active"))
    db.upsert_team_member(TeamMember(id="cy", name="Cy"))
    db.upsert_ticket(Ticket(id="t1", title="Done", status="done", assignee_id="cy", sprint_id="s1"))

    actions = SprintHealthCheckModule().run(_context(db))

    assert actions[0].confidence == 0.85
    assert actions[0].metadata["remaining"] == 0


def test_assign_suggestions_pair_distinct_backlog_tickets() -> None:
    db = AutomationDB()
    db.upsert_sprint(Sprint(id="s1", name="Sprint 14", state="active"))
    db.upsert_team_member(TeamMember(id="ada", name="Ada"))
    db.upsert_team_member(TeamMember(id="bo", name="Bo"))
    db.upsert_ticket(Ticket(id="b1", title="Backlog one", external_key="ENG-91"))
    db.upsert_ticket(Ticket(id="b2", title="Backlog two", external_key="ENG-92"))
    db.upsert_ticket(Ticket(id="b3", title="Backlog three", external_key="ENG-93"))

    actions = SprintHealthCheckModule().run(_context(db))
    assigns = [a for a in actions if a.type == "assign_ticket"]

    assert len(assigns) == 2
    assert {a.metadata["team_member_id"] for a in assigns} == {"ada", "bo"}
    assert len({a.metadata["external_key"] for a in assigns}) == 2
    assert all(a.confidence == 0.55 for a in assigns)


def test_insight_summary_is_stored_on_snapshot() -> None:
    db = AutomationDB()
    _seed_sprint(db)

    SprintHealthCheckModule(insight=LocalInsightProvider()).run(_context(db))

    analysis = db.list_sprint_snapshots("s1")[0].ai_analysis
    assert analysis is not None
    assert "health 73/100" in analysis
    assert "Ada" in analysis


def test_insight_failure_leaves_analysis_empty_and_still_proposes() -> None:
    db = AutomationDB()
    _seed_sprint(db)

    actions = SprintHealthCheckModule(insight=ExplodingInsight()).run(_context(db))

    assert len(actions) == 1
    assert db.list_sprint_snapshots("s1")[0].ai_analysis is None


def test_no_active_sprint_proposes_nothing() -> None:
    db = AutomationDB()
    db.upsert_sprint(Sprint(id="s0", name="Old", state="closed"))

    assert SprintHealthCheckModule().run(_context(db)) == []
    assert db.list_sprint_snapshots() == []


def test_engine_run_succeeds_when_insight_collaborator_throws() -> None:
    db = AutomationDB()
    _seed_sprint(db)
    engine = AutomationEngine(
        storage=db,
        executor=ActionExecutor(storage=db, tracker=None),
        modules=[SprintHealthCheckModule(insight=ExplodingInsight())],
        clock=lambda: NOW,
    )

    outcome = engine.run_cycle()

    assert outcome.success is True
    assert outcome.run is not None
    assert outcome.run.errors == []
    assert db.list_sprint_snapshots("s1")[0].ai_analysis is None


def test_assign_suggestions_are_capped_at_three_per_cycle() -> None:
    db = AutomationDB()
    _idle_team_with_backlog(db, engineers=5, backlog=6)

    actions = SprintHealthCheckModule().run(_context(db))
    assigns = [a for a in actions if a.type == "assign_ticket"]

    assert len([a for a in actions if a.type == "sprint_gap_warning"]) == 5
    assert len(assigns) == 3
    assert len({a.metadata["team_member_id"] for a in assigns}) == 3
    assert len({a.metadata["external_key"] for a in assigns}) == 3


def test_short_backlog_limits_assign_suggestions() -> None:
    db = AutomationDB()
    _idle_team_with_backlog(db, engineers=3, backlog=1)

    actions = SprintHealthCheckModule().run(_context(db))
    assigns = [a for a in actions if a.type == "assign_ticket"]

    assert len(assigns) == 1
    assert assigns[0].metadata["external_key"] == "ENG-91"


def test_gap_warning_references_the_ticket_paired_with_that_engineer() -> None:
    db = AutomationDB()
    _idle_team_with_backlog(db, engineers=3, backlog=1)

    actions = SprintHealthCheckModule().run(_context(db))
    assign = next(a for a in actions if a.type == "assign_ticket")
    warnings = {
        a.metadata["team_member_id"]: a.metadata["external_key"]
        for a in actions
        if a.type == "sprint_gap_warning"
    }

    paired_member = assign.metadata["team_member_id"]
    assert warnings[paired_member] == "ENG-91"
    assert [key for member, key in warnings.items() if member != paired_member] == [None, None]
