"""
Tests for report aggregation and row loading.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from taskflow.services.report import (
    UNASSIGNED,
    ReportService,
    ReportTaskRow,
    iso_week,
    logged_time_report,
    task_completion_report,
    team_summary_report,
)
from taskflow.services.task import NewTask

UTC = timezone.utc
NOW = datetime(2024, 2, 1, tzinfo=UTC)
ALICE = uuid.uuid4()
BOB = uuid.uuid4()
NAMES = {ALICE: "Alice Lee", BOB: "Bob Chua"}


# ===================== LOGGED TIME =====================


def test_logged_time_rolls_subtasks_into_parent():
    rows = [
        ReportTaskRow(id=1, status="In Progress", logged_time=3600),
        ReportTaskRow(id=2, status="In Progress", logged_time=1800, parent_task_id=1),
    ]

    report = logged_time_report(rows, now=NOW)

    assert report["time_by_task"] == {1: 5400, 2: 1800}
    assert report["total_time"] == pytest.approx(1.5)


def test_logged_time_punctuality():
    deadline = datetime(2024, 1, 10, tzinfo=UTC)
    rows = [
        # Completed on time, 1h logged
        ReportTaskRow(
            id=1, status="Completed", logged_time=3600,
            deadline=deadline, updated_at=deadline - timedelta(hours=2),
        ),
        # Completed 12 hours late, 2h logged
        ReportTaskRow(
            id=2, status="Completed", logged_time=7200,
            deadline=deadline, updated_at=deadline + timedelta(hours=12),
        ),
        # Overdue, 30m logged
        ReportTaskRow(id=3, status="In Progress", logged_time=1800, deadline=deadline),
        ReportTaskRow(id=4, status="Blocked", logged_time=0),
    ]

    report = logged_time_report(rows, now=NOW)

    assert report["kind"] == "logged_time"
    assert report["completed_tasks"] == 2
    assert report["overdue_tasks"] == 1
    assert report["blocked_tasks"] == 1
    assert report["avg_time"] == pytest.approx(1.5)
    assert report["on_time_completion_rate"] == pytest.approx(0.5)
    assert report["total_delay_hours"] == pytest.approx(12)
    assert report["overdue_time"] == pytest.approx(0.5)
    assert report["incomplete_time"] == pytest.approx(0.5)


def test_logged_time_without_deadlines():
    rows = [ReportTaskRow(id=1, status="Completed", logged_time=60)]
    report = logged_time_report(rows, now=NOW)
    assert report["on_time_completion_rate"] == 0
    assert report["total_delay_hours"] == 0


def test_logged_time_empty():
    report = logged_time_report([], now=NOW)
    assert report["total_time"] == 0
    assert report["avg_time"] == 0
    assert report["time_by_task"] == {}


# ===================== TEAM SUMMARY =====================


def test_iso_week_uses_display_time():
    # Sunday 20:00 UTC is Monday 04:00 SGT
    week, start = iso_week(datetime(2024, 1, 7, 20, tzinfo=UTC))
    assert week == "2024-W02"
    assert start.isoformat() == "2024-01-08T00:00:00+08:00"


def test_team_summary_counts_per_assignee_and_week():
    monday = datetime(2024, 1, 8, 2, tzinfo=UTC)
    rows = [
        ReportTaskRow(id=1, status="Completed", assignee_ids=[ALICE, BOB], created_at=monday),
        ReportTaskRow(id=2, status="To Do", assignee_ids=[ALICE], created_at=monday),
        ReportTaskRow(
            id=3, status="Blocked", assignee_ids=[ALICE],
            created_at=monday + timedelta(days=7),
        ),
        ReportTaskRow(id=4, status="In Progress", assignee_ids=[], created_at=monday),
        ReportTaskRow(id=5, status="To Do", assignee_ids=[ALICE], created_at=None),
    ]

    report = team_summary_report(rows, NAMES)

    assert report["kind"] == "team_summary"
    assert report["total_tasks"] == 5
    assert report["total_users"] == 3

    week2 = [e for e in report["weekly_breakdown"] if e["week"] == "2024-W02"]
    assert [e["user_name"] for e in week2] == ["Alice Lee", "Bob Chua", UNASSIGNED]
    alice = week2[0]
    assert alice["user_id"] == str(ALICE)
    assert (alice["completed"], alice["todo"], alice["total"]) == (1, 1, 2)

    assert report["user_totals"][str(ALICE)]["total"] == 3
    assert report["user_totals"][str(ALICE)]["blocked"] == 1
    assert report["user_totals"][UNASSIGNED]["in_progress"] == 1
    assert report["week_totals"]["2024-W03"]["total"] == 1


# ===================== TASK COMPLETIONS =====================


def test_task_completion_per_creator():
    created = datetime(2024, 1, 1, tzinfo=UTC)
    deadline = datetime(2024, 1, 3, tzinfo=UTC)
    rows = [
        ReportTaskRow(
            id=1, status="Completed", creator_id=ALICE, project_id=1, logged_time=3600,
            created_at=created, updated_at=created + timedelta(hours=12), deadline=deadline,
        ),
        ReportTaskRow(
            id=2, status="Completed", creator_id=ALICE, project_id=1, logged_time=3600,
            created_at=created, updated_at=created + timedelta(hours=24 * 3), deadline=deadline,
        ),
        ReportTaskRow(id=3, status="In Progress", creator_id=ALICE, project_id=2),
        ReportTaskRow(id=4, status="To Do", creator_id=BOB, project_id=2),
    ]

    report = task_completion_report(rows, NAMES)

    assert report["kind"] == "task_completions"
    assert report["total_tasks"] == 4
    assert report["total_completed"] == 2
    assert report["total_in_progress"] == 1
    assert report["total_todo"] == 1
    assert report["overall_completion_rate"] == pytest.approx(0.5)
    assert report["completed_by_project"] == {1: 2}

    alice, bob = report["user_stats"]
    assert alice["user_name"] == "Alice Lee"
    assert alice["total_tasks"] == 3
    assert alice["completed_tasks"] == 2
    assert alice["completion_rate"] == pytest.approx(2 / 3)
    assert alice["avg_completion_time"] == pytest.approx(42)
    assert alice["on_time_completions"] == 1
    assert alice["late_completions"] == 1
    assert alice["on_time_rate"] == pytest.approx(0.5)
    assert alice["total_logged_time"] == pytest.approx(2)

    assert bob["user_name"] == "Bob Chua"
    assert bob["completion_rate"] == 0
    assert bob["avg_completion_time"] == 0


def test_task_completion_empty():
    report = task_completion_report([], NAMES)
    assert report["overall_completion_rate"] == 0
    assert report["user_stats"] == []


# ===================== LOADING =====================


async def _make_task(task_service, seed_data, project_id, **overrides):
    staff = seed_data["staff"]
    payload = NewTask(title="Report me", project_id=project_id, assignee_ids=[staff.id], **overrides)
    result = await task_service.create_task(payload, staff.id)
    return result.task_id


async def test_get_rows_filters_by_department_and_project(db_session, seed_data, task_service):
    alpha_task = await _make_task(task_service, seed_data, 1)
    beta_task = await _make_task(task_service, seed_data, 2)
    service = ReportService(db_session)

    assert [r.id for r in await service.get_rows()] == [alpha_task, beta_task]
    assert [r.id for r in await service.get_rows(department_ids=[4])] == [beta_task]
    assert [r.id for r in await service.get_rows(project_ids=[1])] == [alpha_task]
    assert await service.get_rows(project_ids=[1], department_ids=[4]) == []
    # API department has no projects of its own
    assert await service.get_rows(department_ids=[3]) == []


async def test_get_rows_skips_archived_and_out_of_range(db_session, seed_data, task_service):
    task_id = await _make_task(task_service, seed_data, 1)
    service = ReportService(db_session)
    tomorrow = datetime.now(UTC) + timedelta(days=1)

    assert await service.get_rows(start_date=tomorrow) == []
    [row] = await service.get_rows(end_date=tomorrow)
    assert row.assignee_ids == [seed_data["staff"].id]

    await task_service.archive_task(task_id, True, seed_data["manager"].id)
    assert await service.get_rows() == []


async def test_service_reports_resolve_names(db_session, seed_data, task_service):
    await _make_task(task_service, seed_data, 1)
    service = ReportService(db_session)

    team = await service.team_summary()
    assert team["weekly_breakdown"][0]["user_name"] == "Sam Tan"

    completions = await service.task_completions(project_ids=[1])
    assert completions["user_stats"][0]["user_name"] == "Sam Tan"

    logged = await service.logged_time()
    assert logged["total_time"] == 0
