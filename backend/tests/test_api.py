"""
HTTP-level tests for the task management API.
"""
import json
from datetime import datetime, timedelta, timezone

API = "/api/v1"


def _task_form(**overrides):
    data = {"title": "Prepare demo", "project_id": 1, "priority": 4}
    data.update(overrides)
    return {"taskData": json.dumps(data)}


async def _create_task(client, files=None, **overrides):
    response = await client.post(f"{API}/tasks", data=_task_form(**overrides), files=files)
    assert response.status_code == 201, response.text
    return response.json()["task_id"]


# ===================== HEALTH AND AUTH =====================


async def test_health(unauth_client):
    response = await unauth_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await unauth_client.get(f"{API}/health")
    assert response.status_code == 200


async def test_request_id_is_echoed(unauth_client):
    response = await unauth_client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    response = await unauth_client.get("/health")
    assert len(response.headers["X-Request-ID"]) == 32


async def test_requires_bearer_token(unauth_client):
    response = await unauth_client.get(f"{API}/tasks")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


async def test_rejects_invalid_token(unauth_client):
    response = await unauth_client.get(
        f"{API}/tasks", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


# ===================== TASKS =====================


async def test_create_task_with_attachment(client, seed_data, fake_storage):
    staff = seed_data["staff"]
    files = [("files", ("notes.txt", b"hello", "text/plain"))]

    response = await client.post(
        f"{API}/tasks",
        data=_task_form(assignee_ids=[str(staff.id)], tags=["demo"]),
        files=files,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert all(o["status"] == "ok" for o in body["outcomes"])
    assert len(fake_storage.uploads) == 1

    tasks = (await client.get(f"{API}/tasks")).json()
    [task] = tasks
    assert task["id"] == body["task_id"]
    assert task["tags"] == ["demo"]
    assert task["attachments"][0].endswith("-notes.txt")
    assert task["assignees"][0]["assignee_id"] == str(staff.id)


async def test_create_task_bad_payload(client):
    response = await client.post(f"{API}/tasks", data={"taskData": "{not json"})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid task data")


async def test_create_task_too_many_assignees(client, make_users):
    users = await make_users(6)

    response = await client.post(
        f"{API}/tasks", data=_task_form(assignee_ids=[str(u.id) for u in users])
    )

    assert response.status_code == 400
    assert response.json() == {
        "detail": "Cannot assign more than 5 users to a task",
        "code": "VALIDATION_ERROR",
    }


async def test_get_task(client):
    task_id = await _create_task(client, description="Walkthrough")

    response = await client.get(f"{API}/tasks/{task_id}")
    assert response.status_code == 200
    assert response.json()["description"] == "Walkthrough"

    response = await client.get(f"{API}/tasks/999")
    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


async def test_patch_task(client, acting_user, seed_data):
    task_id = await _create_task(client)

    response = await client.patch(
        f"{API}/tasks/{task_id}", json={"title": "Final demo", "project_id": 2}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["title"]["title"] == "Final demo"
    assert body["project"]["project_id"] == 2

    response = await client.patch(f"{API}/tasks/{task_id}", json={"priority": 11})
    assert response.status_code == 400
    assert response.json()["detail"] == "Priority must be a number between 1 and 10"

    response = await client.patch(f"{API}/tasks/{task_id}", json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "No fields to update"

    acting_user.id = seed_data["outsider"].id
    response = await client.patch(f"{API}/tasks/{task_id}", json={"title": "Mine now"})
    assert response.status_code == 403
    assert response.json()["detail"] == "You do not have permission to update this task"


async def test_patch_recurrence_date_only(client):
    task_id = await _create_task(client)
    later = (datetime.now(timezone.utc) + timedelta(days=10)).isoformat()

    response = await client.patch(f"{API}/tasks/{task_id}", json={"recurrence_date": later})
    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Recurrence interval is required when setting a recurrence date"
    )

    response = await client.patch(
        f"{API}/tasks/{task_id}", json={"recurrence_interval": 7, "recurrence_date": later}
    )
    assert response.status_code == 200

    even_later = (datetime.now(timezone.utc) + timedelta(days=20)).isoformat()
    response = await client.patch(f"{API}/tasks/{task_id}", json={"recurrence_date": even_later})
    assert response.status_code == 200
    assert response.json()["recurrence"]["recurrence_interval"] == 7


async def test_archive_requires_manager(client, acting_user, seed_data):
    task_id = await _create_task(client)

    response = await client.patch(f"{API}/tasks/{task_id}/archive", json={"is_archived": True})
    assert response.status_code == 403

    acting_user.id = seed_data["manager"].id
    response = await client.patch(f"{API}/tasks/{task_id}/archive", json={"is_archived": True})
    assert response.status_code == 200
    assert response.json()["message"] == "Task and 0 subtask(s) archived successfully"


async def test_subtask_and_comments(client, acting_user, seed_data):
    parent_id = await _create_task(client)

    response = await client.post(
        f"{API}/tasks/{parent_id}/subtasks", data=_task_form(title="Slides")
    )
    assert response.status_code == 201
    detail = (await client.get(f"{API}/tasks/{parent_id}")).json()
    assert [s["title"] for s in detail["subtasks"]] == ["Slides"]

    response = await client.post(f"{API}/tasks/{parent_id}/comments", json={"content": "Ready"})
    assert response.status_code == 201
    comment_id = response.json()["id"]

    response = await client.delete(f"{API}/tasks/comments/{comment_id}")
    assert response.status_code == 403

    acting_user.id = seed_data["admin"].id
    response = await client.delete(f"{API}/tasks/comments/{comment_id}")
    assert response.status_code == 204


async def test_tags_and_assignees(client, seed_data):
    teammate = seed_data["teammate"]
    task_id = await _create_task(client, assignee_ids=[str(seed_data["staff"].id)])

    response = await client.post(f"{API}/tasks/{task_id}/tags", json={"tag_name": "demo"})
    assert response.status_code == 201
    assert response.json() == {"tag": "demo"}

    response = await client.delete(f"{API}/tasks/{task_id}/tags/demo")
    assert response.status_code == 200

    response = await client.post(
        f"{API}/tasks/{task_id}/assignees", json={"assignee_id": str(teammate.id)}
    )
    assert response.status_code == 201
    assert response.json()["assignee_id"] == str(teammate.id)

    response = await client.delete(f"{API}/tasks/{task_id}/assignees/{teammate.id}")
    assert response.status_code == 403
    assert response.json()["detail"] == "Only managers can remove assignees from tasks"


async def test_attachment_endpoints(client, fake_storage):
    task_id = await _create_task(client)

    response = await client.post(
        f"{API}/tasks/{task_id}/attachments",
        files=[("files", ("plan.pdf", b"%PDF", "application/pdf"))],
    )
    assert response.status_code == 201
    attachment_id = response.json()["attachments"][0]["id"]

    response = await client.delete(f"{API}/tasks/{task_id}/attachments/{attachment_id}")
    assert response.status_code == 200
    assert response.json()["removed"] is True
    assert len(fake_storage.removes) == 1


async def test_attachment_storage_outage(client, fake_storage):
    task_id = await _create_task(client)
    fake_storage.fail_uploads = True

    response = await client.post(
        f"{API}/tasks/{task_id}/attachments",
        files=[("files", ("plan.pdf", b"%PDF", "application/pdf"))],
    )

    assert response.status_code == 502
    assert response.json()["detail"].startswith("Failed to upload any files")


async def test_calendar_export(client):
    await _create_task(client, title="Launch", deadline="2030-01-06T09:00:00")
    await _create_task(client, title="Someday")

    response = await client.get(f"{API}/tasks/export.ics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/calendar")
    assert "attachment" in response.headers["content-disposition"]
    body = response.text
    assert body.count("BEGIN:VEVENT") == 1
    assert "SUMMARY:Launch" in body
    assert "DTSTART;VALUE=DATE:20300106" in body


# ===================== SCHEDULE =====================


async def test_schedule(client, seed_data):
    staff = seed_data["staff"]
    soon = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
    task_id = await _create_task(client, deadline=soon, assignee_ids=[str(staff.id)])

    response = await client.get(f"{API}/schedule", params={"projectIds": "1,abc"})
    assert response.status_code == 200
    [row] = response.json()
    assert row["id"] == task_id
    assert row["assignees"][0]["first_name"] == "Sam"

    response = await client.patch(
        f"{API}/schedule", json={"task_id": task_id, "deadline": "2030-02-01T10:00:00"}
    )
    assert response.json() == {"ok": True}

    response = await client.get(f"{API}/schedule/staff", params={"projectIds": "1"})
    assert [s["first_name"] for s in response.json()] == ["Sam"]


# ===================== USERS, PROJECTS, REPORTS =====================


async def test_my_roles(client, acting_user, seed_data):
    assert (await client.get(f"{API}/users/me/roles")).json() == {"roles": ["staff"]}

    acting_user.id = seed_data["manager"].id
    assert (await client.get(f"{API}/users/me/roles")).json() == {"roles": ["manager", "staff"]}

    # No role rows at all still yields staff
    acting_user.id = seed_data["outsider"].id
    assert (await client.get(f"{API}/users/me/roles")).json() == {"roles": ["staff"]}


async def test_users_and_projects(client, acting_user, seed_data):
    users = (await client.get(f"{API}/users")).json()
    assert len(users) == 5

    projects = (await client.get(f"{API}/projects")).json()
    assert [p["name"] for p in projects] == ["Alpha", "Beta"]

    acting_user.id = seed_data["admin"].id
    assert (await client.get(f"{API}/projects/visible")).json() == [{"id": 2, "name": "Beta"}]
    assert (await client.get(f"{API}/users/me/departments")).json() == [{"id": 4, "name": "Sales"}]


async def test_reports_are_admin_only(client, acting_user, seed_data):
    response = await client.get(f"{API}/reports", params={"action": "time"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Forbidden: Admin access required"

    acting_user.id = seed_data["admin"].id
    for action, kind in (("time", "logged_time"), ("team", "team_summary"), ("task", "task_completions")):
        response = await client.get(f"{API}/reports", params={"action": action})
        assert response.status_code == 200
        assert response.json()["kind"] == kind


async def test_report_filter_options(client, acting_user, seed_data):
    acting_user.id = seed_data["manager"].id

    response = await client.get(f"{API}/reports", params={"action": "departments"})
    assert [d["id"] for d in response.json()] == [1, 2, 3]

    response = await client.get(
        f"{API}/reports", params={"action": "projects", "departmentIds": "2"}
    )
    assert response.json() == [{"id": 1, "name": "Alpha"}]

    response = await client.get(f"{API}/reports", params={"action": "bogus"})
    assert response.status_code == 422


# ===================== NOTIFICATIONS =====================


async def test_notification_inbox(client, acting_user, seed_data):
    await _create_task(client, assignee_ids=[str(seed_data["teammate"].id)])

    acting_user.id = seed_data["teammate"].id
    [notification] = (await client.get(f"{API}/notifications")).json()
    assert notification["type"] == "task_assigned"
    assert (await client.get(f"{API}/notifications/unread-count")).json() == {"count": 1}

    response = await client.post(f"{API}/notifications/{notification['id']}/read")
    assert response.json()["read"] is True
    assert (await client.post(f"{API}/notifications/read-all")).json() == {"updated": 0}

    response = await client.post(f"{API}/notifications/{notification['id']}/archive")
    assert response.json()["is_archived"] is True
    assert (await client.get(f"{API}/notifications")).json() == []

    acting_user.id = seed_data["staff"].id
    response = await client.post(f"{API}/notifications/{notification['id']}/read")
    assert response.status_code == 404
