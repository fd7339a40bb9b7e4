from __future__ import annotations

from datetime import datetime

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from teampulse.db import SessionLocal
from teampulse.models import User

from conftest import auth, make_user


def _ts(value: str) -> datetime:
  return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def _create(client: AsyncClient, token: str, **body) -> dict:
  res = await client.post("/tasks", json=body, headers=auth(token))
  assert res.status_code == 201, res.text
  return res.json()


@pytest.mark.anyio
async def test_requires_identity(client: AsyncClient) -> None:
  assert (await client.get("/tasks")).status_code == 401
  assert (await client.get("/tasks", headers=auth("tp_nope"))).status_code == 401
  assert (await client.get("/health")).json() == {"ok": True}
  assert (await client.get("/version")).status_code == 200


@pytest.mark.anyio
async def test_disabled_user_is_forbidden(client: AsyncClient) -> None:
  _, token = await make_user("student", active=False)
  res = await client.get("/tasks", headers=auth(token))
  assert res.status_code == 403
  assert res.json()["detail"] == "User disabled"


@pytest.mark.anyio
async def test_legacy_token_header_is_accepted(client: AsyncClient) -> None:
  _, token = await make_user("student")
  res = await client.get("/tasks", headers={"x-auth-token": token})
  assert res.status_code == 200
  assert res.json() == []


@pytest.mark.anyio
async def test_create_get_and_defaults(client: AsyncClient) -> None:
  s1, t1 = await make_user("student")
  s2, _ = await make_user("student")
  created = await _create(client, t1, title="Write notes", assignee=s2.id)
  assert created["status"] == "ToDo"
  assert created["priority"] == "Medium"
  assert created["assignee"] == s2.id
  assert created["createdBy"] == s1.id
  assert created["attachments"] == [] and created["voiceNotes"] == []

  got = await client.get(f"/tasks/{created['id']}", headers=auth(t1))
  assert got.status_code == 200
  assert got.json() == created


@pytest.mark.anyio
async def test_create_forbidden_returns_rule(client: AsyncClient) -> None:
  _, mentor_token = await make_user("mentor")
  coach, _ = await make_user("coach")
  res = await client.post("/tasks", json={"title": "Review", "assignee": coach.id}, headers=auth(mentor_token))
  assert res.status_code == 403
  detail = res.json()["detail"]
  assert detail["message"] == "Mentors can only assign tasks to students and fellow mentors"
  assert detail["actorRole"] == "mentor"
  assert detail["targetRole"] == "coach"
  assert (await client.get("/tasks", headers=auth(mentor_token))).json() == []


@pytest.mark.anyio
async def test_create_validation_errors_are_400_with_field(client: AsyncClient) -> None:
  s, token = await make_user("student")

  missing = await client.post("/tasks", json={"assignee": s.id}, headers=auth(token))
  assert missing.status_code == 400
  assert missing.json()["detail"]["field"] == "title"

  blank = await client.post("/tasks", json={"title": "   ", "assignee": s.id}, headers=auth(token))
  assert blank.status_code == 400
  assert blank.json()["detail"] == {"field": "title", "message": "Title is required"}

  bad_status = await client.post("/tasks", json={"title": "x", "assignee": s.id, "status": "Archived"}, headers=auth(token))
  assert bad_status.status_code == 400
  assert bad_status.json()["detail"]["field"] == "status"

  ghost = await client.post("/tasks", json={"title": "x", "assignee": "ghost"}, headers=auth(token))
  assert ghost.status_code == 400
  assert ghost.json()["detail"]["field"] == "assignee"


@pytest.mark.anyio
async def test_legacy_status_spelling_is_normalized(client: AsyncClient) -> None:
  s, token = await make_user("student")
  created = await _create(client, token, title="Old client", assignee=s.id, status="In Progress")
  assert created["status"] == "InProgress"
  moved = await client.put(f"/tasks/{created['id']}/move", json={"status": "To Do"}, headers=auth(token))
  assert moved.status_code == 200
  assert moved.json()["status"] == "ToDo"


@pytest.mark.anyio
async def test_update_semantics(client: AsyncClient) -> None:
  s, token = await make_user("student")
  created = await _create(
    client, token, title="Plan", assignee=s.id, description="keep me", deadline="2030-01-01T12:00:00Z", project="p-1"
  )
  res = await client.put(
    f"/tasks/{created['id']}", json={"title": "Plan v2", "status": "Review", "priority": "High"}, headers=auth(token)
  )
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["title"] == "Plan v2"
  assert body["description"] == "keep me"
  assert body["project"] == "p-1"
  assert body["deadline"].startswith("2030-01-01T12:00:00")
  assert _ts(body["updatedAt"]) > _ts(created["updatedAt"])

  cleared = await client.put(
    f"/tasks/{created['id']}",
    json={"title": "Plan v2", "status": "Review", "priority": "High", "description": "", "deadline": None},
    headers=auth(token),
  )
  assert cleared.json()["description"] == ""
  assert cleared.json()["deadline"] is None

  incomplete = await client.put(f"/tasks/{created['id']}", json={"title": "x"}, headers=auth(token))
  assert incomplete.status_code == 400

  missing = await client.put("/tasks/nope", json={"title": "x", "status": "Done", "priority": "Low"}, headers=auth(token))
  assert missing.status_code == 404
  assert missing.json()["detail"] == "Task not found"


@pytest.mark.anyio
async def test_naive_deadline_is_stored_as_utc(client: AsyncClient) -> None:
  s, token = await make_user("student")
  created = await _create(client, token, title="Due", assignee=s.id, deadline="2030-03-04T05:06:07")
  assert created["deadline"].startswith("2030-03-04T05:06:07")
  assert created["deadline"].endswith(("Z", "+00:00"))


@pytest.mark.anyio
async def test_move_and_delete(client: AsyncClient) -> None:
  coach, coach_token = await make_user("coach")
  _, student_token = await make_user("student")
  created = await _create(client, coach_token, title="Ship", assignee=coach.id)

  moved = await client.put(f"/tasks/{created['id']}/move", json={"status": "Done"}, headers=auth(student_token))
  assert moved.status_code == 200
  assert moved.json()["status"] == "Done"

  bad = await client.put(f"/tasks/{created['id']}/move", json={"status": "Blocked"}, headers=auth(student_token))
  assert bad.status_code == 400

  gone = await client.put("/tasks/nope/move", json={"status": "Done"}, headers=auth(student_token))
  assert gone.status_code == 404

  deleted = await client.delete(f"/tasks/{created['id']}", headers=auth(student_token))
  assert deleted.status_code == 200
  assert deleted.json() == {"message": "Task deleted"}
  again = await client.delete(f"/tasks/{created['id']}", headers=auth(student_token))
  assert again.status_code == 404
  assert (await client.get(f"/tasks/{created['id']}", headers=auth(student_token))).status_code == 404


@pytest.mark.anyio
async def test_status_filter_returns_one_column_newest_first(client: AsyncClient) -> None:
  s, token = await make_user("student")
  a = await _create(client, token, title="a", assignee=s.id)
  b = await _create(client, token, title="b", assignee=s.id, status="Review")
  c = await _create(client, token, title="c", assignee=s.id)
  await _create(client, token, title="d", assignee=s.id, status="Done")

  res = await client.get("/tasks", params={"status": "ToDo"}, headers=auth(token))
  assert res.status_code == 200
  assert [t["id"] for t in res.json()] == [c["id"], a["id"]]
  assert all(t["status"] == "ToDo" for t in res.json())

  review = await client.get("/tasks", params={"status": "Review"}, headers=auth(token))
  assert [t["id"] for t in review.json()] == [b["id"]]

  bad = await client.get("/tasks", params={"status": "Blocked"}, headers=auth(token))
  assert bad.status_code == 400
  assert bad.json()["detail"]["field"] == "status"


@pytest.mark.anyio
async def test_assignee_and_priority_filters(client: AsyncClient) -> None:
  s, token = await make_user("student")
  other, _ = await make_user("student")
  mine = await _create(client, token, title="mine", assignee=s.id, priority="High")
  await _create(client, token, title="theirs", assignee=other.id)

  res = await client.get("/tasks", params={"assignee": s.id}, headers=auth(token))
  assert [t["id"] for t in res.json()] == [mine["id"]]
  res = await client.get("/tasks", params={"priority": "High"}, headers=auth(token))
  assert [t["id"] for t in res.json()] == [mine["id"]]


@pytest.mark.anyio
async def test_board_endpoint(client: AsyncClient) -> None:
  s, token = await make_user("student")
  a = await _create(client, token, title="a", assignee=s.id)
  b = await _create(client, token, title="b", assignee=s.id, status="Done")
  res = await client.get("/board", headers=auth(token))
  assert res.status_code == 200
  columns = res.json()["columns"]
  assert [c["status"] for c in columns] == ["ToDo", "InProgress", "Review", "Done"]
  assert [t["id"] for t in columns[0]["tasks"]] == [a["id"]]
  assert [t["id"] for t in columns[3]["tasks"]] == [b["id"]]


@pytest.mark.anyio
async def test_attachments_and_voice_notes(client: AsyncClient) -> None:
  s, token = await make_user("mentor")
  task = await _create(client, token, title="With files", assignee=s.id)
  tid = task["id"]

  att = await client.post(
    f"/tasks/{tid}/attachments",
    json={"name": "plan.pdf", "url": "https://files.example/plan.pdf", "contentType": "application/pdf", "size": 2048},
    headers=auth(token),
  )
  assert att.status_code == 201, att.text
  att_id = att.json()["id"]

  note = await client.post(
    f"/tasks/{tid}/voice-notes",
    json={"url": "https://files.example/n.ogg", "durationSeconds": 3.5, "transcript": "hello"},
    headers=auth(token),
  )
  assert note.status_code == 201, note.text
  assert note.json()["uploadedBy"] == s.id

  body = (await client.get(f"/tasks/{tid}", headers=auth(token))).json()
  assert [a["id"] for a in body["attachments"]] == [att_id]
  assert body["voiceNotes"][0]["transcript"] == "hello"

  negative = await client.post(f"/tasks/{tid}/attachments", json={"name": "x", "url": "u", "size": -1}, headers=auth(token))
  assert negative.status_code == 400

  missing_task = await client.post("/tasks/nope/attachments", json={"name": "x", "url": "u"}, headers=auth(token))
  assert missing_task.status_code == 404

  removed = await client.delete(f"/tasks/{tid}/attachments/{att_id}", headers=auth(token))
  assert removed.status_code == 200
  assert (await client.delete(f"/tasks/{tid}/attachments/{att_id}", headers=auth(token))).status_code == 404

  removed_note = await client.delete(f"/tasks/{tid}/voice-notes/{note.json()['id']}", headers=auth(token))
  assert removed_note.status_code == 200
  body = (await client.get(f"/tasks/{tid}", headers=auth(token))).json()
  assert body["attachments"] == [] and body["voiceNotes"] == []


@pytest.mark.anyio
async def test_writes_publish_to_bus(app, client: AsyncClient) -> None:
  s, token = await make_user("student")
  sub = app.state.event_bus.subscribe()
  created = await _create(client, token, title="Live", assignee=s.id)
  await client.put(f"/tasks/{created['id']}/move", json={"status": "Review"}, headers=auth(token))
  await client.put(f"/tasks/{created['id']}/move", json={"status": "Nope"}, headers=auth(token))
  await client.delete(f"/tasks/{created['id']}", headers=auth(token))

  events = []
  while not sub.queue.empty():
    events.append(sub.get_nowait().to_message())
  assert [e["event"] for e in events] == ["taskCreated", "taskMoved", "taskDeleted"]
  assert events[1]["data"]["status"] == "Review"
  assert events[2]["data"] == {"id": created["id"]}


@pytest.mark.anyio
async def test_response_headers(client: AsyncClient) -> None:
  res = await client.get("/health", headers={"x-request-id": "abc123"})
  assert res.headers["x-request-id"] == "abc123"
  assert res.headers["x-content-type-options"] == "nosniff"


@pytest.mark.anyio
async def test_task_output_carries_user_summaries(app, client: AsyncClient) -> None:
  mentor, token = await make_user("mentor", name="Mia Mentor")
  student, _ = await make_user("student", name="Sam Student")
  sub = app.state.event_bus.subscribe()
  created = await _create(client, token, title="Pair up", assignee=student.id)

  assert created["assignee"] == student.id
  assert created["assigneeUser"] == {"id": student.id, "name": "Sam Student", "email": student.email, "role": "student"}
  assert created["createdByUser"]["name"] == "Mia Mentor"
  assert created["createdByUser"]["role"] == "mentor"

  event = sub.get_nowait().to_message()
  assert event["event"] == "taskCreated"
  assert event["data"]["assigneeUser"]["name"] == "Sam Student"
  assert event["data"]["createdByUser"]["name"] == "Mia Mentor"

  listed = (await client.get("/tasks", headers=auth(token))).json()
  assert listed[0]["assigneeUser"]["name"] == "Sam Student"
  board = (await client.get("/board", headers=auth(token))).json()
  assert board["columns"][0]["tasks"][0]["createdByUser"]["id"] == mentor.id


@pytest.mark.anyio
async def test_disabled_assignee_renders_without_summary(client: AsyncClient) -> None:
  s, token = await make_user("student")
  created = await _create(client, token, title="Solo", assignee=s.id)
  _, other_token = await make_user("coach")
  async with SessionLocal() as db:
    await db.execute(update(User).where(User.id == s.id).values(active=False))
    await db.commit()

  body = (await client.get(f"/tasks/{created['id']}", headers=auth(other_token))).json()
  assert body["assignee"] == s.id
  assert body["assigneeUser"] is None
  assert body["createdByUser"] is None


@pytest.mark.anyio
async def test_field_errors_win_over_assignment_rules(client: AsyncClient) -> None:
  _, mentor_token = await make_user("mentor")
  coach, _ = await make_user("coach")
  student, _ = await make_user("student")
  created = await _create(client, mentor_token, title="Keep", assignee=student.id)

  blank = await client.put(
    f"/tasks/{created['id']}",
    json={"title": "  ", "status": "ToDo", "priority": "Low", "assignee": coach.id},
    headers=auth(mentor_token),
  )
  assert blank.status_code == 400
  assert blank.json()["detail"] == {"field": "title", "message": "Title is required"}

  create_blank = await client.post("/tasks", json={"title": " ", "assignee": coach.id}, headers=auth(mentor_token))
  assert create_blank.status_code == 400
  assert create_blank.json()["detail"]["field"] == "title"
