import uuid

from jose import jwt

from reminder_service.core.errors import PROBLEM_CONTENT_TYPE
from tests.conftest import reminder_body


def _create(client, body=None, key=None):
    return client.post(
        "/v1/reminders",
        json=body or reminder_body(),
        headers={"Idempotency-Key": key or str(uuid.uuid4())},
    )


def test_create_returns_201_with_location(client, app, publisher):
    r = _create(client)
    assert r.status_code == 201
    data = r.json()
    assert r.headers["location"] == f"/v1/reminders/{data['id']}"
    assert data["status"] == "pending"
    assert data["source"] == "manual"
    assert data["advanceMinutes"] == 30
    assert data["metadata"] == {"course": "CS101"}
    assert data["notifiedAt"] is None

    app.state.background.drain()
    created = publisher.of_type("reminder_created")
    assert [e["id"] for e in created] == [data["id"]]


def test_replay_returns_same_reminder_with_200(client):
    key = str(uuid.uuid4())
    first = _create(client, key=key)
    # Same canonical body with keys in another order
    replay = _create(client, body=dict(reversed(list(reminder_body().items()))), key=key)

    assert first.status_code == 201
    assert replay.status_code == 200
    assert replay.json() == first.json()

    listing = client.get("/v1/reminders", params={"userId": "user-1"}).json()
    assert listing["pagination"]["total"] == 1


def test_reused_key_with_different_body_conflicts(client):
    key = str(uuid.uuid4())
    _create(client, key=key)
    r = _create(client, body=reminder_body(title="Something else"), key=key)
    assert r.status_code == 409
    assert r.json()["title"] == "Idempotency Conflict"


def test_reused_key_with_extra_field_conflicts(client):
    key = str(uuid.uuid4())
    assert _create(client, key=key).status_code == 201
    r = _create(client, body=reminder_body(priority="high"), key=key)
    assert r.status_code == 409


def test_key_reusable_with_new_body_after_expiry(client, clock):
    key = str(uuid.uuid4())
    first = _create(client, key=key)
    clock.advance(hours=25)
    second = _create(client, body=reminder_body(title="Next term", dueAt="2030-01-03T12:00:00Z"), key=key)

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["id"] != first.json()["id"]
    assert second.json()["title"] == "Next term"


def test_missing_and_invalid_idempotency_key(client):
    missing = client.post("/v1/reminders", json=reminder_body())
    assert missing.status_code == 400
    assert missing.json()["errors"][0]["code"] == "MISSING_HEADER"

    invalid = _create(client, key="12345")
    assert invalid.status_code == 400
    assert invalid.json()["title"] == "Invalid Idempotency Key"


def test_advance_minutes_boundaries(client):
    assert _create(client, body=reminder_body(advanceMinutes=-1)).status_code == 400
    assert _create(client, body=reminder_body(advanceMinutes=10081)).status_code == 400
    assert _create(client, body=reminder_body(advanceMinutes=0)).status_code == 201
    assert _create(client, body=reminder_body(advanceMinutes=10080)).status_code == 201


def test_past_due_date_rejected_and_key_reusable(client):
    key = str(uuid.uuid4())
    r = _create(client, body=reminder_body(dueAt="2029-12-31T00:00:00Z"), key=key)
    assert r.status_code == 400
    assert r.json()["errors"] == [{"field": "dueAt", "message": "must be a future date", "code": "INVALID_DATE"}]
    # The failed attempt released the key
    assert _create(client, key=key).status_code == 201


def test_problem_details_shape(client):
    r = client.get("/v1/reminders/does-not-exist", headers={"X-Trace-Id": "trace-abc"})
    assert r.status_code == 404
    assert r.headers["content-type"].startswith(PROBLEM_CONTENT_TYPE)
    assert r.headers["x-trace-id"] == "trace-abc"
    problem = r.json()
    assert problem["type"] == "https://api.example.com/problems/not-found"
    assert problem["status"] == 404
    assert problem["instance"] == "/v1/reminders/does-not-exist"
    assert problem["traceId"] == "trace-abc"


def test_schema_validation_is_problem_json(client):
    r = _create(client, body={"title": "no user"})
    assert r.status_code == 400
    fields = {e["field"] for e in r.json()["errors"]}
    assert {"userId", "dueAt"} <= fields


def test_get_round_trip(client):
    created = _create(client).json()
    fetched = client.get(f"/v1/reminders/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == created


def test_other_users_reminder_is_not_found(client):
    created = _create(client).json()
    token = jwt.encode({"sub": "someone-else"}, "secret", algorithm="HS256")
    r = client.get(f"/v1/reminders/{created['id']}", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 404

    owner = jwt.encode({"sub": "user-1"}, "secret", algorithm="HS256")
    assert client.get(f"/v1/reminders/{created['id']}", headers={"Authorization": f"Bearer {owner}"}).status_code == 200


def test_patch_follows_lifecycle(client, app, publisher):
    rid = _create(client).json()["id"]

    assert client.patch(f"/v1/reminders/{rid}", json={"status": "scheduled"}).status_code == 200
    notified = client.patch(f"/v1/reminders/{rid}", json={"status": "notified"}).json()
    assert notified["notifiedAt"] is not None
    assert client.patch(f"/v1/reminders/{rid}", json={"status": "completed"}).json()["status"] == "completed"

    back = client.patch(f"/v1/reminders/{rid}", json={"status": "pending"})
    assert back.status_code == 409
    assert back.json()["title"] == "Invalid Transition"

    app.state.background.drain()
    assert len(publisher.of_type("reminder_updated")) == 3


def test_patch_fields_and_validation(client):
    rid = _create(client).json()["id"]

    r = client.patch(f"/v1/reminders/{rid}", json={"title": "Renamed", "advanceMinutes": 60})
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed"
    assert r.json()["advanceMinutes"] == 60

    assert client.patch(f"/v1/reminders/{rid}", json={}).status_code == 400
    assert client.patch(f"/v1/reminders/{rid}", json={"advanceMinutes": 10081}).status_code == 400
    assert client.patch(f"/v1/reminders/{rid}", json={"status": "bogus"}).status_code == 400
    assert client.patch("/v1/reminders/missing", json={"title": "x"}).status_code == 404


def test_delete_cancels_softly(client):
    rid = _create(client).json()["id"]

    assert client.delete(f"/v1/reminders/{rid}").status_code == 204
    assert client.get(f"/v1/reminders/{rid}").json()["status"] == "cancelled"
    # Cancelling again is a no-op
    assert client.delete(f"/v1/reminders/{rid}").status_code == 204
    assert client.delete("/v1/reminders/missing").status_code == 404


def test_delete_completed_conflicts(client):
    rid = _create(client).json()["id"]
    for status in ("scheduled", "notified", "completed"):
        client.patch(f"/v1/reminders/{rid}", json={"status": status})
    assert client.delete(f"/v1/reminders/{rid}").status_code == 409


def test_list_pagination_and_filters(client, clock):
    ids = []
    for i in range(5):
        ids.append(_create(client, body=reminder_body(title=f"r{i}")).json()["id"])
        clock.advance(seconds=1)
    _create(client, body=reminder_body(userId="user-2"))
    client.delete(f"/v1/reminders/{ids[0]}")

    page = client.get("/v1/reminders", params={"userId": "user-1", "page": 1, "limit": 2}).json()
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 5, "totalPages": 3}
    # Newest first
    assert [r["id"] for r in page["data"]] == [ids[4], ids[3]]

    cancelled = client.get("/v1/reminders", params={"userId": "user-1", "status": "cancelled"}).json()
    assert [r["id"] for r in cancelled["data"]] == [ids[0]]

    assert client.get("/v1/reminders", params={"limit": 101}).status_code == 400
    assert client.get("/v1/reminders", params={"page": 0}).status_code == 400


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
