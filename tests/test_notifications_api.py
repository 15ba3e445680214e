from __future__ import annotations

from conftest import bearer, create_class, signup
from synapse_backend.db import connect
from synapse_backend.notifications.crud import get_push_token


TOKEN_A = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"
TOKEN_B = "ExpoPushToken[bbbbbbbbbbbbbbbbbbbbbb]"


def _notifications(client, token, **params):
    r = client.get("/api/notifications", params=params, headers=bearer(token))
    assert r.status_code == 200
    return r.json()["data"]


def _enroll(client, student_token, class_id):
    r = client.post(f"/api/classes/{class_id}/enroll", headers=bearer(student_token))
    assert r.status_code == 201


def test_read_and_delete_are_scoped_to_recipient(client):
    alice, _ = signup(client, "alice@uni.edu")
    bob, _ = signup(client, "bob@uni.edu")

    [welcome] = _notifications(client, alice)
    assert welcome["title"] == "Welcome to Synapse!"
    assert welcome["is_read"] is False
    nid = welcome["notification_id"]

    r = client.put(f"/api/notifications/{nid}/read", headers=bearer(bob))
    assert r.status_code == 404
    assert r.json()["error"] == "notification_not_found"
    assert client.delete(f"/api/notifications/{nid}", headers=bearer(bob)).status_code == 404
    assert _notifications(client, alice)[0]["is_read"] is False

    r = client.put(f"/api/notifications/{nid}/read", headers=bearer(alice))
    assert r.status_code == 200
    assert _notifications(client, alice)[0]["is_read"] is True
    assert _notifications(client, alice, unread_only=True) == []

    assert client.delete(f"/api/notifications/{nid}", headers=bearer(alice)).status_code == 200
    assert _notifications(client, alice) == []
    assert len(_notifications(client, bob)) == 1


def test_unread_count_and_read_all(client):
    token, _ = signup(client, "carol@uni.edu")
    client.put("/api/auth/notification-preference", json={"enabled": False}, headers=bearer(token))
    client.put("/api/auth/notification-preference", json={"enabled": True}, headers=bearer(token))

    r = client.get("/api/notifications/unread-count", headers=bearer(token))
    assert r.json() == {"success": True, "data": {"unread_count": 3}}

    r = client.put("/api/notifications/read-all", headers=bearer(token))
    assert r.json()["data"]["updated"] == 3
    assert client.get("/api/notifications/unread-count", headers=bearer(token)).json()["data"]["unread_count"] == 0

    newest_first = [n["title"] for n in _notifications(client, token)]
    assert newest_first[0] == "Notifications Enabled"
    assert newest_first[-1] == "Welcome to Synapse!"


def test_register_push_token(client, cfg):
    token, user = signup(client, "dan@uni.edu")

    r = client.post("/api/notifications/register-token", json={"push_token": "not-a-token"}, headers=bearer(token))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_push_token"

    assert client.post(
        "/api/notifications/register-token", json={"push_token": TOKEN_A}, headers=bearer(token)
    ).status_code == 200
    # A new device replaces the old token.
    assert client.post(
        "/api/notifications/register-token", json={"push_token": TOKEN_B}, headers=bearer(token)
    ).status_code == 200
    with connect(cfg.DB_DSN) as conn:
        assert get_push_token(conn, user["user_id"]) == TOKEN_B

    r = client.delete("/api/notifications/register-token", headers=bearer(token))
    assert r.json()["data"]["removed"] is True
    with connect(cfg.DB_DSN) as conn:
        assert get_push_token(conn, user["user_id"]) is None


def test_log_activity(client):
    token, _ = signup(client, "erin@uni.edu")
    r = client.post(
        "/api/home/log-activity",
        json={"title": "Theme changed", "description": "Dark mode on", "activity_type": "settings", "source": "settings"},
        headers=bearer(token),
    )
    assert r.status_code == 201
    assert r.json()["data"]["type"] == "settings"

    r = client.post(
        "/api/home/log-activity",
        json={"title": "X", "activity_type": "info", "source": "somewhere"},
        headers=bearer(token),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_source"

    updates = client.get("/api/home/recent-updates", params={"limit": 1}, headers=bearer(token)).json()["data"]
    assert [u["title"] for u in updates] == ["Theme changed"]


def test_cancel_notifies_enrolled_students(client, hoc, push):
    hoc_token, _ = hoc
    cls = create_class(client, hoc_token)

    s1, _ = signup(client, "s1@uni.edu")
    s2, _ = signup(client, "s2@uni.edu")
    outsider, _ = signup(client, "s3@uni.edu")
    _enroll(client, s1, cls["class_id"])
    _enroll(client, s2, cls["class_id"])
    client.post("/api/notifications/register-token", json={"push_token": TOKEN_A}, headers=bearer(s1))
    # s2 has a device but turned notifications off.
    client.post("/api/notifications/register-token", json={"push_token": TOKEN_B}, headers=bearer(s2))
    client.put("/api/auth/notification-preference", json={"enabled": False}, headers=bearer(s2))

    r = client.put(
        f"/api/hoc/classes/{cls['class_id']}/cancel",
        json={"reason": "Public holiday"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["notified"] == 2
    assert data["push"] == {"attempted": 1, "sent": 1, "failed": 0, "tokens_removed": 0}

    assert [m.to for m in push.sent] == [TOKEN_A]
    assert push.sent[0].title == "Data Structures Class Cancelled"
    assert push.sent[0].data == {"type": "cancel", "class_id": cls["class_id"]}

    for student in (s1, s2):
        latest = _notifications(client, student)[0]
        assert latest["type"] == "cancel"
        assert latest["class_id"] == cls["class_id"]
        assert latest["message"] == "Your Data Structures class has been cancelled: Public holiday"
    assert all(n["type"] != "cancel" for n in _notifications(client, outsider))


def test_reschedule_drops_unregistered_device_tokens(client, cfg, hoc, push):
    hoc_token, _ = hoc
    cls = create_class(client, hoc_token)
    student, user = signup(client, "gone@uni.edu")
    _enroll(client, student, cls["class_id"])
    client.post("/api/notifications/register-token", json={"push_token": TOKEN_A}, headers=bearer(student))
    push.unregistered.add(TOKEN_A)

    r = client.put(
        f"/api/hoc/classes/{cls['class_id']}/reschedule",
        json={"start_time": "2030-05-01T15:00:00Z"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 200
    assert r.json()["data"]["push"] == {"attempted": 1, "sent": 0, "failed": 1, "tokens_removed": 1}
    assert "3:00 PM" in push.sent[0].body

    with connect(cfg.DB_DSN) as conn:
        assert get_push_token(conn, user["user_id"]) is None

    latest = _notifications(client, student)[0]
    assert latest["title"] == "Data Structures Class Rescheduled"
    assert latest["type"] == "reschedule"


def test_push_outage_does_not_undo_a_cancellation(client, hoc, push):
    hoc_token, _ = hoc
    cls = create_class(client, hoc_token)
    student, _ = signup(client, "s@uni.edu")
    _enroll(client, student, cls["class_id"])
    client.post("/api/notifications/register-token", json={"push_token": TOKEN_A}, headers=bearer(student))
    push.fail = True

    r = client.put(f"/api/hoc/classes/{cls['class_id']}/cancel", json={}, headers=bearer(hoc_token))
    assert r.status_code == 200
    assert r.json()["data"]["class"]["status"] == "cancelled"
    assert r.json()["data"]["push"]["error"] == "push_provider_unavailable"
    assert _notifications(client, student)[0]["type"] == "cancel"


def test_explicit_broadcast_reports_push_outage(client, hoc, push):
    hoc_token, _ = hoc
    cls = create_class(client, hoc_token)
    student, _ = signup(client, "s@uni.edu")
    _enroll(client, student, cls["class_id"])
    client.post("/api/notifications/register-token", json={"push_token": TOKEN_A}, headers=bearer(student))

    r = client.post(
        f"/api/hoc/classes/{cls['class_id']}/notify",
        json={"message": "Bring your laptops"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 200
    assert r.json()["data"]["notified"] == 1
    assert push.sent[-1].title == "Data Structures: Class Notification"

    push.fail = True
    r = client.post(
        f"/api/hoc/classes/{cls['class_id']}/notify",
        json={"title": "Room change", "message": "Now in Hall C"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 503
    assert r.json() == {"success": False, "error": "push_provider_unavailable"}

    r = client.post(
        f"/api/hoc/classes/{cls['class_id']}/notify",
        json={"message": "   "},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "message_required"


def _two_devices(client, hoc_token):
    cls = create_class(client, hoc_token)
    # Signed up first, so its device is pushed to first.
    gone, gone_user = signup(client, "gone@uni.edu")
    kept, kept_user = signup(client, "kept@uni.edu")
    for token, device in ((gone, TOKEN_A), (kept, TOKEN_B)):
        _enroll(client, token, cls["class_id"])
        client.post("/api/notifications/register-token", json={"push_token": device}, headers=bearer(token))
    return cls, gone_user, kept_user


def test_dead_tokens_from_a_partial_push_are_still_removed(client, cfg, hoc, push):
    hoc_token, _ = hoc
    cls, gone_user, kept_user = _two_devices(client, hoc_token)
    push.unregistered.add(TOKEN_A)
    push.fail_after = 1

    r = client.put(
        f"/api/hoc/classes/{cls['class_id']}/reschedule",
        json={"start_time": "2030-05-01T15:00:00Z"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 200
    assert r.json()["data"]["push"] == {
        "attempted": 2,
        "sent": 0,
        "failed": 2,
        "tokens_removed": 1,
        "error": "push_provider_unavailable",
    }
    assert [m.to for m in push.sent] == [TOKEN_A]

    with connect(cfg.DB_DSN) as conn:
        assert get_push_token(conn, gone_user["user_id"]) is None
        assert get_push_token(conn, kept_user["user_id"]) == TOKEN_B


def test_broadcast_outage_midway_still_removes_dead_tokens(client, cfg, hoc, push):
    hoc_token, _ = hoc
    cls, gone_user, kept_user = _two_devices(client, hoc_token)
    push.unregistered.add(TOKEN_A)
    push.fail_after = 1

    r = client.post(
        f"/api/hoc/classes/{cls['class_id']}/notify",
        json={"message": "Quiz moved to Friday"},
        headers=bearer(hoc_token),
    )
    assert r.status_code == 503
    assert r.json() == {"success": False, "error": "push_provider_unavailable"}

    with connect(cfg.DB_DSN) as conn:
        assert get_push_token(conn, gone_user["user_id"]) is None
        assert get_push_token(conn, kept_user["user_id"]) == TOKEN_B


def test_out_of_range_notification_ids(client):
    token, _ = signup(client, "range@uni.edu")
    huge = 2**64
    for r in (
        client.put(f"/api/notifications/{huge}/read", headers=bearer(token)),
        client.delete(f"/api/notifications/{huge}", headers=bearer(token)),
        client.put("/api/notifications/-1/read", headers=bearer(token)),
    ):
        assert r.status_code == 400
        assert r.json()["success"] is False
        assert r.json()["error"].startswith("notification_id")
