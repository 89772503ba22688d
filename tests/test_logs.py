from datetime import datetime, timedelta

from swifttiger.main import app
from swifttiger.models.models import ActionLog
from swifttiger.services.audit import action_stats, log_action

from conftest import PASSWORD, auth


def test_log_action_records_entry(db, admin):
    entry = log_action(db, "CREATE_JOB", "JOB", "abc", admin.id, {"name": "x"})
    assert entry.id is not None
    assert entry.details == {"name": "x"}
    assert entry.timestamp is not None


def test_logs_are_admin_only(client, manager):
    r = client.get("/api/logs", headers=auth(manager))
    assert r.status_code == 403


def test_list_logs_with_filters(client, db, admin, technician):
    client.post("/api/auth/login", json={"email": technician.email, "password": PASSWORD})
    client.post("/api/auth/login", json={"email": technician.email, "password": "bad-password"})
    r = client.get("/api/logs", params={"action": "login_failed"}, headers=auth(admin))
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    entry = body["items"][0]
    assert entry["resource"] == "AUTH"
    assert entry["details"]["path"] == "/api/auth/login"
    assert entry["details"]["method"] == "POST"

    r = client.get("/api/logs", params={"user_id": str(technician.id)}, headers=auth(admin))
    assert [i["action"] for i in r.json()["items"]] == ["USER_LOGIN"]
    assert r.json()["items"][0]["user_email"] == technician.email


def test_list_logs_date_range(client, db, admin):
    old = ActionLog(action="OLD", resource="JOB", timestamp=datetime(2023, 1, 1, 12, 0))
    new = ActionLog(action="NEW", resource="JOB", timestamp=datetime(2023, 1, 10, 12, 0))
    db.add_all([old, new])
    db.commit()
    r = client.get(
        "/api/logs",
        params={"start_date": "2023-01-05", "end_date": "2023-01-10", "resource": "job"},
        headers=auth(admin),
    )
    assert [i["action"] for i in r.json()["items"]] == ["NEW"]
    bad = client.get("/api/logs", params={"start_date": "yesterday"}, headers=auth(admin))
    assert bad.status_code == 400


def test_logs_have_no_update_or_delete(client, db, admin):
    entry = log_action(db, "CREATE_JOB", "JOB", None, admin.id)
    assert client.put(f"/api/logs/{entry.id}", json={"action": "X"}, headers=auth(admin)).status_code in (404, 405)
    assert client.delete(f"/api/logs/{entry.id}", headers=auth(admin)).status_code in (404, 405)
    assert db.query(ActionLog).filter(ActionLog.id == entry.id).count() == 1
    methods = {m for r in app.routes if getattr(r, "path", "").startswith("/api/logs") for m in getattr(r, "methods", set())}
    assert methods and methods <= {"GET", "HEAD"}


def test_log_stats(client, db, admin):
    log_action(db, "CREATE_JOB", "JOB", None, admin.id)
    log_action(db, "CREATE_JOB", "JOB", None, admin.id)
    db.add(ActionLog(action="ANCIENT", resource="JOB", timestamp=datetime.utcnow() - timedelta(days=90)))
    db.commit()
    stats = action_stats(db, days=30)
    assert stats["by_action"]["CREATE_JOB"] == 2
    assert "ANCIENT" not in stats["by_action"]
    assert stats["active_users"] == 1
    r = client.get("/api/logs/stats", headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["total"] >= 2
