import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from swifttiger.auth.security import create_access_token, create_refresh_token
from swifttiger.main import app
from swifttiger.models.models import TechnicianLocation

from conftest import auth


def _token(user):
    return create_access_token(str(user.id), user.role)


def _connect(client, user):
    ws = client.websocket_connect(f"/api/ws?token={_token(user)}")
    return ws


def _ready(ws):
    # the hub registers the socket right after accept; a ping round-trip waits for that
    ws.send_text("ping")
    assert ws.receive_json() == {"event": "pong", "data": {}}


def test_rejects_missing_and_bad_tokens(technician):
    client = TestClient(app)
    for url in ("/api/ws", "/api/ws?token=garbage", f"/api/ws?token={create_refresh_token(str(technician.id))}"):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url):
                pass
        assert exc.value.code == 4401


def test_json_ping(technician):
    with TestClient(app) as client:
        with _connect(client, technician) as ws:
            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"
            ws.send_json({"event": "dance"})
            assert ws.receive_json()["event"] == "error"
            ws.send_text("[1, 2]")
            assert ws.receive_json()["event"] == "error"


def test_location_update_reaches_staff(db, technician, dispatcher):
    with TestClient(app) as client:
        with _connect(client, dispatcher) as staff_ws, _connect(client, technician) as tech_ws:
            _ready(staff_ws)
            _ready(tech_ws)
            tech_ws.send_json({"event": "location:update", "data": {"latitude": 41.9, "longitude": -87.65, "speed": 12.5}})
            message = staff_ws.receive_json()
            assert message["event"] == "location:updated"
            assert message["data"]["technician_id"] == str(technician.id)
            assert message["data"]["latitude"] == 41.9
    assert db.query(TechnicianLocation).filter(TechnicianLocation.technician_id == technician.id).count() == 1


def test_staff_cannot_send_locations(dispatcher):
    with TestClient(app) as client:
        with _connect(client, dispatcher) as ws:
            ws.send_json({"event": "location:update", "data": {"latitude": 41.9, "longitude": -87.65}})
            assert ws.receive_json()["event"] == "error"


def test_invalid_location_payload(technician):
    with TestClient(app) as client:
        with _connect(client, technician) as ws:
            ws.send_json({"event": "location:update", "data": {"latitude": 123, "longitude": 0}})
            assert ws.receive_json()["event"] == "error"


def test_job_changes_are_pushed(customer, technician, dispatcher):
    with TestClient(app) as client:
        with _connect(client, dispatcher) as staff_ws, _connect(client, technician) as tech_ws:
            _ready(staff_ws)
            _ready(tech_ws)
            r = client.post(
                "/api/jobs",
                json={
                    "name": "Swap terminal",
                    "description": "Replacement",
                    "customer_id": str(customer.id),
                    "service_type": "Replacement",
                    "assigned_to": str(technician.id),
                },
                headers=auth(dispatcher),
            )
            assert r.status_code == 201

            staff_events = [staff_ws.receive_json()["event"] for _ in range(2)]
            assert staff_events == ["job:updated", "dashboard:refresh"]

            tech_events = [tech_ws.receive_json() for _ in range(2)]
            assert tech_events[0]["event"] == "job:updated"
            assert tech_events[0]["data"]["job"]["id"] == r.json()["id"]
            assert tech_events[1]["event"] == "notification:new"


def test_open_socket_holds_no_session(technician, monkeypatch):
    from swifttiger.routes import realtime

    opened = []
    factory = realtime.SessionLocal

    def tracking_session():
        session = factory()
        opened.append(session)
        return session

    monkeypatch.setattr(realtime, "SessionLocal", tracking_session)
    with TestClient(app) as client:
        with _connect(client, technician) as ws:
            _ready(ws)
            ws.send_json({"event": "location:update", "data": {"latitude": 41.9, "longitude": -87.65}})
            _ready(ws)
            assert len(opened) == 2
            assert not any(s.in_transaction() for s in opened)
