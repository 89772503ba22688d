import json
import uuid
from typing import Optional, Tuple

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..db import SessionLocal
from ..logging import get_logger
from ..auth.security import user_from_token
from ..models.models import User
from ..schemas.locations import LocationReport
from ..services.realtime_hub import hub, publish_location
from .locations import location_to_dict, record_location


router = APIRouter(tags=["realtime"])
log = get_logger("swifttiger.realtime")


def _authenticate(token: str) -> Tuple[str, str]:
    # sessions live per call; an open socket must not pin a pooled connection
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
        return str(user.id), user.role
    finally:
        db.close()


def _save_location(user_id: str, report: LocationReport) -> Optional[dict]:
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == uuid.UUID(user_id), User.is_active == True).first()
        if user is None:
            return None
        loc = record_location(db, user, report)
        return location_to_dict(loc, user)
    finally:
        db.close()


def _parse_message(raw: str) -> dict:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("not an object")
    return data


async def _error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


@router.websocket("/ws")
async def ws_events(websocket: WebSocket, token: Optional[str] = None):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id, role = await run_in_threadpool(_authenticate, token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    await hub.connect(user_id, websocket, role)
    log.info("ws_connected", user_id=user_id, role=role)

    try:
        while True:
            raw = await websocket.receive_text()
            if raw and raw.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_json({"event": "pong", "data": {}})
                continue
            try:
                message = _parse_message(raw)
            except ValueError:
                await _error(websocket, "Messages must be JSON objects with an event name")
                continue
            event = message.get("event")
            if event == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
            elif event == "location:update":
                if role != "technician":
                    await _error(websocket, "Only technicians report locations")
                    continue
                try:
                    report = LocationReport.model_validate(message.get("data") or {})
                except ValidationError as e:
                    await _error(websocket, f"Invalid location: {e.errors()[0].get('msg')}")
                    continue
                data = await run_in_threadpool(_save_location, user_id, report)
                if data is None:
                    await websocket.close(code=4401)
                    return
                await publish_location(data)
            else:
                await _error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(user_id, websocket)
        log.info("ws_disconnected", user_id=user_id)
