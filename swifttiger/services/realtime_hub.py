import asyncio
from typing import Dict, Set, Any, Iterable, Optional

from fastapi import WebSocket


class RealtimeHub:
    def __init__(self) -> None:
        # user_id (str) -> set of WebSocket connections
        self._user_connections: Dict[str, Set[WebSocket]] = {}
        # user_id (str) -> role, for role-targeted events
        self._user_roles: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, ws: WebSocket, role: Optional[str] = None) -> None:
        async with self._lock:
            conns = self._user_connections.setdefault(user_id, set())
            conns.add(ws)
            if role:
                self._user_roles[user_id] = role

    async def disconnect(self, user_id: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._user_connections.get(user_id)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._user_connections.pop(user_id, None)
                    self._user_roles.pop(user_id, None)

    def connected_users(self) -> Set[str]:
        return set(self._user_connections.keys())

    async def _send(self, targets, data) -> None:
        for ws in targets:
            try:
                await ws.send_json(data)
            except Exception:
                # best-effort; a dead socket is removed when its receive loop ends
                pass

    async def send_to_user(self, user_id: str, event: str, payload: Any) -> None:
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = list(self._user_connections.get(user_id, set()))
        await self._send(targets, data)

    async def broadcast_to_users(self, user_ids: Iterable[str], event: str, payload: Any) -> None:
        user_ids = set(user_ids or ())
        if not user_ids:
            return
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = []
            for uid in user_ids:
                targets.extend(list(self._user_connections.get(uid, set())))
        await self._send(targets, data)

    async def broadcast_to_roles(self, roles: Iterable[str], event: str, payload: Any) -> None:
        wanted = {r.lower() for r in roles}
        async with self._lock:
            user_ids = [uid for uid, role in self._user_roles.items() if role.lower() in wanted]
        await self.broadcast_to_users(user_ids, event, payload)

    async def broadcast(self, event: str, payload: Any) -> None:
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = [ws for conns in self._user_connections.values() for ws in conns]
        await self._send(targets, data)


# Global singleton hub
hub = RealtimeHub()

STAFF_ROLES = ("admin", "manager", "dispatcher")


async def publish_job_update(job_payload: Dict[str, Any], action: str = "updated") -> None:
    """job:updated goes to office staff and to the assigned technician; dashboards refresh."""
    payload = {"action": action, "job": job_payload}
    await hub.broadcast_to_roles(STAFF_ROLES, "job:updated", payload)
    assignee = job_payload.get("assigned_to")
    if assignee:
        await hub.send_to_user(str(assignee), "job:updated", payload)
    await hub.broadcast_to_roles(STAFF_ROLES, "dashboard:refresh", {"reason": f"job_{action}"})


async def publish_location(location_payload: Dict[str, Any]) -> None:
    await hub.broadcast_to_roles(STAFF_ROLES, "location:updated", location_payload)


async def notify_user(user_id: str, title: str, message: str, **extra) -> None:
    payload = {"title": title, "message": message}
    payload.update(extra)
    await hub.send_to_user(str(user_id), "notification:new", payload)
