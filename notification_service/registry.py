"""
Per-process registry of live notification sockets, keyed by user id.

Entries change only on socket lifecycle events: ``add`` when a socket
subscribes, ``remove`` when it closes. Everything runs on the service's
event loop, so no lock is taken. Sockets on other instances are reached
through the fan-out bridge, never through this registry.
"""
from typing import Dict, List
import logging

from starlette.websockets import WebSocket, WebSocketState

from common.messages import NotificationHistory, NotificationPush, NotificationRecord

logger = logging.getLogger(__name__)


class ConnectionRegistry:

    def __init__(self):
        self._connections: Dict[int, List[WebSocket]] = {}

    def add(self, user_id: int, websocket: WebSocket):
        sockets = self._connections.setdefault(user_id, [])
        if websocket not in sockets:
            sockets.append(websocket)
        logger.info(f"Socket subscribed for user {user_id} ({len(sockets)} on this instance)")

    def remove(self, user_id: int, websocket: WebSocket):
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self._connections[user_id]
            logger.info(f"Last socket for user {user_id} closed, entry removed")

    def connections(self, user_id: int) -> List[WebSocket]:
        return list(self._connections.get(user_id, ()))

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._connections

    def __len__(self):
        return len(self._connections)

    async def broadcast(self, user_id: int, notification: NotificationRecord) -> int:
        """Pushes the notification to every open socket of ``user_id``. Returns how many got it."""
        sockets = self.connections(user_id)
        if not sockets:
            return 0
        payload = NotificationPush(data=notification).model_dump(mode="json", by_alias=True)
        delivered = 0
        for websocket in sockets:
            if websocket.client_state != WebSocketState.CONNECTED:
                continue # Closed sockets are pruned by their close event
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Could not push notification {notification.id} to a socket of user {user_id}: {e}")
        logger.debug(f"Notification {notification.id} pushed to {delivered}/{len(sockets)} sockets of user {user_id}")
        return delivered


class Subscription:
    """A subscribed socket as seen by the registry.

    Between ``hold()`` and ``release()`` pushes are queued instead of sent, so
    a notification stored while the history is being loaded reaches the client
    after the history frame, and not at all if the history already has it.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._held: List[dict] | None = None

    @property
    def client_state(self) -> WebSocketState:
        return self.websocket.client_state

    def hold(self):
        if self._held is None:
            self._held = []

    async def send_json(self, payload: dict):
        if self._held is not None:
            self._held.append(payload)
            return
        await self.websocket.send_json(payload)

    async def release(self, history: NotificationHistory | None = None):
        """Sends ``history`` (if any), then whatever was pushed in the meantime."""
        seen = set()
        if history is not None:
            seen = {notification.id for notification in history.data}
            await self.websocket.send_json(history.model_dump(mode="json", by_alias=True))
        while self._held:
            payload = self._held.pop(0)
            if payload["data"]["id"] in seen:
                continue
            await self.websocket.send_json(payload)
        self._held = None
