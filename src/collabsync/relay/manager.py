"""Connection and subscription bookkeeping for the relay server."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import WebSocket

from collabsync.models.comment import Comment
from collabsync.models.envelope import Envelope

logger = logging.getLogger(__name__)


class RelayManager:
    """Tracks connected users, what they subscribe to, and who wrote which comment."""

    def __init__(self):
        # user_id -> {"websocket": WebSocket, "display_name": str, "connected_at": str}
        self.active_connections: dict[str, dict] = {}
        # resource_id -> subscribed user ids
        self.subscriptions: dict[str, set[str]] = {}
        # comment_id -> {"resource_id": str, "author_id": str}
        self.comment_index: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str, display_name: str | None = None):
        """Accept a connection, replacing any previous one for the same user."""
        await websocket.accept()

        async with self._lock:
            previous = self.active_connections.get(user_id)
            if previous is not None:
                try:
                    await previous["websocket"].close()
                except Exception as e:
                    logger.debug("Failed to close old WebSocket for user %s: %s", user_id, e)

            self.active_connections[user_id] = {
                "websocket": websocket,
                "display_name": display_name or user_id,
                "connected_at": datetime.now(timezone.utc).isoformat(),
            }

    async def disconnect(self, user_id: str, websocket: WebSocket | None = None):
        """Forget a user's connection and subscriptions.

        When ``websocket`` is given, only that exact connection is removed, so a
        stale socket closing late cannot evict its replacement.
        """
        async with self._lock:
            current = self.active_connections.get(user_id)
            if current is None:
                return
            if websocket is not None and current["websocket"] is not websocket:
                return
            del self.active_connections[user_id]
            for resource_id in list(self.subscriptions):
                self.subscriptions[resource_id].discard(user_id)
                if not self.subscriptions[resource_id]:
                    del self.subscriptions[resource_id]

    def display_name(self, user_id: str) -> str:
        data = self.active_connections.get(user_id)
        return data["display_name"] if data else user_id

    def subscribe(self, user_id: str, resource_id: str) -> None:
        self.subscriptions.setdefault(resource_id, set()).add(user_id)

    def unsubscribe(self, user_id: str, resource_id: str) -> None:
        subscribers = self.subscriptions.get(resource_id)
        if subscribers is None:
            return
        subscribers.discard(user_id)
        if not subscribers:
            del self.subscriptions[resource_id]

    def subscribers(self, resource_id: str) -> list[str]:
        return sorted(self.subscriptions.get(resource_id, set()))

    def remember_comment(self, comment: Comment) -> None:
        self.comment_index[comment.id] = {
            "resource_id": comment.resource_id,
            "author_id": comment.author_id,
        }
        # Authors name themselves on every comment; keep the latest
        data = self.active_connections.get(comment.author_id)
        if data is not None:
            data["display_name"] = comment.author_name

    async def send_to_user(self, user_id: str, envelope: Envelope) -> bool:
        """Send to one user. Returns False if the user is not connected."""
        data = self.active_connections.get(user_id)
        if data is None:
            return False

        try:
            await data["websocket"].send_text(envelope.to_json())
        except Exception as e:
            logger.debug("WebSocket send_to_user failed for %s: %s", user_id, e)
            await self.disconnect(user_id, data["websocket"])
            return False
        return True

    async def broadcast(
        self,
        resource_id: str,
        envelope: Envelope,
        exclude_user: str | None = None,
    ):
        """Send to every subscriber of a resource."""
        for user_id in self.subscribers(resource_id):
            if exclude_user and user_id == exclude_user:
                continue
            await self.send_to_user(user_id, envelope)
