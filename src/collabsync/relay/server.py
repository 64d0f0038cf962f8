"""Development relay server speaking the collabsync wire protocol.

Connect with: ws://host/ws?userId={user_id}[&token={token}][&userName={name}]

Client -> server:
    auth, ping, subscribe, unsubscribe,
    comment_add, comment_update, comment_delete, typing

Server -> client:
    pong, comment_added, comment_updated, comment_deleted,
    user_typing, notification, error

There is no persistence and no replay: clients that are offline miss
whatever was relayed while they were away.
"""

import logging
import uuid

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from collabsync.config import configure_logging
from collabsync.errors import ProtocolError
from collabsync.models.base import WireModel
from collabsync.models.comment import Comment
from collabsync.models.envelope import (
    AuthPayload,
    ClientMessageType,
    CommentDeletePayload,
    CommentUpdatePayload,
    Envelope,
    ServerMessageType,
    SubscriptionPayload,
    TypingPayload,
    UserTypingPayload,
)
from collabsync.models.notification import Notification, NotificationType
from collabsync.relay.manager import RelayManager

logger = logging.getLogger(__name__)

configure_logging()

# Payload schema per client message type; None means no payload is expected
_PAYLOAD_MODELS: dict[str, type[WireModel] | None] = {
    ClientMessageType.AUTH.value: AuthPayload,
    ClientMessageType.PING.value: None,
    ClientMessageType.SUBSCRIBE.value: SubscriptionPayload,
    ClientMessageType.UNSUBSCRIBE.value: SubscriptionPayload,
    ClientMessageType.COMMENT_ADD.value: Comment,
    ClientMessageType.COMMENT_UPDATE.value: CommentUpdatePayload,
    ClientMessageType.COMMENT_DELETE.value: CommentDeletePayload,
    ClientMessageType.TYPING.value: TypingPayload,
}


def _validate_message(raw: str) -> tuple[Envelope | None, WireModel | None, str | None]:
    """Parse an incoming frame.

    Returns (envelope, payload, error_string). On success error is None.
    """
    try:
        envelope = Envelope.from_json(raw)
    except ProtocolError as e:
        return None, None, str(e)

    if envelope.type not in _PAYLOAD_MODELS:
        return None, None, f"Unknown message type: {envelope.type}"

    model = _PAYLOAD_MODELS[envelope.type]
    if model is None:
        return envelope, None, None

    try:
        payload = model.model_validate(envelope.payload)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return None, None, f"Invalid payload for '{envelope.type}': {location}: {first['msg']}"

    return envelope, payload, None


def _error(message: str) -> Envelope:
    return Envelope.build(ServerMessageType.ERROR, {"message": message})


app = FastAPI(
    title="collabsync relay",
    description="Development relay for the collabsync comment sync protocol",
    version="0.1.0",
)

manager = RelayManager()


@app.get("/health")
async def health() -> dict:
    """Liveness plus connection counts."""
    return {
        "status": "ok",
        "connections": len(manager.active_connections),
        "subscriptions": len(manager.subscriptions),
        "comments": len(manager.comment_index),
    }


async def _notify(user_id: str, notification_type: NotificationType, comment: Comment, message: str):
    notification = Notification(
        id=f"notification_{uuid.uuid4().hex}",
        type=notification_type,
        comment_id=comment.id,
        resource_type=comment.resource_type.value,
        resource_id=comment.resource_id,
        from_user_id=comment.author_id,
        from_user_name=comment.author_name,
        to_user_id=user_id,
        message=message,
    )
    delivered = await manager.send_to_user(
        user_id, Envelope.build(ServerMessageType.NOTIFICATION, notification)
    )
    if not delivered:
        logger.debug("Notification for offline user %s dropped", user_id)


async def _handle_comment_add(user_id: str, comment: Comment):
    if comment.author_id != user_id:
        await manager.send_to_user(user_id, _error("authorId does not match connection"))
        return

    parent = manager.comment_index.get(comment.parent_id) if comment.parent_id else None
    manager.remember_comment(comment)
    await manager.broadcast(
        comment.resource_id, Envelope.build(ServerMessageType.COMMENT_ADDED, comment)
    )

    notified = {comment.author_id}
    for mentioned in comment.mentions:
        if mentioned in notified:
            continue
        notified.add(mentioned)
        await _notify(
            mentioned,
            NotificationType.MENTION,
            comment,
            f"{comment.author_name} mentioned you in a comment",
        )

    if parent is not None and parent["author_id"] not in notified:
        await _notify(
            parent["author_id"],
            NotificationType.REPLY,
            comment,
            f"{comment.author_name} replied to your comment",
        )


async def _handle_comment_change(user_id: str, message_type: str, payload: WireModel):
    known = manager.comment_index.get(payload.comment_id)
    if known is None:
        await manager.send_to_user(user_id, _error(f"Unknown comment: {payload.comment_id}"))
        return

    if message_type == ClientMessageType.COMMENT_UPDATE.value:
        outgoing = Envelope.build(ServerMessageType.COMMENT_UPDATED, payload)
    else:
        outgoing = Envelope.build(ServerMessageType.COMMENT_DELETED, payload)
    await manager.broadcast(known["resource_id"], outgoing)


@app.websocket("/ws")
async def relay_websocket(
    websocket: WebSocket,
    user_id: str = Query(..., alias="userId", min_length=1),
    token: str | None = Query(None),
    user_name: str | None = Query(None, alias="userName"),
):
    """Relay endpoint. Tokens are accepted but not verified."""
    await manager.connect(websocket, user_id, user_name)
    logger.info("WebSocket connected: user=%s token=%s", user_id, "yes" if token else "no")

    try:
        while True:
            data = await websocket.receive_text()

            envelope, payload, error = _validate_message(data)
            if error:
                await manager.send_to_user(user_id, _error(error))
                continue

            msg_type = envelope.type

            if msg_type == ClientMessageType.PING.value:
                await manager.send_to_user(user_id, Envelope.build(ServerMessageType.PONG))

            elif msg_type == ClientMessageType.AUTH.value:
                if payload.user_id != user_id:
                    logger.warning("Auth mismatch: connection=%s payload=%s", user_id, payload.user_id)
                else:
                    logger.debug("Authenticated: user=%s", user_id)

            elif msg_type == ClientMessageType.SUBSCRIBE.value:
                manager.subscribe(user_id, payload.resource_id)

            elif msg_type == ClientMessageType.UNSUBSCRIBE.value:
                manager.unsubscribe(user_id, payload.resource_id)

            elif msg_type == ClientMessageType.COMMENT_ADD.value:
                await _handle_comment_add(user_id, payload)

            elif msg_type in (
                ClientMessageType.COMMENT_UPDATE.value,
                ClientMessageType.COMMENT_DELETE.value,
            ):
                await _handle_comment_change(user_id, msg_type, payload)

            elif msg_type == ClientMessageType.TYPING.value:
                outgoing = UserTypingPayload(
                    resource_id=payload.resource_id,
                    user_id=user_id,
                    user_name=manager.display_name(user_id),
                    is_typing=payload.is_typing,
                )
                await manager.broadcast(
                    payload.resource_id,
                    Envelope.build(ServerMessageType.USER_TYPING, outgoing),
                    exclude_user=user_id,
                )

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: user=%s", user_id)
        await manager.disconnect(user_id, websocket)
    except Exception as e:
        logger.warning("WebSocket error for user=%s: %s", user_id, e)
        await manager.disconnect(user_id, websocket)
