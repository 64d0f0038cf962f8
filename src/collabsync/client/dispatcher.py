"""Routes inbound envelopes to the local stores."""

import logging
from typing import Any, Callable

from pydantic import ValidationError

from collabsync.client.notify import NotificationPermission, Notifier
from collabsync.errors import ProtocolError
from collabsync.models.comment import Comment
from collabsync.models.envelope import (
    CommentDeletePayload,
    CommentUpdatePayload,
    Envelope,
    ServerMessageType,
    UserTypingPayload,
)
from collabsync.models.notification import Notification
from collabsync.store.state import SyncState

logger = logging.getLogger(__name__)

EnvelopeListener = Callable[[Envelope], None]


class MessageDispatcher:
    """Parses raw frames and applies them to a :class:`SyncState`.

    Malformed frames and unknown message types are logged and dropped; they
    never propagate to the connection.
    """

    def __init__(
        self,
        state: SyncState,
        local_user_id: str | None = None,
        notifier: Notifier | None = None,
        notification_permission: NotificationPermission = NotificationPermission.DEFAULT,
    ) -> None:
        self.state = state
        self.local_user_id = local_user_id
        self.notifier = notifier
        self.notification_permission = notification_permission
        self._listeners: list[EnvelopeListener] = []
        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            ServerMessageType.COMMENT_ADDED.value: self._on_comment_added,
            ServerMessageType.COMMENT_UPDATED.value: self._on_comment_updated,
            ServerMessageType.COMMENT_DELETED.value: self._on_comment_deleted,
            ServerMessageType.USER_TYPING.value: self._on_user_typing,
            ServerMessageType.NOTIFICATION.value: self._on_notification,
            ServerMessageType.PONG.value: self._on_pong,
        }

    def add_listener(self, listener: EnvelopeListener) -> Callable[[], None]:
        """Call ``listener`` after every routed envelope. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def handle(self, raw: str | bytes) -> Envelope | None:
        """Apply one raw frame. Returns the envelope if it was routed, else None."""
        try:
            envelope = Envelope.from_json(raw)
        except ProtocolError as e:
            logger.warning("Dropping unparseable message: %s", e)
            return None

        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.info("Ignoring unknown message type: %s", envelope.type)
            return None

        try:
            handler(envelope.payload)
        except ValidationError as e:
            logger.warning(
                "Dropping malformed %s payload: %d error(s)", envelope.type, e.error_count()
            )
            return None

        for listener in list(self._listeners):
            try:
                listener(envelope)
            except Exception:
                logger.exception("Envelope listener failed for %s", envelope.type)
        return envelope

    def _on_comment_added(self, payload: dict[str, Any]) -> None:
        comment = Comment.model_validate(payload)
        if self.local_user_id is not None and comment.author_id == self.local_user_id:
            logger.debug("Suppressing echo of own comment %s", comment.id)
            return
        self.state.comments.append(comment)

    def _on_comment_updated(self, payload: dict[str, Any]) -> None:
        data = CommentUpdatePayload.model_validate(payload)
        self.state.comments.update(data.comment_id, data.updates)

    def _on_comment_deleted(self, payload: dict[str, Any]) -> None:
        data = CommentDeletePayload.model_validate(payload)
        self.state.comments.soft_delete(data.comment_id)

    def _on_user_typing(self, payload: dict[str, Any]) -> None:
        data = UserTypingPayload.model_validate(payload)
        if data.user_id == self.local_user_id:
            return
        self.state.typing.apply(data.resource_id, data.user_id, data.user_name, data.is_typing)

    def _on_notification(self, payload: dict[str, Any]) -> None:
        notification = Notification.model_validate(payload)
        if notification.to_user_id != self.local_user_id:
            logger.debug("Ignoring notification %s for another user", notification.id)
            return
        self.state.notifications.append(notification)

        if self.notifier is None or self.notification_permission != NotificationPermission.GRANTED:
            return
        try:
            self.notifier.notify(notification)
        except Exception:
            logger.exception("Native notification failed for %s", notification.id)

    def _on_pong(self, payload: dict[str, Any]) -> None:
        pass
