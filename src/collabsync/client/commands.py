"""Outbound commands and the local echo path."""

import logging
import uuid
from typing import Any

from collabsync.client.connection import ConnectionManager
from collabsync.models.base import WireModel, utcnow
from collabsync.models.comment import Comment, CommentAttachment, Reaction, ReactionType, ResourceType
from collabsync.models.envelope import (
    ClientMessageType,
    CommentDeletePayload,
    CommentUpdatePayload,
    Envelope,
    SubscriptionPayload,
    TypingPayload,
)
from collabsync.models.identity import Identity
from collabsync.store.state import SyncState

logger = logging.getLogger(__name__)


def _wire_updates(updates: dict[str, Any]) -> dict[str, Any]:
    """Rename known comment fields to their camelCase wire keys."""
    wire: dict[str, Any] = {}
    for key, value in updates.items():
        name = Comment.field_name_for(key)
        if name is None:
            wire[key] = value
        else:
            wire[Comment.model_fields[name].alias or name] = value
    return wire


class CommandAPI:
    """Builds envelopes for local intents and sends them through the connection.

    The ``send_*`` methods only transmit. ``post_comment``, ``edit_comment``,
    ``delete_comment``, ``toggle_pin`` and ``react`` also apply the change to
    the local stores first. Every send returns False when the client is
    offline; the message is dropped, not queued.
    """

    def __init__(self, connection: ConnectionManager, identity: Identity) -> None:
        self.connection = connection
        self.identity = identity

    @property
    def state(self) -> SyncState:
        return self.connection.sync_state

    # --- Transmit only ---

    async def send_comment(self, comment: Comment) -> bool:
        return await self._send(ClientMessageType.COMMENT_ADD, comment)

    async def send_comment_update(self, comment_id: str, updates: dict[str, Any]) -> bool:
        payload = CommentUpdatePayload(comment_id=comment_id, updates=_wire_updates(updates))
        return await self._send(ClientMessageType.COMMENT_UPDATE, payload)

    async def send_comment_delete(self, comment_id: str) -> bool:
        return await self._send(
            ClientMessageType.COMMENT_DELETE, CommentDeletePayload(comment_id=comment_id)
        )

    async def send_typing_status(self, resource_id: str, is_typing: bool) -> bool:
        payload = TypingPayload(
            resource_id=resource_id, user_id=self.identity.user_id, is_typing=is_typing
        )
        return await self._send(ClientMessageType.TYPING, payload)

    async def subscribe_to_resource(self, resource_type: ResourceType | str, resource_id: str) -> bool:
        payload = SubscriptionPayload(resource_type=resource_type, resource_id=resource_id)
        return await self._send(ClientMessageType.SUBSCRIBE, payload)

    async def unsubscribe_from_resource(
        self, resource_type: ResourceType | str, resource_id: str
    ) -> bool:
        payload = SubscriptionPayload(resource_type=resource_type, resource_id=resource_id)
        return await self._send(ClientMessageType.UNSUBSCRIBE, payload)

    # --- Local echo path ---

    async def post_comment(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        content: str,
        parent_id: str | None = None,
        mentions: list[str] | None = None,
        attachments: list[CommentAttachment] | None = None,
    ) -> Comment:
        """Create a comment, show it locally at once, then transmit it.

        The comment stays in the local store even if it could not be sent.
        """
        now = utcnow()
        comment = Comment(
            id=f"comment_{uuid.uuid4().hex}",
            content=content,
            author_id=self.identity.user_id,
            author_name=self.identity.display_name,
            author_avatar=self.identity.avatar,
            resource_type=resource_type,
            resource_id=resource_id,
            parent_id=parent_id,
            mentions=mentions or [],
            attachments=attachments or [],
            created_at=now,
            updated_at=now,
        )
        self.state.comments.append(comment)
        if not await self.send_comment(comment):
            logger.warning("Comment %s saved locally but not transmitted", comment.id)
        return comment

    async def edit_comment(
        self, comment_id: str, content: str, mentions: list[str] | None = None
    ) -> bool:
        """Edit a comment locally and transmit the change. False if the comment is unknown."""
        updates: dict[str, Any] = {"content": content}
        if mentions is not None:
            updates["mentions"] = mentions
        if not self.state.comments.update(comment_id, updates):
            return False
        await self.send_comment_update(comment_id, updates)
        return True

    async def delete_comment(self, comment_id: str) -> bool:
        if not self.state.comments.soft_delete(comment_id):
            return False
        await self.send_comment_delete(comment_id)
        return True

    def toggle_pin(self, comment_id: str) -> bool:
        """Pin or unpin locally. Pins are not part of the wire protocol."""
        return self.state.comments.toggle_pin(comment_id)

    def react(self, comment_id: str, reaction_type: ReactionType | str | None) -> bool:
        """Set, change or clear the local user's reaction.

        Choosing the reaction the user already has, or ``None``, removes it.
        Reactions are local only.
        """
        comment = self.state.comments.find(comment_id)
        if comment is None:
            return False

        user_id = self.identity.user_id
        if reaction_type is None:
            return self.state.comments.remove_reaction(comment_id, user_id)

        reaction_type = ReactionType(reaction_type)
        existing = comment.reaction_of(user_id)
        if existing is not None and existing.type == reaction_type:
            return self.state.comments.remove_reaction(comment_id, user_id)

        reaction = Reaction(
            id=f"reaction_{uuid.uuid4().hex}",
            type=reaction_type,
            user_id=user_id,
            user_name=self.identity.display_name,
            comment_id=comment_id,
        )
        return self.state.comments.upsert_reaction(comment_id, reaction)

    async def _send(self, type: ClientMessageType, payload: WireModel) -> bool:
        return await self.connection.send_envelope(Envelope.build(type, payload))
