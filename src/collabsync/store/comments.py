"""Per-resource comment ledger and the read-side queries over it."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from collabsync.models.base import utcnow
from collabsync.models.comment import TOMBSTONE, Comment, Reaction

logger = logging.getLogger(__name__)

# Fields that identify a comment, its bucket and its deletion; updates never touch them
_IMMUTABLE_FIELDS = frozenset({"id", "resource_type", "resource_id", "is_deleted"})


class CommentStore:
    """Comments grouped by resource id, each bucket sorted by created_at.

    Mutators return ``True`` when the target comment was found and ``False``
    when no bucket holds it.
    """

    def __init__(self) -> None:
        self._comments: dict[str, list[Comment]] = {}

    def comments_for(self, resource_id: str) -> list[Comment]:
        """Return a copy of the resource's comments, oldest first."""
        return list(self._comments.get(resource_id, []))

    def resource_ids(self) -> list[str]:
        return list(self._comments)

    def find(self, comment_id: str) -> Comment | None:
        for bucket in self._comments.values():
            for comment in bucket:
                if comment.id == comment_id:
                    return comment
        return None

    def replace_resource(self, resource_id: str, comments: Iterable[Comment]) -> None:
        """Replace a resource's bucket wholesale (full reload)."""
        self._comments[resource_id] = sorted(comments, key=lambda c: c.created_at)

    def append(self, comment: Comment) -> None:
        bucket = self._comments.setdefault(comment.resource_id, [])
        bucket.append(comment)
        bucket.sort(key=lambda c: c.created_at)

    def update(self, comment_id: str, updates: dict[str, Any]) -> bool:
        """Apply a partial update to every copy of ``comment_id``.

        Keys may be wire (camelCase) or attribute (snake_case) names. The
        comment is marked edited and its ``updated_at`` bumped. A deleted
        comment keeps its tombstone content. Touched buckets are re-sorted.
        """
        changes: dict[str, Any] = {}
        for key, value in updates.items():
            name = Comment.field_name_for(key)
            if name is None or name in _IMMUTABLE_FIELDS:
                logger.debug("Ignoring update of field %r on comment %s", key, comment_id)
                continue
            changes[name] = value

        found = False
        for bucket in self._comments.values():
            touched = False
            for index, comment in enumerate(bucket):
                if comment.id != comment_id:
                    continue
                data = comment.model_dump()
                data.update(changes)
                if comment.is_deleted:
                    data["content"] = TOMBSTONE
                data["is_edited"] = True
                data["updated_at"] = utcnow()
                bucket[index] = Comment.model_validate(data)
                touched = found = True
            if touched:
                bucket.sort(key=lambda c: c.created_at)
        if not found:
            logger.debug("Update skipped: comment %s not found", comment_id)
        return found

    def soft_delete(self, comment_id: str) -> bool:
        """Replace the comment's content with a tombstone. Idempotent."""
        found = False
        for comment in self._matching(comment_id):
            found = True
            if comment.is_deleted:
                continue
            comment.is_deleted = True
            comment.content = TOMBSTONE
            comment.updated_at = utcnow()
        if not found:
            logger.debug("Delete skipped: comment %s not found", comment_id)
        return found

    def toggle_pin(self, comment_id: str) -> bool:
        found = False
        for comment in self._matching(comment_id):
            comment.is_pinned = not comment.is_pinned
            found = True
        return found

    def upsert_reaction(self, comment_id: str, reaction: Reaction) -> bool:
        """Set ``reaction`` as its user's only reaction on the comment."""
        found = False
        for comment in self._matching(comment_id):
            kept = [r for r in comment.reactions if r.user_id != reaction.user_id]
            kept.append(reaction.model_copy(update={"comment_id": comment_id}))
            comment.reactions = kept
            found = True
        if not found:
            logger.debug("Reaction skipped: comment %s not found", comment_id)
        return found

    def remove_reaction(self, comment_id: str, user_id: str) -> bool:
        found = False
        for comment in self._matching(comment_id):
            comment.reactions = [r for r in comment.reactions if r.user_id != user_id]
            found = True
        return found

    def clear(self) -> None:
        self._comments.clear()

    def _matching(self, comment_id: str) -> Iterable[Comment]:
        for bucket in self._comments.values():
            for comment in bucket:
                if comment.id == comment_id:
                    yield comment


# --- Read-side queries -------------------------------------------------------


def top_level_comments(comments: Iterable[Comment]) -> list[Comment]:
    """Root comments that have not been deleted."""
    return [c for c in comments if c.parent_id is None and not c.is_deleted]


def replies_of(comments: Iterable[Comment], parent_id: str) -> list[Comment]:
    return [c for c in comments if c.parent_id == parent_id]


def pinned_comments(comments: Iterable[Comment]) -> list[Comment]:
    return [c for c in comments if c.is_pinned and not c.is_deleted]


def reaction_counts(comment: Comment) -> dict[str, int]:
    """Number of reactions per emoji, in first-seen order."""
    return dict(Counter(r.type.value for r in comment.reactions))


@dataclass
class CommentNode:
    """A comment together with its (recursively built) replies."""

    comment: Comment
    replies: list["CommentNode"] = field(default_factory=list)

    def depth(self) -> int:
        """Depth of the deepest reply chain below this node (0 for a leaf)."""
        if not self.replies:
            return 0
        return 1 + max(reply.depth() for reply in self.replies)


def build_thread(comments: Iterable[Comment]) -> list[CommentNode]:
    """Rebuild the reply tree from parent pointers.

    Returns the root nodes (top-level, non-deleted comments) in input order.
    Children are looked up through a parent -> children index built once, so
    the walk is linear in the number of comments.
    """
    comments = list(comments)
    children: dict[str, list[Comment]] = {}
    for comment in comments:
        if comment.parent_id is not None:
            children.setdefault(comment.parent_id, []).append(comment)

    def _node(comment: Comment, seen: frozenset[str]) -> CommentNode:
        seen = seen | {comment.id}
        return CommentNode(
            comment=comment,
            replies=[
                _node(child, seen)
                for child in children.get(comment.id, [])
                if child.id not in seen
            ],
        )

    return [_node(root, frozenset()) for root in top_level_comments(comments)]


class SortOrder(str, Enum):
    """How the comment panel orders non-pinned top-level comments."""

    NEWEST = "newest"
    OLDEST = "oldest"
    POPULAR = "popular"


def sort_for_display(
    comments: Iterable[Comment], order: SortOrder = SortOrder.NEWEST
) -> list[Comment]:
    """Pinned comments first, then the remaining top-level comments in ``order``."""
    comments = list(comments)
    pinned = pinned_comments(comments)
    regular = [c for c in top_level_comments(comments) if not c.is_pinned]

    if order == SortOrder.NEWEST:
        regular.sort(key=lambda c: c.created_at, reverse=True)
    elif order == SortOrder.OLDEST:
        regular.sort(key=lambda c: c.created_at)
    else:
        regular.sort(key=lambda c: len(c.reactions), reverse=True)

    return pinned + regular
