"""Typing presence: which remote users are composing on each resource."""

import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TIMEOUT = 3.0


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class TypingPresenceTracker:
    """Per-resource typing indicators with timed expiry.

    Each (resource_id, user_id) entry is backed by one cancellable timer.
    A fresh ``typing=True`` signal re-arms the timer; ``typing=False`` or
    expiry removes the entry.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TYPING_TIMEOUT,
        call_later: CallLater | None = None,
    ) -> None:
        self.timeout = timeout
        self._call_later = call_later or _loop_call_later
        # resource_id -> {user_id: user_name}, insertion ordered
        self._active: dict[str, dict[str, str]] = {}
        self._timers: dict[tuple[str, str], TimerHandle] = {}

    def typing_users(self, resource_id: str) -> list[str]:
        """Display names currently typing on ``resource_id``, first arrival first."""
        names: list[str] = []
        for name in self._active.get(resource_id, {}).values():
            if name not in names:
                names.append(name)
        return names

    def is_typing(self, resource_id: str, user_id: str) -> bool:
        return user_id in self._active.get(resource_id, {})

    def apply(self, resource_id: str, user_id: str, user_name: str, is_typing: bool) -> None:
        if is_typing:
            self._active.setdefault(resource_id, {})[user_id] = user_name
            self._arm(resource_id, user_id)
        else:
            self._cancel_timer((resource_id, user_id))
            self._remove(resource_id, user_id)

    def clear(self) -> None:
        """Cancel every pending expiry and forget all typing users."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._active.clear()

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def _arm(self, resource_id: str, user_id: str) -> None:
        key = (resource_id, user_id)
        self._cancel_timer(key)
        self._timers[key] = self._call_later(self.timeout, lambda: self._expire(key))

    def _expire(self, key: tuple[str, str]) -> None:
        self._timers.pop(key, None)
        logger.debug("Typing expired: resource=%s user=%s", *key)
        self._remove(*key)

    def _cancel_timer(self, key: tuple[str, str]) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _remove(self, resource_id: str, user_id: str) -> None:
        users = self._active.get(resource_id)
        if users is None:
            return
        users.pop(user_id, None)
        if not users:
            del self._active[resource_id]
