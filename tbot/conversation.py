"""Per-chat conversation state.

Handlers stash arbitrary continuation data for multi-step dialogs here,
keyed by chat id. Events are dispatched concurrently and unordered, so
every access goes through a single lock; handlers that hop to worker
threads (``asyncio.to_thread``) are covered by the same lock.
"""

import threading
from typing import Any, Callable, Dict

import structlog

logger = structlog.get_logger("tbot.mux")

_MISSING = object()


class ConversationStore:
    """Thread-safe mapping of chat id -> state dict."""

    def __init__(self):
        self._lock = threading.Lock()
        self._chats: Dict[int, Dict[str, Any]] = {}

    def get(self, chat_id: int, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._chats.get(chat_id, {}).get(key, default)

    def set(self, chat_id: int, key: str, value: Any) -> None:
        with self._lock:
            self._chats.setdefault(chat_id, {})[key] = value

    def update(self, chat_id: int, values: Dict[str, Any]) -> None:
        with self._lock:
            self._chats.setdefault(chat_id, {}).update(values)

    def delete(self, chat_id: int, key: str) -> bool:
        """Remove one key. Returns whether it was present."""
        with self._lock:
            state = self._chats.get(chat_id)
            if state is None or key not in state:
                return False
            del state[key]
            if not state:
                del self._chats[chat_id]
            return True

    def mutate(
        self, chat_id: int, key: str, fn: Callable[[Any], Any], default: Any = None
    ) -> Any:
        """Atomically replace ``key`` with ``fn(current)`` and return it.

        Read-modify-write under the lock, so concurrent increments are
        never lost.
        """
        with self._lock:
            state = self._chats.setdefault(chat_id, {})
            value = fn(state.get(key, default))
            state[key] = value
            return value

    def snapshot(self, chat_id: int) -> Dict[str, Any]:
        """Return a shallow copy of the chat's state (empty if none)."""
        with self._lock:
            return dict(self._chats.get(chat_id, {}))

    def reset(self, chat_id: int) -> bool:
        """Clear all state for a chat.

        Idempotent: resetting a chat with no state is a no-op.

        Returns:
            True if state existed and was dropped.
        """
        with self._lock:
            existed = self._chats.pop(chat_id, None) is not None
        logger.debug("conversation_reset", chat_id=chat_id, existed=existed)
        return existed

    def __contains__(self, chat_id: object) -> bool:
        with self._lock:
            return chat_id in self._chats

    def __len__(self) -> int:
        with self._lock:
            return len(self._chats)


class ChatState:
    """View of the store bound to a single chat, handed to handlers."""

    def __init__(self, store: ConversationStore, chat_id: int):
        self._store = store
        self.chat_id = chat_id

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(self.chat_id, key, default)

    def set(self, key: str, value: Any) -> None:
        self._store.set(self.chat_id, key, value)

    def update(self, **values: Any) -> None:
        self._store.update(self.chat_id, values)

    def delete(self, key: str) -> bool:
        return self._store.delete(self.chat_id, key)

    def mutate(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        return self._store.mutate(self.chat_id, key, fn, default)

    def snapshot(self) -> Dict[str, Any]:
        return self._store.snapshot(self.chat_id)

    def clear(self) -> bool:
        return self._store.reset(self.chat_id)

    def __getitem__(self, key: str) -> Any:
        value = self._store.get(self.chat_id, key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: object) -> bool:
        return self._store.get(self.chat_id, key, _MISSING) is not _MISSING

