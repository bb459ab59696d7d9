"""Middleware composition and the built-in middlewares.

A middleware takes the next handler in the chain and returns a new
handler. It continues the chain by awaiting the handler it was given;
returning without awaiting it short-circuits dispatch, which is how the
allowlist and rate-limit middlewares drop events.

Key functions:
    compose: Wrap a terminal handler with middlewares, first outermost.
    logging_middleware: Log start/finish of every handler invocation.
    allowlist_middleware: Only let listed chats through.
    rate_limit_middleware: Drop events from chats over their limit.
"""

import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Sequence

import structlog

from .message import Handler, Message

logger = structlog.get_logger("tbot.dispatch")

# Type alias for middlewares: (next_handler) -> handler
Middleware = Callable[[Handler], Handler]


def compose(middlewares: Sequence[Middleware], handler: Handler) -> Handler:
    """Build ``m1(m2(...mn(handler)))`` from ``[m1, m2, ..., mn]``.

    The first-registered middleware is the outermost: it runs first and
    regains control last.
    """
    for middleware in reversed(middlewares):
        handler = middleware(handler)
    return handler


def logging_middleware(next_handler: Handler) -> Handler:
    """Log entry, exit and elapsed time of the wrapped handler."""
    async def wrapper(message: Message) -> None:
        started = time.monotonic()
        logger.debug(
            "handler_started", chat_id=message.chat_id, command=message.command
        )
        try:
            await next_handler(message)
        finally:
            logger.debug(
                "handler_finished",
                chat_id=message.chat_id,
                command=message.command,
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
    return wrapper


def allowlist_middleware(chat_ids: Iterable[int]) -> Middleware:
    """Build a middleware that only lets the given chats through."""
    allowed = frozenset(chat_ids)

    def middleware(next_handler: Handler) -> Handler:
        async def wrapper(message: Message) -> None:
            if message.chat_id not in allowed:
                logger.warning("unauthorized_chat", chat_id=message.chat_id)
                return
            await next_handler(message)
        return wrapper
    return middleware


class RateLimiter:
    """Sliding-window request counter per chat id.

    Stale chats are pruned every ``cleanup_interval`` seconds so the
    table does not grow without bound.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60,
        cleanup_interval: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[int, List[float]] = defaultdict(list)
        self._last_cleanup = clock()

    def check(self, chat_id: int) -> bool:
        """Record a request. Returns True if within limits, False if limited."""
        with self._lock:
            now = self._clock()
            window_start = now - self.window_seconds
            hits = [ts for ts in self._hits[chat_id] if ts > window_start]
            self._hits[chat_id] = hits

            if now - self._last_cleanup > self.cleanup_interval:
                self._last_cleanup = now
                stale = [
                    key for key, stamps in self._hits.items()
                    if not stamps or stamps[-1] <= window_start
                ]
                for key in stale:
                    if key != chat_id:
                        del self._hits[key]

            if len(hits) >= self.max_requests:
                logger.warning(
                    "rate_limit_exceeded",
                    chat_id=chat_id,
                    requests_in_window=len(hits),
                )
                return False
            hits.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_cleanup = self._clock()


def rate_limit_middleware(limiter: RateLimiter) -> Middleware:
    """Build a middleware that drops events from rate-limited chats."""
    def middleware(next_handler: Handler) -> Handler:
        async def wrapper(message: Message) -> None:
            if not limiter.check(message.chat_id):
                logger.warning("rate_limited", chat_id=message.chat_id)
                return
            await next_handler(message)
        return wrapper
    return middleware
