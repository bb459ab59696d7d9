"""Event dispatcher for tbot.

Spawns one asyncio task per inbound event: resolve a handler through the
Mux, wrap it with the middlewares registered at that moment, invoke it.
The dispatcher never awaits a handler before accepting the next event,
and there is no ordering between tasks, not even for the same chat id.

A failing handler is logged and counted; it never reaches the serve loop
or other in-flight tasks. Handlers get no timeout and are never
cancelled by the dispatcher.
"""

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Set, Tuple

import structlog

from .message import Handler, Message, extract_command
from .middleware import Middleware, compose
from .model import InboundEvent
from .mux import Mux

if TYPE_CHECKING:
    from .adapter import BotAdapter

logger = structlog.get_logger("tbot.dispatch")


@dataclass
class DispatchStats:
    """Counters for the dispatcher's observable outcomes."""
    received: int = 0
    dispatched: int = 0
    unhandled: int = 0
    completed: int = 0
    failed: int = 0
    in_flight: int = 0


class Dispatcher:
    """Routes inbound events to handlers, one task per event.

    Args:
        mux: Router used to resolve events.
        adapter: Transport used by ``Message.reply``; may be None in
            tests or for send-less bots.
        max_concurrency: Optional bound on concurrently running
            handlers. Tasks still spawn immediately and wait on a
            semaphore, so ``dispatch`` never blocks.
    """

    def __init__(
        self,
        mux: Mux,
        adapter: Optional["BotAdapter"] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.mux = mux
        self.adapter = adapter
        self.stats = DispatchStats()
        self._middlewares: List[Middleware] = []
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(max_concurrency) if max_concurrency else None
        )

    def add_middleware(self, middleware: Middleware) -> None:
        """Append a middleware. Applies to events dispatched from now on."""
        self._middlewares.append(middleware)

    @property
    def middlewares(self) -> List[Middleware]:
        return list(self._middlewares)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: InboundEvent) -> Optional[asyncio.Task]:
        """Resolve and schedule one event.

        Returns:
            The spawned task, or None when no handler matched (the event
            is dropped and counted as unhandled).
        """
        self.stats.received += 1
        handler = self.mux.resolve(event)
        if handler is None:
            self.stats.unhandled += 1
            command, _ = extract_command(event.text)
            logger.warning(
                "event_unhandled",
                chat_id=event.chat_id,
                command=command,
                is_file=event.is_file,
            )
            return None

        middlewares = tuple(self._middlewares)
        message = Message(event, self.adapter, self.mux.conversations)
        task = asyncio.create_task(self._invoke(middlewares, handler, message))
        self._tasks.add(task)
        self.stats.dispatched += 1
        self.stats.in_flight = len(self._tasks)
        task.add_done_callback(self._task_done)
        return task

    async def _invoke(
        self,
        middlewares: Tuple[Middleware, ...],
        handler: Handler,
        message: Message,
    ) -> None:
        try:
            chain = compose(middlewares, handler)
            if self._semaphore is None:
                await chain(message)
            else:
                async with self._semaphore:
                    await chain(message)
        except Exception as e:
            self.stats.failed += 1
            logger.exception(
                "handler_failed",
                chat_id=message.chat_id,
                command=message.command,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            self.stats.completed += 1

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.stats.in_flight = len(self._tasks)

    async def serve(self, events: AsyncIterator[InboundEvent]) -> None:
        """Dispatch every event from the stream until it closes.

        Exceptions raised by the stream itself (transport failures)
        propagate to the caller.
        """
        async for event in events:
            self.dispatch(event)
        logger.info("event_stream_closed", in_flight=self.in_flight)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight handlers, best effort.

        Nothing is cancelled; tasks still running when ``timeout``
        expires keep running.

        Returns:
            Number of tasks still pending.
        """
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("drain_incomplete", pending=len(pending))
        return len(pending)
