"""Bot server: registration API, send API and the serve loop.

Looks and feels like a small HTTP framework. Handlers are registered on
paths, middlewares wrap every invocation, and ``listen_and_serve()``
feeds transport events through the Dispatcher until the stream closes.

Key classes:
    Server: Facade over Mux, Dispatcher and BotAdapter.
"""

import asyncio
import signal
from typing import Any, Dict, Optional

import structlog

from .adapter import BotAdapter, TelegramAdapter
from .config import ServerConfig
from .dispatcher import Dispatcher
from .logging_config import setup_logging
from .message import Handler, Message
from .middleware import (
    Middleware,
    RateLimiter,
    allowlist_middleware,
    rate_limit_middleware,
)
from .model import MessageType, OutgoingMessage
from .mux import DefaultMux, Mux

logger = structlog.get_logger("tbot.dispatch")


class Server:
    """Chat-bot server.

    Args:
        config: Validated server settings.
        adapter: Transport; a TelegramAdapter built from ``config`` when
            omitted.
        mux: Router; a fresh DefaultMux when omitted.
    """

    def __init__(
        self,
        config: ServerConfig,
        adapter: Optional[BotAdapter] = None,
        mux: Optional[Mux] = None,
    ):
        self.config = config
        self.mux = mux if mux is not None else DefaultMux()
        self.adapter = adapter if adapter is not None else TelegramAdapter(
            token=config.token,
            api_url=config.api_url,
            poll_timeout=config.poll_timeout,
            max_poll_failures=config.max_poll_failures,
            request_timeout=config.request_timeout,
        )
        self.dispatcher = Dispatcher(
            self.mux, self.adapter, max_concurrency=config.max_concurrency
        )
        self.rate_limiter: Optional[RateLimiter] = None
        self._shutdown_event: Optional[asyncio.Event] = None

        if config.allowed_chat_ids:
            self.add_middleware(allowlist_middleware(config.allowed_chat_ids))
        if config.rate_limit.enabled:
            self.rate_limiter = RateLimiter(
                max_requests=config.rate_limit.max_requests,
                window_seconds=config.rate_limit.window_seconds,
            )
            self.add_middleware(rate_limit_middleware(self.rate_limiter))

        if config.help_path:
            self.handle_func(config.help_path, self.help_handler, "Show this help")

    # --- registration ---

    def add_middleware(self, middleware: Middleware) -> None:
        """Append a middleware; the first added is the outermost."""
        self.dispatcher.add_middleware(middleware)

    def handle_func(self, path: str, handler: Handler, description: str = "") -> None:
        self.mux.handle_func(path, handler, description)

    def handle(self, path: str, reply: str, description: str = "") -> None:
        """Register ``path`` to answer with a static text reply."""
        async def static_reply(message: Message) -> None:
            await message.reply(reply)
        self.handle_func(path, static_reply, description)

    def handle_file(self, handler: Handler, description: str = "") -> None:
        self.mux.handle_file(handler, description)

    def handle_default(self, handler: Handler, description: str = "") -> None:
        self.mux.handle_default(handler, description)

    def set_alias(self, route: str, *aliases: str) -> None:
        self.mux.set_alias(route, *aliases)

    def reset(self, chat_id: int) -> None:
        self.mux.reset(chat_id)

    # --- help ---

    def help_text(self) -> str:
        """Render the command list shown by the help handler."""
        aliases_by_route: Dict[str, list] = {}
        for alias, route in sorted(self.mux.aliases().items()):
            aliases_by_route.setdefault(route, []).append(alias)

        lines = ["Available commands:"]
        for route in self.mux.routes():
            names = ", ".join([route.path] + aliases_by_route.get(route.path, []))
            lines.append(f"{names} - {route.description}" if route.description else names)
        file_route = self.mux.file_route
        if file_route is not None and file_route.description:
            lines.append(f"Files: {file_route.description}")
        default_route = self.mux.default_route
        if default_route is not None and default_route.description:
            lines.append(f"Anything else: {default_route.description}")
        return "\n".join(lines)

    async def help_handler(self, message: Message) -> None:
        await message.reply(self.help_text())

    # --- sending ---

    async def send(self, chat_id: int, text: str) -> None:
        """Send a text message to a chat."""
        await self.adapter.send(
            OutgoingMessage(type=MessageType.TEXT, chat_id=chat_id, data=text)
        )

    async def send_message(self, message: OutgoingMessage) -> None:
        """Send a fully-specified message object."""
        await self.adapter.send(message)

    async def send_raw(self, endpoint: str, params: Dict[str, str]) -> Any:
        """Send a direct request to the bot API."""
        return await self.adapter.send_raw(endpoint, params)

    # --- serving ---

    async def listen_and_serve(self) -> None:
        """Serve transport events until the stream closes.

        In-flight handlers are drained (best effort, ``drain_timeout``)
        before the adapter is closed. Transport failures propagate.
        """
        try:
            await self.adapter.start()
            logger.info("server_started", routes=len(self.mux.routes()))
            await self.dispatcher.serve(self.adapter.updates())
        finally:
            pending = await self.dispatcher.drain(self.config.drain_timeout)
            await self.adapter.close()
            logger.info("server_stopped", pending=pending, stats=vars(self.dispatcher.stats))

    def shutdown(self) -> None:
        """Ask a running ``serve_until_signal()`` to stop."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def serve_until_signal(self) -> None:
        """Run listen_and_serve() until it ends, SIGINT/SIGTERM arrives or
        shutdown() is called.

        On shutdown the serve loop is cancelled; listen_and_serve() still
        drains in-flight handlers and closes the adapter on its way out.
        """
        loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()

        def handle_shutdown(sig):
            logger.info("shutdown_signal_received", signal=sig.name)
            self.shutdown()

        installed = []
        previous_sigint = None
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, handle_shutdown, sig)
                installed.append(sig)
            except NotImplementedError:
                # Windows: add_signal_handler not supported.
                if sig == signal.SIGINT:
                    previous_sigint = signal.signal(
                        signal.SIGINT,
                        lambda s, f: loop.call_soon_threadsafe(
                            handle_shutdown, signal.SIGINT
                        ),
                    )

        serve_task = asyncio.create_task(self.listen_and_serve())
        waiter = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait(
                {serve_task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if not serve_task.done():
                serve_task.cancel()
                try:
                    await serve_task
                except asyncio.CancelledError:
                    pass
            else:
                serve_task.result()
        finally:
            waiter.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)
            if previous_sigint is not None:
                signal.signal(signal.SIGINT, previous_sigint)
            self._shutdown_event = None

    def run(self) -> None:
        """Synchronous entry point: configure logging, then serve."""
        setup_logging(self.config)
        try:
            asyncio.run(self.serve_until_signal())
        except KeyboardInterrupt:
            pass
