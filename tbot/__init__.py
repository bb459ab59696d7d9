"""tbot: command dispatch for chat bots.

Routes inbound chat events (text commands, file uploads) to registered
handlers through a middleware chain, one asyncio task per event.

Usage example::

    from tbot import Server, ServerConfig, logging_middleware

    server = Server(ServerConfig(token=TOKEN))
    server.add_middleware(logging_middleware)
    server.handle("/start", "Hello!", "Say hello")
    server.set_alias("/start", "/go")
    server.run()
"""

from .adapter import BotAdapter, TelegramAdapter, event_from_update
from .config import LoggingSettings, RateLimitSettings, ServerConfig, load_config
from .conversation import ChatState, ConversationStore
from .dispatcher import DispatchStats, Dispatcher
from .exceptions import (
    ConfigurationError,
    ErrorCategory,
    RegistrationError,
    SendError,
    TbotError,
    TransportError,
)
from .logging_config import setup_logging
from .message import Handler, Message, extract_command
from .middleware import (
    Middleware,
    RateLimiter,
    allowlist_middleware,
    compose,
    logging_middleware,
    rate_limit_middleware,
)
from .model import FileUpload, InboundEvent, MessageType, OutgoingMessage
from .mux import DefaultMux, Mux, Route
from .server import Server

__all__ = [
    "BotAdapter",
    "ChatState",
    "ConfigurationError",
    "ConversationStore",
    "DefaultMux",
    "DispatchStats",
    "Dispatcher",
    "ErrorCategory",
    "FileUpload",
    "Handler",
    "InboundEvent",
    "LoggingSettings",
    "Message",
    "MessageType",
    "Middleware",
    "Mux",
    "OutgoingMessage",
    "RateLimitSettings",
    "RateLimiter",
    "RegistrationError",
    "Route",
    "SendError",
    "Server",
    "ServerConfig",
    "TbotError",
    "TelegramAdapter",
    "TransportError",
    "allowlist_middleware",
    "compose",
    "event_from_update",
    "extract_command",
    "load_config",
    "logging_middleware",
    "rate_limit_middleware",
    "setup_logging",
]
