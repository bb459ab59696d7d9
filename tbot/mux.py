"""Command routing for tbot.

Maps command paths to handlers. A path is matched by exact,
case-sensitive equality with the first token of the message text; there
is no prefix or fuzzy matching. Aliases resolve exactly one level deep
to a canonical path.

Resolution order for an inbound event:
    file upload -> file handler (path table bypassed)
    exact canonical path
    alias -> canonical path
    default handler
    None (unhandled; the dispatcher counts and logs it)

Key classes:
    Route: A registered path, its handler and help description.
    Mux: Abstract router interface, so a custom router can be injected.
    DefaultMux: In-memory router with conversation state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from .conversation import ConversationStore
from .exceptions import RegistrationError
from .message import Handler, extract_command
from .model import InboundEvent

logger = structlog.get_logger("tbot.mux")

FILE_ROUTE = "<file>"
DEFAULT_ROUTE = "<default>"


@dataclass(frozen=True)
class Route:
    """A registered command.

    Attributes:
        path: Canonical path (e.g. "/help"), or a placeholder for the
            file and default routes.
        handler: Async handler invoked for matching events.
        description: Human-readable text shown by /help.
    """
    path: str
    handler: Handler
    description: str = ""


def _check_path(path: object, what: str = "path") -> str:
    if not isinstance(path, str) or not path:
        raise RegistrationError(f"{what} must be a non-empty string", path=repr(path))
    if len(path.split()) != 1 or path != path.strip():
        raise RegistrationError(f"{what} must not contain whitespace", path=path)
    return path


def _check_handler(handler: object, path: Optional[str]) -> None:
    if handler is None or not callable(handler):
        raise RegistrationError("handler must be callable", path=path)


class Mux(ABC):
    """Router interface used by the Server and Dispatcher."""

    conversations: ConversationStore

    @abstractmethod
    def handle_func(self, path: str, handler: Handler, description: str = "") -> None:
        """Register or replace the handler for ``path``."""

    @abstractmethod
    def handle_file(self, handler: Handler, description: str = "") -> None:
        """Set the handler for file uploads."""

    @abstractmethod
    def handle_default(self, handler: Handler, description: str = "") -> None:
        """Set the fallback handler."""

    @abstractmethod
    def set_alias(self, route: str, *aliases: str) -> None:
        """Point each alias at the canonical ``route``."""

    @abstractmethod
    def remove(self, path: str) -> bool:
        """Unregister a canonical route."""

    @abstractmethod
    def reset(self, chat_id: int) -> None:
        """Clear conversation state for a chat."""

    @abstractmethod
    def resolve(self, event: InboundEvent) -> Optional[Handler]:
        """Return the handler for an event, or None if nothing matches."""

    @abstractmethod
    def routes(self) -> List[Route]:
        """Canonical routes, sorted by path."""

    @abstractmethod
    def aliases(self) -> Dict[str, str]:
        """Copy of the alias -> canonical path table."""

    @property
    @abstractmethod
    def file_route(self) -> Optional[Route]:
        ...

    @property
    @abstractmethod
    def default_route(self) -> Optional[Route]:
        ...


class DefaultMux(Mux):
    """In-memory router.

    Registration is expected to happen before serving starts. Alias
    targets are validated lazily: an alias may name a route that is not
    registered (yet, or any more), and events for it fall through to the
    default handler.
    """

    def __init__(self, conversations: Optional[ConversationStore] = None):
        self._routes: Dict[str, Route] = {}
        self._aliases: Dict[str, str] = {}
        self._file: Optional[Route] = None
        self._default: Optional[Route] = None
        self.conversations = (
            conversations if conversations is not None else ConversationStore()
        )

    # --- registration ---

    def handle_func(self, path: str, handler: Handler, description: str = "") -> None:
        _check_path(path)
        _check_handler(handler, path)
        if path in self._routes:
            logger.info("route_replaced", path=path)
        if path in self._aliases:
            logger.warning(
                "alias_shadowed_by_route", path=path, alias_target=self._aliases[path]
            )
        self._routes[path] = Route(path, handler, description)

    def handle_file(self, handler: Handler, description: str = "") -> None:
        _check_handler(handler, FILE_ROUTE)
        if self._file is not None:
            logger.info("route_replaced", path=FILE_ROUTE)
        self._file = Route(FILE_ROUTE, handler, description)

    def handle_default(self, handler: Handler, description: str = "") -> None:
        _check_handler(handler, DEFAULT_ROUTE)
        if self._default is not None:
            logger.info("route_replaced", path=DEFAULT_ROUTE)
        self._default = Route(DEFAULT_ROUTE, handler, description)

    def set_alias(self, route: str, *aliases: str) -> None:
        """Register aliases for ``route``.

        Raises:
            RegistrationError: if ``route`` is itself an alias, if an alias
                is already the target of other aliases, or if an alias
                equals ``route``. Chains would make resolution deeper than
                one level.
        """
        _check_path(route, "route")
        if route in self._aliases and route not in self._routes:
            raise RegistrationError(
                "cannot alias an alias", path=route, target=self._aliases[route]
            )
        for alias in aliases:
            _check_path(alias, "alias")
        for alias in aliases:
            if alias == route:
                raise RegistrationError("alias equals its route", path=alias)
            if alias in self._aliases.values():
                raise RegistrationError(
                    "alias is already the target of other aliases", path=alias
                )

        if route not in self._routes:
            logger.debug("alias_target_unregistered", route=route)
        for alias in aliases:
            previous = self._aliases.get(alias)
            if previous is not None and previous != route:
                logger.warning(
                    "alias_overwritten", alias=alias, previous=previous, route=route
                )
            if alias in self._routes:
                logger.warning("alias_shadowed_by_route", path=alias, alias_target=route)
            self._aliases[alias] = route

    def remove(self, path: str) -> bool:
        removed = self._routes.pop(path, None) is not None
        if removed:
            logger.info("route_removed", path=path)
        return removed

    def reset(self, chat_id: int) -> None:
        self.conversations.reset(chat_id)

    # --- resolution ---

    def resolve(self, event: InboundEvent) -> Optional[Handler]:
        if event.is_file and self._file is not None:
            logger.debug("command_routing", chat_id=event.chat_id, routing_path="file")
            return self._file.handler

        if not event.is_file:
            command, _ = extract_command(event.text)
            route = self._routes.get(command)
            if route is not None:
                logger.debug(
                    "command_routing", chat_id=event.chat_id,
                    routing_path="route", path=command,
                )
                return route.handler

            target = self._aliases.get(command)
            if target is not None:
                route = self._routes.get(target)
                if route is not None:
                    logger.debug(
                        "command_routing", chat_id=event.chat_id,
                        routing_path="alias", alias=command, path=target,
                    )
                    return route.handler
                logger.debug("alias_target_missing", alias=command, path=target)

        if self._default is not None:
            logger.debug("command_routing", chat_id=event.chat_id, routing_path="default")
            return self._default.handler
        return None

    # --- introspection ---

    def routes(self) -> List[Route]:
        return [self._routes[path] for path in sorted(self._routes)]

    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    @property
    def file_route(self) -> Optional[Route]:
        return self._file

    @property
    def default_route(self) -> Optional[Route]:
        return self._default
