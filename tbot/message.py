"""Handler-facing message wrapper and handler types."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Tuple

from .conversation import ChatState, ConversationStore
from .exceptions import TransportError
from .model import FileUpload, InboundEvent, MessageType, OutgoingMessage

if TYPE_CHECKING:
    from .adapter import BotAdapter


# Type alias for handlers: async (message: Message) -> None
Handler = Callable[["Message"], Awaitable[None]]


def extract_command(text: str) -> Tuple[str, str]:
    """Split message text into (command, args).

    The command is the first whitespace-delimited token, kept
    case-sensitive. A ``/cmd@botname`` suffix is dropped so group-chat
    mentions match the plain route. Blank text yields ("", "").
    """
    parts = text.strip().split(maxsplit=1)
    if not parts:
        return "", ""
    command = parts[0]
    if command.startswith("/") and "@" in command:
        command = command.split("@", 1)[0]
    args = parts[1] if len(parts) > 1 else ""
    return command, args


class Message:
    """An inbound event plus the means to answer it.

    Handlers receive one Message per event. Replies go out through the
    transport adapter; ``state`` reads and writes the chat's
    conversation state.
    """

    def __init__(
        self,
        event: InboundEvent,
        adapter: Optional["BotAdapter"],
        conversations: ConversationStore,
    ):
        self.event = event
        self._adapter = adapter
        self.command, self.args = extract_command(event.text)
        self.state = ChatState(conversations, event.chat_id)

    @property
    def chat_id(self) -> int:
        return self.event.chat_id

    @property
    def text(self) -> str:
        return self.event.text

    @property
    def file(self) -> Optional[FileUpload]:
        return self.event.file

    @property
    def raw(self) -> Dict[str, Any]:
        return self.event.raw

    async def reply(self, text: str) -> None:
        """Send a text message back to the originating chat."""
        await self.reply_message(
            OutgoingMessage(type=MessageType.TEXT, chat_id=self.chat_id, data=text)
        )

    async def reply_message(self, message: OutgoingMessage) -> None:
        """Send a message object to the originating chat.

        The message's chat_id is overridden with this event's chat.
        """
        if self._adapter is None:
            raise TransportError("No transport attached; cannot reply")
        await self._adapter.send(message.model_copy(update={"chat_id": self.chat_id}))

    def __repr__(self) -> str:
        return f"Message(chat_id={self.chat_id!r}, command={self.command!r})"
