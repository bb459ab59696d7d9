"""Pydantic models for events flowing through the dispatcher.

Inbound:
    InboundEvent, FileUpload

Outbound:
    OutgoingMessage, MessageType
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Kind of outgoing message; selects the transport API method."""
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    VOICE = "voice"
    STICKER = "sticker"


class FileUpload(BaseModel):
    """A file attached to an inbound event."""

    model_config = ConfigDict(frozen=True)

    file_id: str = Field(..., description="Transport-side file identifier")
    kind: str = Field(default="document", description="document, photo, audio, ...")
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class InboundEvent(BaseModel):
    """Immutable envelope for one inbound chat event.

    ``raw`` holds the transport-native payload and is passed through
    untouched; the core only reads ``text`` to extract a command path.
    """

    model_config = ConfigDict(frozen=True)

    chat_id: int = Field(..., description="Chat the event came from")
    text: str = Field(default="", description="Message text or file caption")
    file: Optional[FileUpload] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_file(self) -> bool:
        return self.file is not None


class OutgoingMessage(BaseModel):
    """A fully-specified message to send to a chat.

    ``type`` and ``chat_id`` are required for a proper send. ``data`` is
    the text for TEXT messages and a file id or URL for everything else.
    """

    type: MessageType = Field(default=MessageType.TEXT)
    chat_id: int = Field(..., description="Destination chat")
    data: str = Field(..., description="Text body, or file id / URL")
    parse_mode: Optional[str] = None
    reply_to_message_id: Optional[int] = None
    extra: Dict[str, str] = Field(
        default_factory=dict, description="Additional API parameters"
    )
