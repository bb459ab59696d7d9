"""Transport adapters for tbot.

The dispatcher only needs a stream of InboundEvents and a way to send;
BotAdapter is that boundary. TelegramAdapter implements it against the
Telegram Bot API with aiohttp long polling.

Key classes:
    BotAdapter: Abstract transport boundary.
    TelegramAdapter: getUpdates long polling + send methods.

Key functions:
    event_from_update: Convert a Telegram update dict to an InboundEvent.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp
import structlog

from .exceptions import SendError, TransportError
from .model import FileUpload, InboundEvent, MessageType, OutgoingMessage

logger = structlog.get_logger("tbot.transport")

TELEGRAM_API_URL = "https://api.telegram.org"

# MessageType -> (API method, parameter carrying ``data``)
_SEND_METHODS: Dict[MessageType, tuple] = {
    MessageType.TEXT: ("sendMessage", "text"),
    MessageType.PHOTO: ("sendPhoto", "photo"),
    MessageType.DOCUMENT: ("sendDocument", "document"),
    MessageType.AUDIO: ("sendAudio", "audio"),
    MessageType.VIDEO: ("sendVideo", "video"),
    MessageType.VOICE: ("sendVoice", "voice"),
    MessageType.STICKER: ("sendSticker", "sticker"),
}

_FILE_KINDS = ("document", "audio", "video", "voice")


class BotAdapter(ABC):
    """Source of inbound events and sink for replies."""

    async def start(self) -> None:
        """Open connections. Called once before ``updates()``."""

    async def close(self) -> None:
        """Release connections. Safe to call more than once."""

    @abstractmethod
    def updates(self) -> AsyncIterator[InboundEvent]:
        """Yield inbound events until the stream closes."""

    @abstractmethod
    async def send(self, message: OutgoingMessage) -> None:
        """Deliver a fully-specified message."""

    @abstractmethod
    async def send_raw(self, endpoint: str, params: Dict[str, str]) -> Any:
        """Call an arbitrary API endpoint with string parameters."""


def event_from_update(update: Dict[str, Any]) -> Optional[InboundEvent]:
    """Build an InboundEvent from a Telegram update.

    Returns None for updates that carry no chat message (callback
    queries, polls, member updates, ...).
    """
    message = (
        update.get("message")
        or update.get("edited_message")
        or update.get("channel_post")
    )
    if not isinstance(message, dict):
        return None
    chat = message.get("chat") or {}
    chat_id = chat.get("id")
    if chat_id is None:
        return None

    upload = None
    photos = message.get("photo")
    if photos:
        largest = photos[-1]
        upload = FileUpload(
            file_id=largest["file_id"],
            kind="photo",
            file_size=largest.get("file_size"),
        )
    else:
        for kind in _FILE_KINDS:
            payload = message.get(kind)
            if payload:
                upload = FileUpload(
                    file_id=payload["file_id"],
                    kind=kind,
                    file_name=payload.get("file_name"),
                    mime_type=payload.get("mime_type"),
                    file_size=payload.get("file_size"),
                )
                break

    text = message.get("text") or message.get("caption") or ""
    return InboundEvent(chat_id=chat_id, text=text, file=upload, raw=update)


class TelegramAdapter(BotAdapter):
    """Telegram Bot API over aiohttp.

    Args:
        token: Bot token issued by BotFather.
        api_url: API base URL (override for a local Bot API server).
        poll_timeout: Long-poll timeout passed to getUpdates, in seconds.
        max_poll_failures: Consecutive getUpdates failures tolerated
            before ``updates()`` raises TransportError.
        request_timeout: Total timeout in seconds for calls other than
            getUpdates, which uses ``poll_timeout`` plus a margin.
        session: Optional externally managed aiohttp session.
    """

    def __init__(
        self,
        token: str,
        api_url: str = TELEGRAM_API_URL,
        poll_timeout: int = 30,
        max_poll_failures: int = 5,
        request_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self.max_poll_failures = max_poll_failures
        self.request_timeout = request_timeout
        self.session = session
        self._owns_session = session is None
        self._offset: Optional[int] = None
        self.running = False

    def _url(self, method: str) -> str:
        return f"{self.api_url}/bot{self.token}/{method}"

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        self.running = True
        try:
            me = await self.send_raw("getMe", {})
        except SendError as e:
            logger.error("bot_identity_failed", status=e.status, error=e.message)
            await self.close()
            raise
        logger.info("bot_identity", username=(me or {}).get("username"))

    async def close(self) -> None:
        self.running = False
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def _call(
        self,
        method: str,
        params: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """POST an API method and return its ``result``.

        Raises:
            SendError: on a non-OK reply or a network error.
        """
        if self.session is None:
            raise SendError("Adapter not started", endpoint=method)
        client_timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else self.request_timeout
        )
        try:
            async with self.session.post(
                self._url(method), json=params, timeout=client_timeout
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                if resp.status != 200 or not isinstance(body, dict) or not body.get("ok"):
                    description = (
                        body.get("description") if isinstance(body, dict) else None
                    )
                    raise SendError(
                        description or f"HTTP {resp.status}",
                        endpoint=method,
                        status=resp.status,
                    )
                return body.get("result")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(
                f"{type(e).__name__}: {e}", endpoint=method
            ) from e

    async def updates(self) -> AsyncIterator[InboundEvent]:
        """Long-poll getUpdates until ``close()`` is called.

        Failed polls back off exponentially (1s doubling, capped at 60s).
        After ``max_poll_failures`` consecutive failures the last error
        is raised as TransportError.
        """
        failures = 0
        delay = 1.0
        max_delay = 60.0

        while self.running:
            params: Dict[str, Any] = {"timeout": self.poll_timeout}
            if self._offset is not None:
                params["offset"] = self._offset
            try:
                batch = await self._call(
                    "getUpdates", params, timeout=self.poll_timeout + 10
                )
            except asyncio.CancelledError:
                break
            except SendError as e:
                failures += 1
                logger.warning(
                    "poll_failed", error=e.message, status=e.status,
                    attempt=failures, retry_delay=delay,
                )
                if failures >= self.max_poll_failures:
                    raise TransportError(
                        "getUpdates failed repeatedly",
                        status=e.status,
                        attempts=failures,
                    ) from e
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)
                continue

            failures = 0
            delay = 1.0
            for update in batch or []:
                update_id = update.get("update_id")
                if update_id is not None:
                    self._offset = update_id + 1
                event = event_from_update(update)
                if event is None:
                    logger.debug("update_skipped", update_id=update_id)
                    continue
                yield event

        logger.info("poll_stopped")

    async def send(self, message: OutgoingMessage) -> None:
        method, field = _SEND_METHODS[message.type]
        params: Dict[str, Any] = {"chat_id": message.chat_id, field: message.data}
        if message.parse_mode:
            params["parse_mode"] = message.parse_mode
        if message.reply_to_message_id is not None:
            params["reply_to_message_id"] = message.reply_to_message_id
        params.update(message.extra)
        try:
            await self._call(method, params)
        except SendError as e:
            logger.error(
                "send_failed", endpoint=method, chat_id=message.chat_id,
                status=e.status, error=e.message,
            )
            raise

    async def send_raw(self, endpoint: str, params: Dict[str, str]) -> Any:
        return await self._call(endpoint, dict(params))
