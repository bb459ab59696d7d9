"""Shared fixtures: an in-memory transport adapter."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from tbot.adapter import BotAdapter
from tbot.model import InboundEvent, OutgoingMessage


class FakeAdapter(BotAdapter):
    """Adapter backed by a queue; records everything sent.

    Push events with ``feed()``; ``finish()`` closes the stream.
    """

    def __init__(self, events: Optional[List[InboundEvent]] = None):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sent: List[OutgoingMessage] = []
        self.raw_calls: List[Tuple[str, Dict[str, str]]] = []
        self.started = False
        self.closed = False
        for event in events or []:
            self.queue.put_nowait(event)

    def feed(self, event: InboundEvent) -> None:
        self.queue.put_nowait(event)

    def finish(self) -> None:
        self.queue.put_nowait(None)

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def updates(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def send(self, message: OutgoingMessage) -> None:
        self.sent.append(message)

    async def send_raw(self, endpoint: str, params: Dict[str, str]) -> Any:
        self.raw_calls.append((endpoint, dict(params)))
        return {"ok": True}

    @property
    def texts(self) -> List[str]:
        return [m.data for m in self.sent]


@pytest.fixture
def fake_adapter():
    return FakeAdapter()
