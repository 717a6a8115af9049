from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from watsctl.core.errors import TransportSendError


class FakeDevice:
    """In-memory stand-in for the BLE characteristic.

    ``replies`` maps a request to the buffers notified back after ``delay_s``.
    """

    def __init__(self) -> None:
        self.replies: dict[bytes, list[bytes]] = {}
        self.delay_s = 0.0
        self.writes: list[bytes] = []
        self.fail_writes = False
        self.stall_writes = False
        self.connected = False
        self.overlapping_writes = 0
        self._outstanding = False
        self._callback: Callable[[bytes], None] | None = None

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def subscribe(self, callback: Callable[[bytes], None]) -> None:
        self._callback = callback

    async def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise TransportSendError("link lost")
        if self.stall_writes:
            await asyncio.Event().wait()
        if self._outstanding:
            self.overlapping_writes += 1
        self.writes.append(data)
        replies = self.replies.get(data, [])
        self._outstanding = bool(replies)
        loop = asyncio.get_running_loop()
        for reply in replies:
            loop.call_later(self.delay_s, self._deliver, reply)

    def notify(self, data: bytes) -> None:
        assert self._callback is not None, "subscribe() was not called"
        self._callback(data)

    def _deliver(self, data: bytes) -> None:
        self._outstanding = False
        self.notify(data)


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()
