"""Request/response correlation over a single notify/write characteristic.

The wire protocol carries no request ids, so at most one request is
outstanding at any time. Notifications are queued by the transport callback
and handled one at a time by a single dispatcher task, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from watsctl.core.errors import DisconnectedError, ResponseTimeoutError
from watsctl.core.frames import decode
from watsctl.core.model import (
    CapabilityBitmask,
    DecodedFrame,
    MalformedFrame,
    PendingRequest,
)
from watsctl.transports.base import Transport

LOGGER = logging.getLogger(__name__)

CapabilityListener = Callable[[CapabilityBitmask], None]


class Correlator:
    def __init__(
        self,
        transport: Transport,
        *,
        timeout_s: float = 2.0,
        bitmask_policy: str = "length",
    ) -> None:
        self._transport = transport
        self.timeout_s = timeout_s
        self.bitmask_policy = bitmask_policy
        self._lock = asyncio.Lock()
        self._frames: asyncio.Queue[bytes] = asyncio.Queue()
        self._pending: PendingRequest | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._capability_listeners: list[CapabilityListener] = []
        self._closed = False
        self._close_reason = "session closed"

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def closed(self) -> bool:
        return self._closed

    def add_capability_listener(self, listener: CapabilityListener) -> None:
        self._capability_listeners.append(listener)

    async def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._ensure_open()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="watsctl-dispatch")
        await self._transport.subscribe(self._on_notification)

    async def send(self, code: str, *, expect_bitmask: bool = False) -> DecodedFrame:
        """Write ``code`` and wait for its response.

        Raises ResponseTimeoutError when nothing matches within ``timeout_s``.
        A caller cancelled after the write does not abort the exchange; the
        next request is written only once this one has resolved.
        """
        self._ensure_open()
        await self._lock.acquire()
        try:
            self._ensure_open()
        except DisconnectedError:
            self._lock.release()
            raise

        exchange = asyncio.ensure_future(self._exchange(code, expect_bitmask))
        exchange.add_done_callback(self._finish_exchange)
        return await asyncio.shield(exchange)

    async def close(self, reason: str = "session closed") -> None:
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason

        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(DisconnectedError(f"Request '{pending.code}' aborted: {reason}"))

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise DisconnectedError(f"Cannot send request: {self._close_reason}")

    async def _exchange(self, code: str, expect_bitmask: bool) -> DecodedFrame:
        self._ensure_open()
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            code=code,
            sent_at=loop.time(),
            future=loop.create_future(),
            expects_bitmask=expect_bitmask,
        )
        self._pending = pending
        try:
            # One deadline covers both the write and the reply.
            async with asyncio.timeout(self.timeout_s):
                await self._transport.write(code.encode("ascii"))
                LOGGER.debug("sent request %r", code)
                return await pending.future
        except TimeoutError:
            if self._closed:
                raise DisconnectedError(f"Request '{code}' aborted: {self._close_reason}") from None
            raise ResponseTimeoutError(
                f"No response to '{code}' within {self.timeout_s:g}s"
            ) from None
        finally:
            self._pending = None

    def _finish_exchange(self, exchange: asyncio.Future[DecodedFrame]) -> None:
        self._lock.release()
        if not exchange.cancelled():
            # Retrieved here so an exchange whose caller went away is not reported as unhandled.
            exchange.exception()

    def _on_notification(self, data: bytes) -> None:
        self._frames.put_nowait(bytes(data))

    async def _dispatch_loop(self) -> None:
        while True:
            raw = await self._frames.get()
            try:
                self.handle_frame(raw)
            except Exception:
                LOGGER.exception("Failed to handle frame %s", raw.hex())

    def handle_frame(self, raw: bytes) -> None:
        frame = decode(raw, bitmask_policy=self.bitmask_policy)
        if isinstance(frame, MalformedFrame):
            LOGGER.warning("Dropping malformed frame %s: %s", raw.hex(), frame.reason)
            return

        pending = self._pending
        if pending is not None and not pending.future.done() and pending.matches(frame):
            elapsed = asyncio.get_running_loop().time() - pending.sent_at
            LOGGER.debug("matched response to %r after %.3fs", pending.code, elapsed)
            pending.future.set_result(frame)
            return

        if isinstance(frame, CapabilityBitmask):
            for listener in self._capability_listeners:
                listener(frame)
            return

        if pending is None:
            LOGGER.debug("Ignoring unsolicited text %r", frame.text)
        else:
            LOGGER.debug("Ignoring text %r while waiting for %r", frame.text, pending.code)
