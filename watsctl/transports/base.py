"""Transport and telemetry sink interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

NotificationCallback = Callable[[bytes], None]


class Transport(Protocol):
    async def write(self, data: bytes) -> None:
        """Write a request to the characteristic."""

    async def subscribe(self, callback: NotificationCallback) -> None:
        """Deliver each notified buffer to ``callback``, in arrival order."""


class ConnectableTransport(Transport, Protocol):
    async def connect(self) -> None:
        """Open the link to the device."""

    async def disconnect(self) -> None:
        """Close the link; safe to call when already disconnected."""


class TelemetrySink(Protocol):
    def publish(self, payload: str) -> None:
        """Publish a decoded payload, best-effort."""
