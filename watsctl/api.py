"""Stable public API for building tooling on top of watsctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from watsctl.core.errors import (
    DisconnectedError,
    MalformedFrameError,
    MetricSelectionError,
    ProfileLoadError,
    ProfileValidationError,
    ProtocolError,
    ResponseTimeoutError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    WatsctlError,
)
from watsctl.core.model import (
    CapabilityBitmask,
    CapabilitySet,
    MalformedFrame,
    MetricDescriptor,
    MetricEvent,
    Profile,
    ProtocolSpec,
    TextFrame,
    TransportSpec,
)
from watsctl.core.service import TransportFactory, WatsService
from watsctl.core.session import TelemetrySession
from watsctl.transports.base import TelemetrySink, Transport
from watsctl.transports.ble_gatt import BLEGATTTransport

__all__ = [
    "WatsctlError",
    "DisconnectedError",
    "MalformedFrameError",
    "MetricSelectionError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ProtocolError",
    "ResponseTimeoutError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "CapabilityBitmask",
    "CapabilitySet",
    "MalformedFrame",
    "MetricDescriptor",
    "MetricEvent",
    "Profile",
    "ProtocolSpec",
    "TextFrame",
    "TransportSpec",
    "BLEGATTTransport",
    "TelemetrySession",
    "TelemetrySink",
    "Transport",
    "Client",
]


class Client:
    """Public client for interacting with watsctl core capabilities.

    A `Client` instance wraps profile loading, offline frame decoding, and
    telemetry sessions behind a stable API intended for third-party tools
    (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        transport_factory: TransportFactory | None = None,
        sink: TelemetrySink | None = None,
    ) -> None:
        self._service = WatsService(transport_factory=transport_factory, sink=sink)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    def list_profiles(self) -> list[Profile]:
        return self._service.list_profiles()

    def list_metrics(self) -> tuple[MetricDescriptor, ...]:
        return self._service.list_metrics()

    def decode_frame(
        self,
        raw: bytes,
        *,
        profile_id: str | None = None,
    ) -> tuple[TextFrame | CapabilityBitmask, CapabilitySet | None]:
        return self._service.decode_frame(raw, profile_id=profile_id)

    @asynccontextmanager
    async def session(
        self,
        address: str,
        *,
        profile_id: str | None = None,
        char_uuid: str | None = None,
        poll_interval_s: float | None = None,
        sink: TelemetrySink | None = None,
    ) -> AsyncIterator[TelemetrySession]:
        async with self._service.open_session(
            address,
            profile_id=profile_id,
            char_uuid=char_uuid,
            poll_interval_s=poll_interval_s,
            sink=sink,
        ) as session:
            yield session
