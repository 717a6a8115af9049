"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import importlib.util
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace

from watsctl.core import pids
from watsctl.core.errors import ProfileLoadError, ProtocolError
from watsctl.core.frames import decode_strict
from watsctl.core.model import CapabilityBitmask, CapabilitySet, MetricDescriptor, Profile, TextFrame, TransportSpec
from watsctl.core.profile_loader import load_profiles
from watsctl.core.session import TelemetrySession
from watsctl.transports.base import ConnectableTransport, TelemetrySink
from watsctl.transports.ble_gatt import BLEGATTTransport

DEFAULT_PROFILE_ID = "wats"
LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[str, TransportSpec, Callable[[], None]], ConnectableTransport]


def _ble_transport(address: str, spec: TransportSpec, on_disconnect: Callable[[], None]) -> ConnectableTransport:
    return BLEGATTTransport(
        address,
        char_uuid=spec.char_uuid,
        write_with_response=spec.write_with_response,
        connect_timeout_s=spec.connect_timeout_s,
        on_disconnect=on_disconnect,
    )


class WatsService:
    def __init__(
        self,
        *,
        transport_factory: TransportFactory | None = None,
        sink: TelemetrySink | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.runtime_warnings = _runtime_warnings()
        self.transport_factory = transport_factory or _ble_transport
        self.sink = sink

    def list_profiles(self) -> list[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def list_metrics(self) -> tuple[MetricDescriptor, ...]:
        return pids.METRICS

    def resolve_profile(self, profile_id: str | None = None) -> Profile:
        if profile_id is None:
            if DEFAULT_PROFILE_ID in self.profiles:
                return self.profiles[DEFAULT_PROFILE_ID]
            if len(self.profiles) == 1:
                return next(iter(self.profiles.values()))
            raise ProfileLoadError("Multiple profiles available. Use --profile to choose one.")

        profile = self.profiles.get(profile_id)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "<none>"
            raise ProfileLoadError(f"Unknown profile '{profile_id}'. Available: {available}")
        return profile

    def decode_frame(
        self,
        raw: bytes,
        *,
        profile_id: str | None = None,
    ) -> tuple[TextFrame | CapabilityBitmask, CapabilitySet | None]:
        """Decode a captured buffer offline; bitmasks are also interpreted."""
        profile = self.resolve_profile(profile_id)
        frame = decode_strict(raw, bitmask_policy=profile.protocol.bitmask_policy)
        if isinstance(frame, CapabilityBitmask):
            return frame, pids.interpret(frame)
        return frame, None

    @asynccontextmanager
    async def open_session(
        self,
        address: str,
        *,
        profile_id: str | None = None,
        char_uuid: str | None = None,
        poll_interval_s: float | None = None,
        sink: TelemetrySink | None = None,
    ) -> AsyncIterator[TelemetrySession]:
        """Connect, run the capability handshake, and tear everything down on exit.

        A handshake answered with text does not end the session: it is yielded
        blocked, and `get_capabilities` raises ProtocolError until a bitmask
        arrives.
        """
        profile = self.resolve_profile(profile_id)
        transport_spec = profile.transport
        if char_uuid is not None:
            transport_spec = replace(transport_spec, char_uuid=char_uuid.strip().lower())
        protocol = profile.protocol
        if poll_interval_s is not None:
            protocol = replace(protocol, poll_interval_s=poll_interval_s)

        session: TelemetrySession | None = None

        def _on_disconnect() -> None:
            if session is not None:
                session.handle_disconnect()

        transport = self.transport_factory(address, transport_spec, _on_disconnect)
        await transport.connect()
        try:
            session = TelemetrySession(transport, sink=sink or self.sink, protocol=protocol)
            try:
                await session.start()
            except ProtocolError as exc:
                LOGGER.info("session for %s is waiting for a capability bitmask: %s", address, exc)
            yield session
        finally:
            if session is not None:
                await session.close()
            await transport.disconnect()


def _runtime_warnings() -> tuple[str, ...]:
    warnings: list[str] = []
    if importlib.util.find_spec("bleak") is None:
        warnings.append("Python package 'bleak' is not installed; BLE sessions will fail.")
    return tuple(warnings)
