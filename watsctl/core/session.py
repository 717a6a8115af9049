"""Telemetry session: capability handshake, metric selection, and event fan-out."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from watsctl.core import pids
from watsctl.core.correlator import Correlator
from watsctl.core.errors import MetricSelectionError, ProtocolError, TransportError
from watsctl.core.model import CapabilityBitmask, CapabilitySet, MetricDescriptor, MetricEvent, ProtocolSpec
from watsctl.core.scheduler import PollingScheduler
from watsctl.sinks import LoggingSink
from watsctl.transports.base import TelemetrySink, Transport

LOGGER = logging.getLogger(__name__)

EventListener = Callable[[MetricEvent], None]


class TelemetrySession:
    """State for one connection: the correlator/scheduler pair plus capabilities."""

    def __init__(
        self,
        transport: Transport,
        *,
        sink: TelemetrySink | None = None,
        protocol: ProtocolSpec | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.protocol = protocol or ProtocolSpec()
        self._sink = sink or LoggingSink()
        self._clock = clock
        self.correlator = Correlator(
            transport,
            timeout_s=self.protocol.response_timeout_s,
            bitmask_policy=self.protocol.bitmask_policy,
        )
        self.correlator.add_capability_listener(self._on_capability_bitmask)
        self.scheduler = PollingScheduler(
            self.correlator,
            interval_s=self.protocol.poll_interval_s,
            on_response=self._on_response,
            on_transport_error=self._on_transport_error,
        )
        self._capabilities: CapabilitySet | None = None
        self._handshake_error: ProtocolError | None = None
        self._listeners: list[EventListener] = []
        self._closed = asyncio.Event()
        self._close_task: asyncio.Task[None] | None = None
        self.close_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def active_metrics(self) -> tuple[str, ...]:
        return self.scheduler.active

    async def start(self) -> CapabilitySet:
        await self.correlator.start()
        return await self.refresh_capabilities()

    async def refresh_capabilities(self) -> CapabilitySet:
        """Issue the capability query; the answer must be a bitmask."""
        frame = await self.correlator.send(self.protocol.capability_query, expect_bitmask=True)
        if not isinstance(frame, CapabilityBitmask):
            error = ProtocolError(
                f"Capability query '{self.protocol.capability_query}' was answered with text "
                f"{frame.text!r}; metric selection is blocked until a capability bitmask arrives."
            )
            LOGGER.warning("%s", error)
            if self._capabilities is None:
                self._handshake_error = error
            raise error
        self._adopt(frame)
        return self.get_capabilities()

    def get_capabilities(self) -> CapabilitySet:
        if self._capabilities is None:
            raise self._blocked_error()
        return self._capabilities

    def enable_metric(self, name: str) -> MetricDescriptor:
        capabilities = self.get_capabilities()
        self._ensure_open()
        metric = pids.lookup(name)
        if not capabilities.is_supported(metric.name):
            raise MetricSelectionError(f"Metric '{metric.name}' ({metric.code}) is not supported by this vehicle.")
        self.scheduler.enable(metric)
        return metric

    def disable_metric(self, name: str) -> bool:
        self.get_capabilities()
        metric = pids.lookup(name)
        return self.scheduler.disable(metric.name)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def close(self, reason: str = "session closed") -> None:
        if self.close_reason is not None:
            await self._closed.wait()
            return
        self.close_reason = reason
        LOGGER.info("closing session: %s", reason)
        self.scheduler.stop_all()
        await self.correlator.close(reason)
        self._closed.set()

    def handle_disconnect(self, reason: str = "device disconnected") -> None:
        """Schedule teardown from a transport callback."""
        if self._close_task is None and not self._closed.is_set():
            self._close_task = asyncio.ensure_future(self.close(reason))

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _ensure_open(self) -> None:
        if self._closed.is_set() or self.correlator.closed:
            raise MetricSelectionError(f"Session is closed: {self.close_reason or 'closing'}")

    def _blocked_error(self) -> Exception:
        if self._handshake_error is not None:
            return ProtocolError(str(self._handshake_error))
        return MetricSelectionError("Capabilities are not known yet; the handshake has not completed.")

    def _adopt(self, bitmask: CapabilityBitmask) -> None:
        capabilities = pids.interpret(bitmask)
        if self._capabilities is None:
            self._capabilities = capabilities
            self._handshake_error = None
            LOGGER.info("vehicle supports %d of %d metrics", len(capabilities.supported()), len(capabilities))
        elif capabilities != self._capabilities:
            LOGGER.warning("Ignoring capability bitmask %s: capabilities are fixed for the session", bitmask.bits)

    def _on_capability_bitmask(self, bitmask: CapabilityBitmask) -> None:
        if self._capabilities is None:
            LOGGER.info("capability bitmask received outside the handshake")
        self._adopt(bitmask)

    def _on_response(self, metric: MetricDescriptor, text: str) -> None:
        event = MetricEvent(metric=metric.name, value=text, timestamp=self._clock())
        try:
            self._sink.publish(text)
        except Exception:
            LOGGER.exception("Telemetry sink failed to publish %s", metric.name)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Event listener failed for %s", metric.name)

    def _on_transport_error(self, exc: TransportError) -> None:
        self.handle_disconnect(f"transport failure: {exc}")
