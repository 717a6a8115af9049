from __future__ import annotations

import asyncio

from watsctl.api import CapabilityBitmask, Client, MetricEvent, TelemetrySession
from watsctl.core import pids


class FakeFactory:
    def __init__(self, device) -> None:
        self.device = device

    def __call__(self, address, spec, on_disconnect):
        return self.device


def test_public_client_list_profiles() -> None:
    client = Client()
    profiles = client.list_profiles()
    assert profiles
    assert any(p.id == "wats" for p in profiles)


def test_public_client_list_metrics_and_decode() -> None:
    client = Client()
    metrics = client.list_metrics()
    assert metrics[11].name == "Engine speed"
    assert metrics[11].code == "0C"

    frame, capabilities = client.decode_frame(bytes([0xFE, 0x00, 0x00, 0x00]))
    assert isinstance(frame, CapabilityBitmask)
    assert capabilities is not None
    assert len(capabilities.supported()) == 7


def test_public_client_session_streams_events(device) -> None:
    device.replies[b"PIDs"] = [pids.encode({"Engine speed": True}).to_bytes()]
    device.replies[b"0C"] = [b"0C 1AF8"]
    events: list[MetricEvent] = []

    class Sink:
        def __init__(self) -> None:
            self.payloads: list[str] = []

        def publish(self, payload: str) -> None:
            self.payloads.append(payload)

    sink = Sink()
    client = Client(transport_factory=FakeFactory(device), sink=sink)

    async def scenario() -> None:
        async with client.session("AA:BB:CC:11:22:33", poll_interval_s=0.05) as session:
            assert isinstance(session, TelemetrySession)
            session.subscribe(events.append)
            session.enable_metric("Engine speed")
            await asyncio.sleep(0.12)

    asyncio.run(scenario())
    assert events
    assert events[0].metric == "Engine speed"
    assert events[0].value == "0C 1AF8"
    assert sink.payloads[0] == "0C 1AF8"
