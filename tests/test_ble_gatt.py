from __future__ import annotations

import asyncio
import sys
from types import SimpleNamespace

import pytest

from watsctl.core.errors import TransportConnectError, TransportSendError
from watsctl.transports.ble_gatt import BLEGATTTransport, _pick_characteristic


def _service(*chars):
    return SimpleNamespace(characteristics=[SimpleNamespace(uuid=uuid, properties=props) for uuid, props in chars])


def test_missing_bleak_raises_clean_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "bleak", None)

    transport = BLEGATTTransport("AA:BB:CC:11:22:33")
    with pytest.raises(TransportConnectError, match="requires 'bleak'"):
        asyncio.run(transport.connect())


def test_write_before_connect_is_send_error() -> None:
    transport = BLEGATTTransport("AA:BB:CC:11:22:33", char_uuid="ffe1")
    with pytest.raises(TransportSendError, match="Not connected"):
        asyncio.run(transport.write(b"PIDs"))
    assert not transport.is_connected


def test_pick_characteristic_prefers_notify_and_write() -> None:
    services = [
        _service(("00002a00-0000-1000-8000-00805f9b34fb", ["read"])),
        _service(
            ("6e400002-b5a3-f393-e0a9-e50e24dcca9e", ["write-without-response"]),
            ("6e400003-b5a3-f393-e0a9-e50e24dcca9e", ["notify"]),
            ("0000ffe1-0000-1000-8000-00805f9b34fb", ["read", "notify", "write"]),
        ),
    ]
    assert _pick_characteristic(services) == "0000ffe1-0000-1000-8000-00805f9b34fb"


def test_pick_characteristic_without_candidate_raises() -> None:
    services = [_service(("6e400003-b5a3-f393-e0a9-e50e24dcca9e", ["notify"]))]
    with pytest.raises(TransportConnectError, match="char_uuid"):
        _pick_characteristic(services)


def test_disconnect_callback_is_forwarded() -> None:
    calls: list[str] = []
    transport = BLEGATTTransport("AA:BB:CC:11:22:33", on_disconnect=lambda: calls.append("gone"))
    transport._handle_disconnect(object())
    assert calls == ["gone"]
