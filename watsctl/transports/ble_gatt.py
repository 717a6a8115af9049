"""BLE GATT transport implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from watsctl.core.errors import TransportConnectError, TransportSendError
from watsctl.transports.base import NotificationCallback

LOGGER = logging.getLogger(__name__)


class BLEGATTTransport:
    """Persistent link to one read/write/notify characteristic.

    When ``char_uuid`` is not given, the first characteristic offering both
    notify and write is used.
    """

    def __init__(
        self,
        address: str,
        *,
        char_uuid: str | None = None,
        write_with_response: bool = True,
        connect_timeout_s: float = 10.0,
        on_disconnect: Callable[[], None] | None = None,
    ) -> None:
        self.address = address
        self.char_uuid = char_uuid
        self.write_with_response = write_with_response
        self.connect_timeout_s = connect_timeout_s
        self._on_disconnect = on_disconnect
        self._client: Any = None
        self._notifying = False

    @property
    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.is_connected)

    async def connect(self) -> None:
        try:
            from bleak import BleakClient  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc

        client = BleakClient(
            self.address,
            timeout=self.connect_timeout_s,
            disconnected_callback=self._handle_disconnect,
        )
        try:
            await client.connect()
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {self.address}: {exc}") from exc
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {self.address}")

        self._client = client
        if self.char_uuid is None:
            try:
                self.char_uuid = _pick_characteristic(client.services)
            except TransportConnectError:
                await self.disconnect()
                raise
        LOGGER.info("connected to %s, characteristic %s", self.address, self.char_uuid)

    async def write(self, data: bytes) -> None:
        client = self._require_client()
        try:
            await client.write_gatt_char(self.char_uuid, data, response=self.write_with_response)
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc

    async def subscribe(self, callback: NotificationCallback) -> None:
        client = self._require_client()

        def _notify_handler(_: Any, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await client.start_notify(self.char_uuid, _notify_handler)
        except Exception as exc:
            raise TransportConnectError(f"Could not enable notifications on {self.char_uuid}: {exc}") from exc
        self._notifying = True

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        if self._notifying and client.is_connected:
            try:
                await client.stop_notify(self.char_uuid)
            except Exception as exc:
                LOGGER.debug("stop_notify failed during disconnect: %s", exc)
        self._notifying = False
        try:
            await client.disconnect()
        except Exception as exc:
            LOGGER.debug("disconnect from %s failed: %s", self.address, exc)

    def _require_client(self) -> Any:
        if self._client is None or not self._client.is_connected:
            raise TransportSendError(f"Not connected to {self.address}")
        return self._client

    def _handle_disconnect(self, _: Any) -> None:
        LOGGER.warning("BLE device %s disconnected", self.address)
        if self._on_disconnect is not None:
            self._on_disconnect()


def _pick_characteristic(services: Any) -> str:
    for service in services:
        for char in service.characteristics:
            props = set(char.properties)
            if "notify" in props and props & {"write", "write-without-response"}:
                return str(char.uuid)
    raise TransportConnectError(
        "No characteristic offers both write and notify. Set transport.char_uuid in the profile."
    )
