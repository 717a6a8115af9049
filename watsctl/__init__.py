"""Bridge OBD-II telemetry from a BLE GATT characteristic to a telemetry sink."""

__version__ = "0.1.0"
