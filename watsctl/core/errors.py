"""Domain-specific errors for watsctl."""


class WatsctlError(Exception):
    """Base error for watsctl."""


class ProfileValidationError(WatsctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(WatsctlError):
    """Raised when loading profile sources fails."""


class MetricSelectionError(WatsctlError):
    """Raised when a metric cannot be enabled or disabled."""


class MalformedFrameError(WatsctlError):
    """Raised when a received buffer cannot be decoded."""


class ProtocolError(WatsctlError):
    """Raised when the device answers the capability query with text."""


class ResponseTimeoutError(WatsctlError, TimeoutError):
    """Raised when no matching response arrives within the timeout window."""


class TransportError(WatsctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE connect failures."""


class TransportSendError(TransportError):
    """Raised when writing to the characteristic fails."""


class DisconnectedError(TransportError):
    """Raised for requests still outstanding when the session ends."""
