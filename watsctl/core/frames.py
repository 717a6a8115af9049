"""Classification of raw notification buffers into decoded frames."""

from __future__ import annotations

from watsctl.core.errors import MalformedFrameError
from watsctl.core.model import CapabilityBitmask, DecodedFrame, MalformedFrame, TextFrame

BITMASK_LENGTH = 4
BITMASK_POLICIES = ("length", "binary")


def _looks_like_text(buffer: bytes) -> bool:
    return all(0x20 <= byte < 0x7F for byte in buffer)


def _is_bitmask(buffer: bytes, policy: str) -> bool:
    if len(buffer) != BITMASK_LENGTH:
        return False
    if policy == "binary":
        return not _looks_like_text(buffer)
    return True


def decode(buffer: bytes, *, bitmask_policy: str = "length") -> DecodedFrame:
    """Classify a notification buffer.

    With the ``length`` policy every 4-byte buffer is a capability bitmask.
    The ``binary`` policy lets a 4-byte buffer of printable ASCII through as
    text, for devices that send short replies such as ``"0C41"``.
    """
    if bitmask_policy not in BITMASK_POLICIES:
        return MalformedFrame(reason=f"unknown bitmask policy '{bitmask_policy}'", raw=bytes(buffer))

    raw = bytes(buffer)
    if _is_bitmask(raw, bitmask_policy):
        return CapabilityBitmask(bits="".join(format(byte, "08b") for byte in raw))

    try:
        return TextFrame(text=raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        return MalformedFrame(reason=f"invalid UTF-8: {exc.reason} at byte {exc.start}", raw=raw)


def decode_strict(buffer: bytes, *, bitmask_policy: str = "length") -> TextFrame | CapabilityBitmask:
    frame = decode(buffer, bitmask_policy=bitmask_policy)
    if isinstance(frame, MalformedFrame):
        raise MalformedFrameError(f"Undecodable frame {frame.raw.hex() or '<empty>'}: {frame.reason}")
    return frame
