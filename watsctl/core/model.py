"""Core data models used across decoder, correlator, session, and CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class TextFrame:
    text: str


@dataclass(frozen=True)
class CapabilityBitmask:
    """32 PID-support flags, MSB-first as transmitted by the device."""

    bits: str

    @property
    def value(self) -> int:
        return int(self.bits, 2)

    def to_bytes(self) -> bytes:
        return self.value.to_bytes(4, "big")


@dataclass(frozen=True)
class MalformedFrame:
    reason: str
    raw: bytes = b""


DecodedFrame = Union[TextFrame, CapabilityBitmask, MalformedFrame]


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    code: str
    position: int

    @property
    def bit(self) -> int:
        return 31 - self.position


@dataclass(frozen=True)
class CapabilitySet(Mapping[str, bool]):
    """Supported/unsupported flag for each of the 32 table metrics, in table order."""

    flags: tuple[tuple[str, bool], ...]

    def __getitem__(self, name: str) -> bool:
        for metric, supported in self.flags:
            if metric == name:
                return supported
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return (metric for metric, _ in self.flags)

    def __len__(self) -> int:
        return len(self.flags)

    def is_supported(self, name: str) -> bool:
        return self.get(name, False)

    def supported(self) -> tuple[str, ...]:
        return tuple(metric for metric, flag in self.flags if flag)


@dataclass(frozen=True)
class MetricEvent:
    metric: str
    value: str
    timestamp: float


@dataclass
class PendingRequest:
    code: str
    sent_at: float
    future: asyncio.Future[DecodedFrame]
    expects_bitmask: bool = False

    def matches(self, frame: DecodedFrame) -> bool:
        if self.expects_bitmask:
            return isinstance(frame, (TextFrame, CapabilityBitmask))
        return isinstance(frame, TextFrame) and frame.text.startswith(self.code)


@dataclass
class PollingJob:
    metric: MetricDescriptor
    interval_s: float
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def code(self) -> str:
        return self.metric.code


@dataclass(frozen=True)
class TransportSpec:
    type: str
    char_uuid: str | None = None
    write_with_response: bool = True
    connect_timeout_s: float = 10.0


@dataclass(frozen=True)
class ProtocolSpec:
    capability_query: str = "PIDs"
    response_timeout_s: float = 2.0
    poll_interval_s: float = 1.0
    bitmask_policy: str = "length"


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    transport: TransportSpec
    protocol: ProtocolSpec = ProtocolSpec()
