from __future__ import annotations

import asyncio

import pytest

from watsctl.core.correlator import Correlator
from watsctl.core.errors import DisconnectedError, ResponseTimeoutError, TransportSendError
from watsctl.core.model import CapabilityBitmask, TextFrame

BITMASK = b"\xbe\x1f\xa8\x13"


async def _started(device, **kwargs) -> Correlator:
    correlator = Correlator(device, **kwargs)
    await correlator.start()
    return correlator


def test_send_resolves_with_matching_text(device) -> None:
    device.replies[b"0C"] = [b"0C 1AF8"]

    async def scenario() -> TextFrame:
        correlator = await _started(device)
        try:
            return await correlator.send("0C")
        finally:
            await correlator.close()

    assert asyncio.run(scenario()) == TextFrame(text="0C 1AF8")
    assert device.writes == [b"0C"]


def test_text_for_another_code_is_ignored(device) -> None:
    device.replies[b"0C"] = [b"0D 32", b"0C 0FA0"]

    async def scenario() -> TextFrame:
        correlator = await _started(device)
        try:
            return await correlator.send("0C")
        finally:
            await correlator.close()

    assert asyncio.run(scenario()).text == "0C 0FA0"


def test_bitmask_while_text_pending_goes_to_capability_listener(device) -> None:
    device.replies[b"0C"] = [BITMASK, b"0C 0FA0"]
    seen: list[CapabilityBitmask] = []

    async def scenario() -> TextFrame:
        correlator = await _started(device)
        correlator.add_capability_listener(seen.append)
        try:
            return await correlator.send("0C")
        finally:
            await correlator.close()

    assert asyncio.run(scenario()).text == "0C 0FA0"
    assert seen == [CapabilityBitmask(bits="10111110000111111010100000010011")]


def test_malformed_frame_does_not_disturb_pending_request(device) -> None:
    device.replies[b"0D"] = [b"\xff\xfe\xfd", b"0D 32"]

    async def scenario() -> TextFrame:
        correlator = await _started(device)
        try:
            return await correlator.send("0D")
        finally:
            await correlator.close()

    assert asyncio.run(scenario()).text == "0D 32"


def test_empty_notification_does_not_answer_metric_request(device) -> None:
    device.replies[b"0D"] = [b"", b"0D 32"]

    async def scenario() -> TextFrame:
        correlator = await _started(device)
        try:
            return await correlator.send("0D")
        finally:
            await correlator.close()

    assert asyncio.run(scenario()).text == "0D 32"


def test_capability_query_resolves_with_first_frame(device) -> None:
    device.replies[b"PIDs"] = [b"NO DATA"]

    async def scenario():
        correlator = await _started(device)
        try:
            return await correlator.send("PIDs", expect_bitmask=True)
        finally:
            await correlator.close()

    assert asyncio.run(scenario()) == TextFrame(text="NO DATA")


def test_send_times_out_instead_of_hanging(device) -> None:
    async def scenario(correlator_box: list[Correlator]) -> None:
        correlator = await _started(device, timeout_s=0.05)
        correlator_box.append(correlator)
        try:
            await correlator.send("0C")
        finally:
            await correlator.close()

    box: list[Correlator] = []
    with pytest.raises(ResponseTimeoutError) as exc:
        asyncio.run(asyncio.wait_for(scenario(box), timeout=2.0))

    assert isinstance(exc.value, TimeoutError)
    assert box[0].pending is None
    assert not box[0].busy


def test_stalled_write_times_out_and_releases_lock(device) -> None:
    device.stall_writes = True
    device.replies[b"0D"] = [b"0D 32"]

    async def scenario() -> tuple[Correlator, TextFrame]:
        correlator = await _started(device, timeout_s=0.05)
        with pytest.raises(ResponseTimeoutError):
            await correlator.send("0C")
        device.stall_writes = False
        follow_up = await correlator.send("0D")
        await correlator.close()
        return correlator, follow_up

    correlator, follow_up = asyncio.run(asyncio.wait_for(scenario(), timeout=2.0))
    assert follow_up == TextFrame(text="0D 32")
    assert device.writes == [b"0D"]
    assert not correlator.busy
    assert correlator.pending is None


def test_sends_are_serialized(device) -> None:
    async def scenario() -> list[list[bytes]]:
        correlator = await _started(device)
        snapshots: list[list[bytes]] = []
        first = asyncio.create_task(correlator.send("0C"))
        second = asyncio.create_task(correlator.send("0D"))
        await asyncio.sleep(0.01)
        snapshots.append(list(device.writes))

        device.notify(b"0C 0FA0")
        assert (await first).text == "0C 0FA0"
        await asyncio.sleep(0.01)
        snapshots.append(list(device.writes))

        device.notify(b"0D 32")
        assert (await second).text == "0D 32"
        await correlator.close()
        return snapshots

    before, after = asyncio.run(scenario())
    assert before == [b"0C"]
    assert after == [b"0C", b"0D"]


def test_cancelled_caller_does_not_abort_written_request(device) -> None:
    async def scenario() -> list[bytes]:
        correlator = await _started(device)
        caller = asyncio.create_task(correlator.send("0C"))
        await asyncio.sleep(0.01)
        caller.cancel()
        follow_up = asyncio.create_task(correlator.send("0D"))
        await asyncio.sleep(0.01)
        assert device.writes == [b"0C"]
        assert correlator.pending is not None and correlator.pending.code == "0C"

        device.notify(b"0C 0FA0")
        await asyncio.sleep(0.01)
        device.notify(b"0D 32")
        result = await follow_up
        await correlator.close()
        assert caller.cancelled()
        return [result.text.encode()]

    assert asyncio.run(scenario()) == [b"0D 32"]
    assert device.writes == [b"0C", b"0D"]


def test_cancelled_queued_caller_never_writes(device) -> None:
    async def scenario() -> None:
        correlator = await _started(device)
        first = asyncio.create_task(correlator.send("0C"))
        queued = asyncio.create_task(correlator.send("0D"))
        await asyncio.sleep(0.01)
        queued.cancel()
        device.notify(b"0C 0FA0")
        await first
        await asyncio.sleep(0.01)
        await correlator.close()

    asyncio.run(scenario())
    assert device.writes == [b"0C"]


def test_close_fails_outstanding_and_queued_requests(device) -> None:
    async def scenario() -> list[BaseException | TextFrame]:
        correlator = await _started(device, timeout_s=5.0)
        sends = [asyncio.create_task(correlator.send(code)) for code in ("0C", "0D")]
        await asyncio.sleep(0.01)
        await correlator.close("device disconnected")
        return await asyncio.gather(*sends, return_exceptions=True)

    results = asyncio.run(asyncio.wait_for(scenario(), timeout=2.0))
    assert len(results) == 2
    assert all(isinstance(r, DisconnectedError) for r in results)
    assert device.writes == [b"0C"]


def test_send_after_close_raises(device) -> None:
    async def scenario() -> None:
        correlator = await _started(device)
        await correlator.close()
        await correlator.send("0C")

    with pytest.raises(DisconnectedError):
        asyncio.run(scenario())
    assert device.writes == []


def test_write_failure_propagates_and_releases_lock(device) -> None:
    device.fail_writes = True

    async def scenario() -> Correlator:
        correlator = await _started(device)
        with pytest.raises(TransportSendError):
            await correlator.send("0C")
        await correlator.close()
        return correlator

    correlator = asyncio.run(scenario())
    assert not correlator.busy
    assert correlator.pending is None
