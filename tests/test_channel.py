"""
Blink-Attend — Frame Channel Tests
===================================
Drop-latest behaviour of the single-slot intake channel.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from attend_channel import FrameChannel
from attend_types import ImagePlane, RawFrame


def _frame(tag: int) -> RawFrame:
    return RawFrame(planes=[ImagePlane(bytes([tag]), 1)], width=1, height=1)


# ─── Test 1: Slot holds one frame; extras are dropped ─────────

def test_full_slot_drops_new_frames():
    async def scenario():
        channel = FrameChannel()
        assert channel.offer(_frame(1)) is True
        assert channel.offer(_frame(2)) is False
        received = await channel.receive()
        return channel, received

    channel, received = asyncio.run(scenario())
    assert received.planes[0].data == b"\x01"
    assert channel.frames_offered == 2
    assert channel.frames_dropped == 1


# ─── Test 2: Busy consumer drops frames ───────────────────────

def test_busy_consumer_drops_frames():
    async def scenario():
        channel = FrameChannel()
        channel.offer(_frame(1))
        await channel.receive()
        assert channel.busy
        dropped = channel.offer(_frame(2))
        channel.task_done()
        accepted = channel.offer(_frame(3))
        return dropped, accepted

    dropped, accepted = asyncio.run(scenario())
    assert dropped is False
    assert accepted is True


# ─── Test 3: Suspended channel drops and drains ───────────────

def test_suspended_channel_drops_frames():
    channel = FrameChannel()
    channel.offer(_frame(1))
    channel.suspend()

    assert channel.suspended
    assert channel.offer(_frame(2)) is False

    channel.resume()
    assert channel.offer(_frame(3)) is True


def test_suspend_discards_pending_frame():
    async def scenario():
        channel = FrameChannel()
        channel.offer(_frame(1))
        channel.suspend()
        channel.resume()
        channel.offer(_frame(2))
        return await channel.receive()

    received = asyncio.run(scenario())
    assert received.planes[0].data == b"\x02"


# ─── Test 4: Close wakes the consumer ─────────────────────────

def test_close_wakes_waiting_consumer():
    async def scenario():
        channel = FrameChannel()
        waiter = asyncio.create_task(channel.receive())
        await asyncio.sleep(0)
        channel.close()
        return await asyncio.wait_for(waiter, timeout=1.0), channel

    received, channel = asyncio.run(scenario())
    assert received is None
    assert channel.offer(_frame(1)) is False


# ─── Test 5: Thread-safe hand-off ─────────────────────────────

def test_offer_threadsafe_from_foreign_thread():
    async def scenario():
        channel = FrameChannel()
        channel.bind(asyncio.get_running_loop())
        producer = threading.Thread(target=channel.offer_threadsafe, args=(_frame(9),))
        producer.start()
        producer.join()
        return await asyncio.wait_for(channel.receive(), timeout=1.0)

    received = asyncio.run(scenario())
    assert received.planes[0].data == b"\x09"


def test_offer_threadsafe_without_loop_drops():
    channel = FrameChannel()
    channel.offer_threadsafe(_frame(1))
    assert channel.frames_dropped == 1


# ─── Test 6: Rebinding to a new event loop ────────────────────

def test_channel_reusable_across_event_loops():
    channel = FrameChannel()

    async def scenario(tag):
        channel.bind(asyncio.get_running_loop())
        consumer = asyncio.create_task(channel.receive())
        # Consumer must be parked on the queue before the offer lands.
        await asyncio.sleep(0)
        channel.offer(_frame(tag))
        frame = await asyncio.wait_for(consumer, timeout=1.0)
        channel.task_done()
        return frame

    first = asyncio.run(scenario(1))
    second = asyncio.run(scenario(2))

    assert first.planes[0].data == b"\x01"
    assert second.planes[0].data == b"\x02"
    assert channel.frames_dropped == 0
