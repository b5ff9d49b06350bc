"""
Blink-Attend — Capture & Embedding Pipeline Tests
==================================================
Intake suspension, failure recovery, re-entrancy guard and timeouts.
Camera and embedder are mocks.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from attend_capture import CapturePipeline, call_with_timeout
from attend_channel import FrameChannel
from attend_errors import CameraError, CaptureFailed, EmbeddingFailed, ModelError
from attend_types import CapturedImage


def _make_pipeline(picture=None, embedding="0.1,0.2", timeout=None):
    camera = MagicMock()
    camera.take_picture = AsyncMock(return_value=picture or CapturedImage(path="captures/a.jpg"))
    embedder = MagicMock()
    embedder.generate_embedding = AsyncMock(return_value=embedding)
    channel = FrameChannel()
    return CapturePipeline(camera, embedder, channel, timeout=timeout), camera, embedder, channel


# ─── Test 1: Successful capture keeps intake suspended ────────

def test_successful_capture_returns_outcome():
    pipeline, camera, embedder, channel = _make_pipeline()

    outcome = asyncio.run(pipeline.run())

    assert outcome.image.path == "captures/a.jpg"
    assert outcome.embedding == "0.1,0.2"
    camera.stop_stream.assert_called_once()
    camera.start_stream.assert_not_called()
    assert channel.suspended
    assert not pipeline.in_flight
    embedder.generate_embedding.assert_awaited_once_with(outcome.image)


# ─── Test 2: Capture failure resumes intake ───────────────────

def test_camera_failure_raises_capture_failed_and_resumes():
    pipeline, camera, embedder, channel = _make_pipeline()
    camera.take_picture.side_effect = CameraError("Could not capture an image. Please try again.")

    with pytest.raises(CaptureFailed) as info:
        asyncio.run(pipeline.run())

    assert info.value.user_message == "Could not capture an image. Please try again."
    camera.start_stream.assert_called_once_with(channel.offer_threadsafe)
    assert not channel.suspended
    assert not pipeline.in_flight
    embedder.generate_embedding.assert_not_called()


def test_embedding_failure_raises_embedding_failed_and_resumes():
    pipeline, camera, embedder, channel = _make_pipeline()
    embedder.generate_embedding.side_effect = ModelError(log_message="onnx blew up")

    with pytest.raises(EmbeddingFailed):
        asyncio.run(pipeline.run())

    camera.start_stream.assert_called_once()
    assert not channel.suspended


def test_unexpected_exception_is_wrapped():
    pipeline, camera, _, _ = _make_pipeline()
    camera.take_picture.side_effect = OSError("disk full")

    with pytest.raises(CaptureFailed) as info:
        asyncio.run(pipeline.run())
    assert isinstance(info.value.__cause__, OSError)


# ─── Test 3: Re-entrant call is a no-op ───────────────────────

def test_reentrant_capture_is_noop():
    async def scenario():
        release = asyncio.Event()
        pipeline, camera, _, _ = _make_pipeline()

        async def slow_picture():
            await release.wait()
            return CapturedImage(path="captures/slow.jpg")

        camera.take_picture = MagicMock(side_effect=slow_picture)
        first = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0)
        assert pipeline.in_flight
        second = await pipeline.run()
        release.set()
        return await first, second, camera

    first, second, camera = asyncio.run(scenario())
    assert second is None
    assert first.image.path == "captures/slow.jpg"
    assert camera.take_picture.call_count == 1


# ─── Test 4: Timeouts ─────────────────────────────────────────

def test_timeout_maps_to_error_type():
    async def never():
        await asyncio.sleep(10)

    with pytest.raises(EmbeddingFailed):
        asyncio.run(call_with_timeout(never(), 0.01, EmbeddingFailed))


def test_no_timeout_passes_value_through():
    async def value():
        return 42

    assert asyncio.run(call_with_timeout(value(), None, CaptureFailed)) == 42


def test_same_error_type_propagates_unchanged():
    original = CaptureFailed("custom message")

    async def failing():
        raise original

    with pytest.raises(CaptureFailed) as info:
        asyncio.run(call_with_timeout(failing(), None, CaptureFailed))
    assert info.value is original
