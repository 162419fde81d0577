"""Tests for engine.pipeline — transform contract, timing stats, failure tracking."""

import threading
from unittest.mock import patch

import numpy as np
import pytest

from bravetone.effects import duotone
from bravetone.engine.buffer import InvalidBufferError, PixelBuffer
from bravetone.engine.params import TransformParameters
from bravetone.engine.pipeline import (
    flush_timing,
    get_health,
    get_transform_stats,
    reset_health,
    transform,
    transform_frame,
)
from bravetone.engine.tiles import TransformCancelled


@pytest.fixture(autouse=True)
def _clean_state():
    flush_timing()
    reset_health()
    yield
    flush_timing()
    reset_health()


def test_transform_buffer_contract(random_frame):
    buf = PixelBuffer.from_array(random_frame)
    out = transform(buf, {"contrast": 120})
    assert isinstance(out, PixelBuffer)
    assert (out.width, out.height) == (buf.width, buf.height)
    assert len(out.data) == len(buf.data)
    assert out is not buf
    np.testing.assert_array_equal(out.to_array()[:, :, 3], random_frame[:, :, 3])


def test_transform_matches_effect_apply(random_frame):
    params = TransformParameters(pink_intensity=40, brightness=115)
    expected = duotone.apply(random_frame, params)
    result = transform_frame(random_frame, params, workers=3, rows_per_tile=7)
    np.testing.assert_array_equal(result, expected)


def test_transform_defaults_when_params_none(random_frame):
    a = transform_frame(random_frame, None)
    b = transform_frame(random_frame, TransformParameters())
    np.testing.assert_array_equal(a, b)


def test_out_of_domain_clamped_not_rejected(random_frame):
    clamped = transform_frame(random_frame, {"contrast": 999, "pink_intensity": -3})
    in_domain = transform_frame(random_frame, {"contrast": 150, "pink_intensity": 0})
    np.testing.assert_array_equal(clamped, in_domain)


def test_input_buffer_untouched(random_frame):
    buf = PixelBuffer.from_array(random_frame)
    before = bytes(buf.data)
    transform(buf, None)
    assert buf.data == before


def test_invalid_buffer_raises_before_work():
    buf = PixelBuffer(width=4, height=4, data=bytes(10))
    with pytest.raises(InvalidBufferError):
        transform(buf)
    assert get_transform_stats() == {}


def test_invalid_frame_raises():
    with pytest.raises(InvalidBufferError):
        transform_frame(np.zeros((4, 4, 3), dtype=np.uint8))


def test_cancel_propagates_without_failure_count(random_frame):
    event = threading.Event()
    event.set()
    with pytest.raises(TransformCancelled):
        transform_frame(random_frame, cancel_event=event, workers=1)
    assert get_health()["failure_counts"].get(duotone.EFFECT_ID, 0) == 0


def test_timing_recorded(random_frame):
    for _ in range(3):
        transform_frame(random_frame)
    stats = get_transform_stats()[duotone.EFFECT_ID]
    assert stats["samples"] == 3
    assert stats["p95"] is None
    assert stats["max"] >= stats["p50"] >= 0


def test_flush_timing(random_frame):
    transform_frame(random_frame)
    flush_timing()
    assert get_transform_stats() == {}


def test_failure_counted_and_reraised(random_frame):
    with patch.object(duotone, "apply", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError, match="boom"):
            transform_frame(random_frame, workers=1)
    assert get_health()["failure_counts"][duotone.EFFECT_ID] == 1


def test_success_resets_failure_count(random_frame):
    with patch.object(duotone, "apply", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            transform_frame(random_frame, workers=1)
    with patch("bravetone.engine.pipeline.sentry_sdk.add_breadcrumb") as crumb:
        transform_frame(random_frame, workers=1)
    crumb.assert_called_once()
    assert get_health()["failure_counts"][duotone.EFFECT_ID] == 0


def test_slow_transform_warns(random_frame, caplog):
    with patch("bravetone.engine.pipeline.TRANSFORM_WARN_MS", -1):
        with caplog.at_level("WARNING", logger="bravetone.engine.pipeline"):
            transform_frame(random_frame, workers=1)
    assert any("warn threshold" in r.message for r in caplog.records)
