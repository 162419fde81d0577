"""Transform pipeline — validates, clamps, fans out tiles, records timing.

Includes rolling timing stats and a slow-transform warning.
Includes conditional breadcrumbs after earlier failures.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from functools import partial

import numpy as np
import sentry_sdk

from bravetone.effects import duotone
from bravetone.engine.buffer import PixelBuffer, validate_frame
from bravetone.engine.params import TransformParameters, coerce_params
from bravetone.engine.tiles import TransformCancelled, run_tiled

logger = logging.getLogger(__name__)

# Transform timing threshold (milliseconds)
TRANSFORM_WARN_MS = 250

# Failure tracking (server thread + direct callers)
_health_lock = threading.Lock()
_failure_counts: dict[str, int] = defaultdict(int)

# Rolling timing stats per effect
_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def _record_failure(effect_id: str) -> int:
    with _health_lock:
        _failure_counts[effect_id] += 1
        return _failure_counts[effect_id]


def _record_success(effect_id: str):
    with _health_lock:
        _failure_counts[effect_id] = 0


def get_health() -> dict:
    """Side-channel: consecutive failure counts."""
    with _health_lock:
        return {"failure_counts": dict(_failure_counts)}


def reset_health():
    with _health_lock:
        _failure_counts.clear()


def record_timing(effect_id: str, elapsed_ms: float):
    """Record a timing sample."""
    _timing[effect_id].append(elapsed_ms)


def get_transform_stats() -> dict[str, dict]:
    """Return p50/p95/max/slow_rate per effect."""
    result = {}
    for eid, samples in _timing.items():
        s = sorted(samples)
        result[eid] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "slow_rate": (
                sum(1 for t in s if t > TRANSFORM_WARN_MS) / len(s) if s else 0
            ),
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    _timing.clear()


def transform_frame(
    frame: np.ndarray,
    params: TransformParameters | dict | None = None,
    *,
    workers: int | None = None,
    rows_per_tile: int | None = None,
    cancel_event: threading.Event | None = None,
) -> np.ndarray:
    """Recolor an (H, W, 4) uint8 frame into the pink/green duotone.

    Args:
        frame:          Input RGBA frame. Not modified.
        params:         TransformParameters, a dict of dials, or None for defaults.
                        Out-of-domain dials are clamped.
        workers:        Tile threads (see engine.tiles.run_tiled).
        rows_per_tile:  Tile height (see engine.tiles.run_tiled).
        cancel_event:   Checked between tiles.

    Returns:
        New (H, W, 4) uint8 frame with the input's alpha.

    Raises:
        InvalidBufferError: If frame is not a non-empty (H, W, 4) uint8 array.
        TransformCancelled: If cancel_event fires before all tiles finish.
    """
    validate_frame(frame)
    resolved = coerce_params(params)
    effect_id = duotone.EFFECT_ID

    with _health_lock:
        prior_failures = _failure_counts.get(effect_id, 0)
    if prior_failures > 0:
        sentry_sdk.add_breadcrumb(
            category="transform",
            message=f"Processing {effect_id} (prior failures: {prior_failures})",
            data={"shape": list(frame.shape), "params": resolved.to_dict()},
            level="warning",
        )

    t0 = time.monotonic()
    try:
        output = run_tiled(
            frame,
            partial(duotone.apply, params=resolved),
            workers=workers,
            rows_per_tile=rows_per_tile,
            cancel_event=cancel_event,
        )
    except TransformCancelled:
        raise
    except Exception as e:
        failures = _record_failure(effect_id)
        logger.error(
            "Transform %s failed on %dx%d frame (%d consecutive): %s",
            effect_id,
            frame.shape[1],
            frame.shape[0],
            failures,
            type(e).__name__,
        )
        raise
    elapsed_ms = (time.monotonic() - t0) * 1000

    record_timing(effect_id, elapsed_ms)
    _record_success(effect_id)

    if elapsed_ms > TRANSFORM_WARN_MS:
        logger.warning(
            "Transform %s took %.0fms (>%dms warn threshold) on %dx%d frame",
            effect_id,
            elapsed_ms,
            TRANSFORM_WARN_MS,
            frame.shape[1],
            frame.shape[0],
        )

    return output


def transform(
    buffer: PixelBuffer,
    params: TransformParameters | dict | None = None,
    **kwargs,
) -> PixelBuffer:
    """Buffer-level entry point: same W, H and alpha, fresh bytes.

    Keyword arguments are passed through to :func:`transform_frame`.
    """
    frame = buffer.to_array()
    return PixelBuffer.from_array(transform_frame(frame, params, **kwargs))
