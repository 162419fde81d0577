"""Row-tile fan-out for per-pixel transforms.

Each tile reads only its own rows of the input and writes only its own
rows of a preallocated output, so results are identical for every worker
count and tile size. Cancellation is checked between tiles, never inside
one.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_ROWS_PER_TILE = 64

TileFn = Callable[[np.ndarray], np.ndarray]


class TransformCancelled(RuntimeError):
    """Raised when a cancel event fires before every tile has run."""


def default_workers() -> int:
    env = os.environ.get("BRAVETONE_WORKERS", "")
    if env.isdigit() and int(env) > 0:
        return int(env)
    return os.cpu_count() or 1


def default_rows_per_tile() -> int:
    env = os.environ.get("BRAVETONE_ROWS_PER_TILE", "")
    if env.isdigit() and int(env) > 0:
        return int(env)
    return DEFAULT_ROWS_PER_TILE


def tile_bounds(height: int, rows_per_tile: int) -> list[tuple[int, int]]:
    """Half-open [start, stop) row ranges covering 0..height."""
    if rows_per_tile <= 0:
        raise ValueError(f"rows_per_tile must be positive, got {rows_per_tile}")
    return [
        (start, min(start + rows_per_tile, height))
        for start in range(0, height, rows_per_tile)
    ]


def run_tiled(
    frame: np.ndarray,
    fn: TileFn,
    workers: int | None = None,
    rows_per_tile: int | None = None,
    cancel_event: threading.Event | None = None,
) -> np.ndarray:
    """Apply ``fn`` to row tiles of ``frame`` and assemble a new frame.

    Args:
        frame:          Input (H, W, C) array. Never written to.
        fn:             Pure tile function; must return an array shaped like its input.
        workers:        Thread count. None reads BRAVETONE_WORKERS, else cpu_count.
        rows_per_tile:  Tile height. None reads BRAVETONE_ROWS_PER_TILE, else 64.
        cancel_event:   Checked before each tile starts.

    Raises:
        TransformCancelled: If cancel_event is set before all tiles finish.
    """
    if workers is None:
        workers = default_workers()
    if rows_per_tile is None:
        rows_per_tile = default_rows_per_tile()

    bounds = tile_bounds(frame.shape[0], rows_per_tile)
    output = np.empty_like(frame)

    def _run(start: int, stop: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TransformCancelled(f"cancelled before rows {start}:{stop}")
        output[start:stop] = fn(frame[start:stop])

    if workers <= 1 or len(bounds) == 1:
        for start, stop in bounds:
            _run(start, stop)
        return output

    with ThreadPoolExecutor(
        max_workers=min(workers, len(bounds)), thread_name_prefix="bravetone-tile"
    ) as pool:
        futures = [pool.submit(_run, start, stop) for start, stop in bounds]
        try:
            for future in futures:
                future.result()
        except TransformCancelled:
            for future in futures:
                future.cancel()
            logger.debug("Tiled transform cancelled (%d tiles)", len(bounds))
            raise

    return output
