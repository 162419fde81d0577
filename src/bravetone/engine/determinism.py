"""Content digests for checking byte-identical transform output."""

import hashlib

import numpy as np

from bravetone.engine.buffer import PixelBuffer, validate_frame


def buffer_digest(buffer: PixelBuffer | np.ndarray) -> str:
    """sha256 over width, height and RGBA bytes. Same pixels = same digest, always."""
    if isinstance(buffer, PixelBuffer):
        buffer.validate()
        width, height, data = buffer.width, buffer.height, bytes(buffer.data)
    else:
        frame = validate_frame(buffer)
        height, width = frame.shape[:2]
        data = np.ascontiguousarray(frame).tobytes()
    h = hashlib.sha256(f"{width}x{height}:".encode())
    h.update(data)
    return h.hexdigest()
