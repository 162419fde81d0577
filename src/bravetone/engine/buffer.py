"""Pixel buffer — immutable RGBA raster handed over by the decoder."""

from dataclasses import dataclass

import numpy as np

CHANNELS = 4


class InvalidBufferError(ValueError):
    """Buffer shape, dimensions or byte length are inconsistent."""


@dataclass(frozen=True)
class PixelBuffer:
    """Row-major, top-to-bottom RGBA bytes, 8 bits per channel."""

    width: int
    height: int
    data: bytes

    def validate(self) -> "PixelBuffer":
        """Raise InvalidBufferError unless data holds exactly width*height*4 bytes."""
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidBufferError(
                    f"{name} must be an int, got {type(value).__name__}"
                )
            if value <= 0:
                raise InvalidBufferError(f"{name} must be positive, got {value}")
        if not isinstance(self.data, (bytes, bytearray, memoryview)):
            raise InvalidBufferError(
                f"data must be bytes-like, got {type(self.data).__name__}"
            )
        expected = self.width * self.height * CHANNELS
        actual = memoryview(self.data).nbytes
        if actual != expected:
            raise InvalidBufferError(
                f"Buffer holds {actual} bytes, expected {expected} "
                f"({self.width}x{self.height}x{CHANNELS})"
            )
        return self

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_array(self) -> np.ndarray:
        """Read-only (H, W, 4) uint8 view over the bytes."""
        self.validate()
        arr = np.frombuffer(self.data, dtype=np.uint8)
        arr = arr.reshape(self.height, self.width, CHANNELS)
        arr.flags.writeable = False
        return arr

    @classmethod
    def from_array(cls, frame: np.ndarray) -> "PixelBuffer":
        """Copy an (H, W, 4) uint8 frame into a new buffer."""
        validate_frame(frame)
        h, w = frame.shape[:2]
        return cls(width=w, height=h, data=np.ascontiguousarray(frame).tobytes())


def validate_frame(frame: np.ndarray) -> np.ndarray:
    """Raise InvalidBufferError unless frame is a non-empty (H, W, 4) uint8 array."""
    if not isinstance(frame, np.ndarray):
        raise InvalidBufferError(f"Expected ndarray, got {type(frame).__name__}")
    if frame.ndim != 3 or frame.shape[2] != CHANNELS:
        raise InvalidBufferError(f"Expected (H, W, 4) frame, got {frame.shape}")
    if frame.shape[0] == 0 or frame.shape[1] == 0:
        raise InvalidBufferError(f"Frame is empty: {frame.shape}")
    if frame.dtype != np.uint8:
        raise InvalidBufferError(f"Expected uint8 frame, got {frame.dtype}")
    return frame
