"""Duotone — map luminance onto a deep-green / vibrant-pink gradient.

Every step is a vectorized function over float64 arrays so the same math
runs on a whole frame or on a row tile. The steps must run in this order:

    luminance -> adjust_gray -> tone_curve -> blend_ratio
              -> mix_duotone -> saturate -> round_half_up
"""

import numpy as np

EFFECT_ID = "fx.duotone"
EFFECT_NAME = "Brave Pink / Hero Green"
EFFECT_CATEGORY = "color"

DEEP_GREEN = (15, 85, 45)
VIBRANT_PINK = (255, 95, 200)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

MID_GRAY = 128.0
BRIGHTNESS_SCALE = 1.28

SHADOW_CEILING = 0.4
HIGHLIGHT_FLOOR = 0.8

PARAMS: dict = {
    "pink_intensity": {
        "type": "int",
        "min": 0,
        "max": 100,
        "default": 70,
        "label": "Pink Intensity",
        "curve": "linear",
        "unit": "%",
        "description": "Pink share and saturation of the highlights",
    },
    "green_intensity": {
        "type": "int",
        "min": 0,
        "max": 100,
        "default": 70,
        "label": "Green Intensity",
        "curve": "linear",
        "unit": "%",
        "description": "Green share and saturation of the shadows",
    },
    "contrast": {
        "type": "int",
        "min": 50,
        "max": 150,
        "default": 100,
        "label": "Contrast",
        "curve": "linear",
        "unit": "%",
        "description": "Gray contrast around mid-gray 128",
    },
    "brightness": {
        "type": "int",
        "min": 50,
        "max": 150,
        "default": 100,
        "label": "Brightness",
        "curve": "linear",
        "unit": "%",
        "description": "Additive gray shift, 1.28 levels per percent",
    },
}

_GREEN = np.array(DEEP_GREEN, dtype=np.float64)
_PINK = np.array(VIBRANT_PINK, dtype=np.float64)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """Weighted sum of R, G, B. Result is left unrounded."""
    rgb = rgb.astype(np.float64)
    wr, wg, wb = LUMA_WEIGHTS
    return wr * rgb[..., 0] + wg * rgb[..., 1] + wb * rgb[..., 2]


def adjust_gray(gray: np.ndarray, contrast: int, brightness: int) -> np.ndarray:
    """Contrast pivots on mid-gray, brightness shifts, then clamp to [0, 255]."""
    adjusted = (gray - MID_GRAY) * (contrast / 100) + MID_GRAY
    adjusted = adjusted + (brightness - 100) * BRIGHTNESS_SCALE
    return np.clip(adjusted, 0.0, 255.0)


def tone_curve(normalized: np.ndarray) -> np.ndarray:
    """Quadratic ease-in/ease-out S-curve on [0, 1]. Fixed points 0, 0.5, 1."""
    low = 2.0 * normalized * normalized
    inv = 1.0 - normalized
    high = 1.0 - 2.0 * inv * inv
    return np.where(normalized < 0.5, low, high)


def blend_ratio(
    curved: np.ndarray, pink_factor: float, green_factor: float
) -> np.ndarray:
    """Fraction of pink for each curved gray value.

    Three bands:
        shadows    (< 0.4)       0 .. 0.15 * green_factor
        midtones   [0.4, 0.8]    0.15 .. 0.5, independent of either dial
        highlights (> 0.8)       0.5 .. 0.5 + 0.35 * pink_factor

    The shadow and midtone bands meet at 0.4 only when green_factor is 1.
    """
    shadow = (curved / SHADOW_CEILING) * 0.15 * green_factor
    highlight = 0.5 + ((curved - HIGHLIGHT_FLOOR) / 0.2) * 0.35 * pink_factor
    mid = 0.15 + ((curved - SHADOW_CEILING) / 0.4) * 0.35
    return np.where(
        curved < SHADOW_CEILING,
        shadow,
        np.where(curved > HIGHLIGHT_FLOOR, highlight, mid),
    )


def mix_duotone(ratio: np.ndarray) -> np.ndarray:
    """Lerp green -> pink per channel. Returns (..., 3) float64."""
    return _GREEN + (_PINK - _GREEN) * ratio[..., np.newaxis]


def saturate(
    adjusted: np.ndarray,
    duotone: np.ndarray,
    ratio: np.ndarray,
    pink_factor: float,
    green_factor: float,
) -> np.ndarray:
    """Pull the duotone color back toward gray by the dominant side's dial.

    Green-dominant pixels (ratio < 0.5) use green_factor, the rest use
    pink_factor. A factor of 0 leaves the adjusted gray untouched.
    """
    factor = np.where(ratio < 0.5, green_factor, pink_factor)[..., np.newaxis]
    gray = adjusted[..., np.newaxis]
    return gray + (duotone - gray) * factor


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Clamp to [0, 255] and round .5 upward. Returns uint8."""
    return np.floor(np.clip(values, 0.0, 255.0) + 0.5).astype(np.uint8)


def apply(frame: np.ndarray, params) -> np.ndarray:
    """Recolor an (H, W, 4) uint8 frame. Returns a new frame, alpha copied.

    ``params`` is a :class:`bravetone.engine.params.TransformParameters`
    already clamped into domain.
    """
    pink_factor = params.pink_factor
    green_factor = params.green_factor

    gray = luminance(frame[..., :3])
    adjusted = adjust_gray(gray, params.contrast, params.brightness)
    curved = tone_curve(adjusted / 255.0)
    ratio = blend_ratio(curved, pink_factor, green_factor)
    duotone = mix_duotone(ratio)
    final = saturate(adjusted, duotone, ratio, pink_factor, green_factor)

    output = np.empty_like(frame)
    output[..., :3] = round_half_up(final)
    output[..., 3] = frame[..., 3]
    return output
