"""Transform parameters — four percent dials, clamped into their domains."""

import logging
import math
from dataclasses import asdict, dataclass, fields

from bravetone.effects.duotone import PARAMS

logger = logging.getLogger(__name__)

# camelCase names used by the interactive front end
_ALIASES = {
    "pinkIntensity": "pink_intensity",
    "greenIntensity": "green_intensity",
}


def _clamp_dial(name: str, value) -> int:
    """Coerce one dial to an in-domain int. Non-numeric or non-finite -> default."""
    spec = PARAMS[name]
    try:
        v = float(value)
    except (TypeError, ValueError):
        logger.debug("Dial %s got non-numeric %r, using default", name, value)
        return spec["default"]
    if not math.isfinite(v):
        return spec["default"]
    clamped = max(spec["min"], min(spec["max"], int(v)))
    if clamped != v:
        logger.debug("Dial %s clamped %r -> %d", name, value, clamped)
    return clamped


@dataclass(frozen=True)
class TransformParameters:
    """Holds the four dials for one transform call.

    Out-of-domain values are clamped, never rejected. Construct through
    :meth:`from_dict` or call :meth:`clamped` on a hand-built instance.
    """

    pink_intensity: int = PARAMS["pink_intensity"]["default"]
    green_intensity: int = PARAMS["green_intensity"]["default"]
    contrast: int = PARAMS["contrast"]["default"]
    brightness: int = PARAMS["brightness"]["default"]

    @classmethod
    def from_dict(cls, data: dict | None) -> "TransformParameters":
        """Build from snake_case or camelCase keys. Unknown keys are ignored."""
        values = {}
        for key, value in (data or {}).items():
            name = _ALIASES.get(key, key)
            if name in PARAMS:
                values[name] = _clamp_dial(name, value)
        return cls(**values)

    def clamped(self) -> "TransformParameters":
        """Return a copy with every dial forced into its domain."""
        return TransformParameters(
            **{f.name: _clamp_dial(f.name, getattr(self, f.name)) for f in fields(self)}
        )

    @property
    def pink_factor(self) -> float:
        return self.pink_intensity / 100

    @property
    def green_factor(self) -> float:
        return self.green_intensity / 100

    def to_dict(self) -> dict:
        return asdict(self)


def coerce_params(params) -> TransformParameters:
    """Accept TransformParameters, a mapping, or None. Always returns clamped."""
    if params is None:
        return TransformParameters()
    if isinstance(params, TransformParameters):
        return params.clamped()
    if isinstance(params, dict):
        return TransformParameters.from_dict(params)
    raise TypeError(
        f"params must be TransformParameters, dict or None, got {type(params).__name__}"
    )
