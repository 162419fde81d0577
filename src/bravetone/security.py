"""Security validation gates for the bravetone sidecar."""

import json
import os
import re

# SEC-1: IPC message cap (a 2048x2048 RGBA frame is ~22 MB as base64)
MAX_MESSAGE_BYTES = 32 * 1024 * 1024  # 32 MB

# SEC-2: Pixel cap for frames arriving over IPC (the core itself has none)
MAX_PIXELS = 4096 * 4096

CHANNELS = 4


def validate_dimensions(width, height) -> list[str]:
    """Validate frame dimensions from an IPC request. Returns list of errors (empty = valid).

    Checks (SEC-2):
    - Both are ints (bools rejected)
    - Both are positive
    - width * height <= MAX_PIXELS
    """
    errors: list[str] = []
    for name, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{name} must be an integer")
        elif value <= 0:
            errors.append(f"{name} must be positive, got {value}")
    if errors:
        return errors

    if width * height > MAX_PIXELS:
        errors.append(
            f"Frame {width}x{height} exceeds maximum {MAX_PIXELS} pixels (SEC-2)"
        )
    return errors


def validate_payload_size(width: int, height: int, nbytes: int) -> list[str]:
    """Check decoded payload length against the declared dimensions."""
    errors: list[str] = []
    expected = width * height * CHANNELS
    if nbytes != expected:
        errors.append(
            f"Payload is {nbytes} bytes, expected {expected} for {width}x{height} RGBA"
        )
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}
# Username only as a whole path component, so ordinary words survive
_USERNAME_IN_PATH = (
    re.compile(r"(?<=[/\\])" + re.escape(_USERNAME) + r"(?=[/\\])")
    if _USERNAME
    else None
)


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    if len(_HOME) > 1:
        event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME_IN_PATH is not None:
        event_str = _USERNAME_IN_PATH.sub("<USER>", event_str)
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    # Strip sensitive keys from extra/context/tags
    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
