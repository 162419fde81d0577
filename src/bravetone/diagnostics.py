"""Sidecar diagnostics: JSON log file, faulthandler output, crash dumps.

Everything lives under ~/.bravetone. ``init_diagnostics()`` wires all of
it at startup; tests call the pieces one at a time.
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from pathlib import Path

from bravetone.security import strip_pii

logger = logging.getLogger(__name__)

APP_DIR = "~/.bravetone"
LOG_FILE = "sidecar.log"
FAULT_FILE = "sidecar_fault.log"

LOG_MAX_BYTES = 10_000_000
LOG_BACKUPS = 7
MAX_LOG_AGE_DAYS = 7
MAX_CRASH_REPORTS = 5


def app_dir() -> str:
    return os.path.expanduser(APP_DIR)


def _validate_log_dir(env_dir: str) -> str:
    """APP_LOG_DIR when it resolves inside the app dir, else <app dir>/logs."""
    default = os.path.join(app_dir(), "logs")
    if not env_dir:
        return default
    candidate = Path(env_dir).resolve()
    if not candidate.is_relative_to(Path(app_dir()).resolve()):
        logger.warning("APP_LOG_DIR is outside %s, using default", APP_DIR)
        return default
    return str(candidate)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the thread that logged it."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(
            record.created, tz=datetime.timezone.utc
        )
        entry = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _prune(directory: str, pattern: str, keep: int | None = None, max_age_days=None):
    """Delete files matching ``pattern`` past the newest ``keep`` or older than ``max_age_days``."""
    try:
        found = sorted(
            Path(directory).glob(pattern),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        doomed = found[keep:] if keep is not None else []
        if max_age_days is not None:
            cutoff = time.time() - max_age_days * 86400
            doomed += [p for p in found if p.stat().st_mtime < cutoff]
        for path in doomed:
            path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Pruning %s skipped: %s", pattern, e)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON file handler to the root logger.

    Level comes from APP_LOG_LEVEL. Returns the directory written to.
    """
    target = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(target, mode=0o700, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(target, LOG_FILE),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
    )
    handler.setFormatter(JSONFormatter())

    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    _prune(target, f"{LOG_FILE}*", max_age_days=MAX_LOG_AGE_DAYS)
    return target


def setup_faulthandler(log_dir: str) -> bool:
    """Send C-level tracebacks to their own file (rotation would orphan the fd)."""
    fault_path = os.path.join(log_dir, FAULT_FILE)
    try:
        fd = os.open(fault_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        faulthandler.enable(file=os.fdopen(fd, "a", buffering=1), all_threads=True)
    except OSError as e:
        print(f"WARNING: faulthandler disabled: {e}", file=sys.stderr)
        return False
    return True


def build_crash_report(exc_type, exc_value, exc_tb) -> dict:
    """Crash dump payload with home paths, usernames and secrets stripped."""
    now = datetime.datetime.now(tz=datetime.timezone.utc)
    report = {
        "timestamp": now.strftime("%Y%m%dT%H%M%SZ"),
        "exception_type": getattr(exc_type, "__name__", "Unknown"),
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    # strip_pii expects a Sentry event
    return strip_pii({"extra": report}, {})["extra"]


def write_crash_report(crash_dir: str, report: dict) -> str:
    """Write one owner-only crash file and prune old ones. Returns its path."""
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)
    path = os.path.join(crash_dir, f"crash_{report['timestamp']}.json")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(report, f, indent=2)
    _prune(crash_dir, "crash_*.json", keep=MAX_CRASH_REPORTS)
    return path


def setup_excepthook(crash_dir: str | None = None):
    """Dump unhandled exceptions to crash_dir, then defer to the default hook."""
    crash_dir = crash_dir or os.path.join(app_dir(), "crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(
                crash_dir, build_crash_report(exc_type, exc_value, exc_tb)
            )
        except Exception as e:
            # Must not raise from inside the hook
            print(f"WARNING: crash report not written: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    """Logging, faulthandler and crash dumps, in that order. Called from main."""
    log_dir = setup_structured_logging()
    faults = setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics ready: logs=%s faulthandler=%s", log_dir, faults)
