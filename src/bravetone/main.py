import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from bravetone._version import __version__
from bravetone.diagnostics import app_dir, init_diagnostics
from bravetone.security import strip_pii
from bravetone.zmq_server import ZMQServer

# SEC-3: Resource limits (Linux/macOS only)
MAX_MEMORY_BYTES = 4 * 1024 * 1024 * 1024  # 4 GB


def _telemetry_dsn() -> str:
    """Sentry DSN, only when the user has opted in."""
    consent_path = Path(app_dir()) / "telemetry_consent"
    if consent_path.exists() and consent_path.read_text().strip() == "yes":
        return os.environ.get("SENTRY_DSN", "")
    return ""


def init_sentry():
    """Consent-gated Sentry init. An empty DSN keeps the SDK inert."""
    sentry_sdk.init(
        dsn=_telemetry_dsn(),
        release=f"bravetone@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def _apply_resource_limits():
    """Apply SEC-3 memory limits. Skipped on Windows."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        resource.setrlimit(resource.RLIMIT_AS, (MAX_MEMORY_BYTES, hard))
    except (ImportError, ValueError, OSError):
        # resource module not available or limit can't be set
        print("WARNING: Could not set memory limit (SEC-3)", file=sys.stderr)


def main():
    init_sentry()
    init_diagnostics()
    _apply_resource_limits()
    server = ZMQServer()
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
