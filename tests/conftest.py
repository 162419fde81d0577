import threading
import time

import numpy as np
import pytest
import zmq

from bravetone.zmq_server import ZMQServer


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            # REQ socket is stuck after a timed-out send; rebuild it
            sock.close()
            sock = ctx.socket(zmq.REQ)
            sock.setsockopt(zmq.LINGER, 0)
            sock.setsockopt(zmq.RCVTIMEO, 500)
            sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


def _start(srv: ZMQServer) -> threading.Thread:
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    return thread


@pytest.fixture(scope="session")
def _zmq_server_session():
    """Start ONE ZMQ server per session."""
    srv = ZMQServer(workers=2)
    _start(srv)
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    yield _zmq_server_session


@pytest.fixture
def zmq_server_disposable():
    """Disposable server for shutdown tests that stop the run loop."""
    srv = ZMQServer(workers=1)
    thread = _start(srv)
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    thread.join(timeout=2.0)


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def send_raw(self, raw: bytes) -> None:
        self._sock.send(raw)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def zmq_ping_client(zmq_server):
    """REQ socket connected to the test server's ping port."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 5_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.ping_port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def random_frame():
    """Deterministic (48, 64, 4) RGBA frame with varied alpha."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (48, 64, 4), dtype=np.uint8)


@pytest.fixture
def gradient_frame():
    """Horizontal gray ramp 0..255, opaque, 8 rows tall."""
    ramp = np.arange(256, dtype=np.uint8)
    frame = np.empty((8, 256, 4), dtype=np.uint8)
    frame[:, :, 0] = ramp
    frame[:, :, 1] = ramp
    frame[:, :, 2] = ramp
    frame[:, :, 3] = 255
    return frame
