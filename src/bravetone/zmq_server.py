import base64
import binascii
import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from bravetone.effects import duotone
from bravetone.engine.buffer import InvalidBufferError, PixelBuffer
from bravetone.engine.determinism import buffer_digest
from bravetone.engine.params import TransformParameters
from bravetone.engine.pipeline import (
    flush_timing,
    get_health,
    get_transform_stats,
    transform,
)
from bravetone.security import (
    MAX_MESSAGE_BYTES,
    validate_dimensions,
    validate_payload_size,
)

logger = logging.getLogger(__name__)


class ZMQServer:
    def __init__(self, workers: int | None = None):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_MESSAGE_BYTES)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by heavy transforms
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token required from local clients
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.workers = workers
        self.last_transform_ms = 0.0

    def reset_state(self):
        """Clear accumulated state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        flush_timing()
        self.last_transform_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_transform_ms": self.last_transform_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "list_params":
            return {
                "id": msg_id,
                "ok": True,
                "effect_id": duotone.EFFECT_ID,
                "name": duotone.EFFECT_NAME,
                "params": duotone.PARAMS,
                "colors": {
                    "green": list(duotone.DEEP_GREEN),
                    "pink": list(duotone.VIBRANT_PINK),
                },
            }
        elif cmd == "transform":
            return self._handle_transform(message, msg_id)
        elif cmd == "transform_stats":
            return {
                "id": msg_id,
                "ok": True,
                "stats": get_transform_stats(),
                **get_health(),
            }
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_transform(self, message: dict, msg_id: str | None) -> dict:
        width = message.get("width")
        height = message.get("height")
        data_b64 = message.get("data")
        raw_params = message.get("params") or {}
        if not data_b64:
            return {"id": msg_id, "ok": False, "error": "missing data"}
        if not isinstance(raw_params, dict):
            return {"id": msg_id, "ok": False, "error": "params must be an object"}

        # SEC-2: Validate dimensions before decoding the payload
        errors = validate_dimensions(width, height)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            data = base64.b64decode(data_b64, validate=True)
        except (binascii.Error, ValueError, TypeError):
            return {"id": msg_id, "ok": False, "error": "data is not valid base64"}

        errors = validate_payload_size(width, height, len(data))
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        params = TransformParameters.from_dict(raw_params)

        try:
            t0 = time.time()
            output = transform(
                PixelBuffer(width=width, height=height, data=data),
                params,
                workers=self.workers,
            )
            self.last_transform_ms = round((time.time() - t0) * 1000, 2)
        except InvalidBufferError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Transform handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

        return {
            "id": msg_id,
            "ok": True,
            "width": output.width,
            "height": output.height,
            "data": base64.b64encode(output.data).decode("ascii"),
            "params": params.to_dict(),
            "digest": buffer_digest(output),
            "elapsed_ms": self.last_transform_ms,
        }

    def _recv_message(self, sock: zmq.Socket) -> dict | None:
        """Read one request. Replies and returns None unless it is a JSON object."""
        raw = sock.recv()
        try:
            message = json.loads(raw)
        except ValueError:
            message = None
        if not isinstance(message, dict):
            # REP protocol: every recv needs a send before the next one
            sock.send_json({"ok": False, "error": "Invalid message format"})
            return None
        return message

    def _serve_ping(self):
        message = self._recv_message(self.ping_socket)
        if message is None:
            return
        msg_id = message.get("id")
        token_err = self._validate_token(message)
        if token_err:
            self.ping_socket.send_json({"id": msg_id, "ok": False, "error": token_err})
        else:
            self.ping_socket.send_json(self._make_ping_response(msg_id))

    def _serve_command(self):
        message = self._recv_message(self.socket)
        if message is None:
            return
        try:
            response = self.handle_message(message)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Unhandled handler error: %s", type(e).__name__)
            response = {"ok": False, "error": "Internal processing error"}
        self.socket.send_json(response)

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        try:
            while self.running:
                events = dict(poller.poll(timeout=500))
                # Ping first so liveness checks never wait on a transform
                if self.ping_socket in events:
                    self._serve_ping()
                if self.socket in events:
                    self._serve_command()
        except zmq.ZMQError as e:
            logger.error("ZMQ error, stopping server: %s", e)
        finally:
            self.close()

    def close(self):
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
