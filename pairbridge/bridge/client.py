"""Lightweight client for bridge communication.

This module provides a thin client that talks to a running bridge over
its Unix socket. It only uses the standard library socket module so the
CLI stays fast to start.

Usage:
    client = BridgeClient(session_id="abc")
    client.emit_activity({"tool": "Edit", "input": {"file": "a.ts"}})
    events = client.wait(last_seen=0)   # blocks until activity exists
"""

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pairbridge.bridge.events import utc_timestamp
from pairbridge.bridge.protocol import (
    LineBuffer,
    ProtocolError,
    decode_message,
    encode_command,
    get_socket_path,
)


_USE_DEFAULT = object()


class BridgeError(RuntimeError):
    """The bridge replied with something unusable, or not at all."""


class BridgeNotRunningError(BridgeError):
    """No socket exists for the session."""


class BridgeClient:
    """
    Lightweight client for one bridge session.

    Each call opens its own connection, sends one command and reads one
    reply line, the same way the bridge expects separate operations to
    arrive.
    """

    def __init__(
        self,
        session_id: str = "default",
        socket_dir: Optional[Union[str, Path]] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize client.

        Args:
            session_id: Bridge session id
            socket_dir: Directory holding the socket (default: /tmp)
            timeout: Socket timeout in seconds (not applied to wait)
        """
        self.session_id = session_id
        self.socket_dir = socket_dir
        self.socket_path = get_socket_path(session_id, socket_dir)
        self.timeout = timeout

    def is_bridge_running(self) -> bool:
        """
        Check if the bridge is running and answering.

        Returns True if the socket exists and a status request succeeds.
        """
        if not self.socket_path.exists():
            return False
        try:
            status = self.status(timeout=2.0)
        except (BridgeError, OSError):
            return False
        return isinstance(status, dict) and status.get("session_id") == self.session_id

    def start_bridge(self, history_limit: int = 0, wait_seconds: float = 5.0) -> bool:
        """
        Launch a bridge process in the background.

        Returns True once the socket has appeared.
        """
        try:
            subprocess.Popen(
                [
                    sys.executable,
                    "-m",
                    "pairbridge.bridge.server",
                    "--session-id",
                    self.session_id,
                    "--socket-dir",
                    str(self.socket_path.parent),
                    "--history-limit",
                    str(history_limit),
                ],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError:
            return False

        # Wait for the socket to appear
        for _ in range(int(wait_seconds * 10)):
            time.sleep(0.1)
            if self.socket_path.exists():
                return True
        return False

    def emit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send an event payload. Returns the envelope response."""
        return self._send_command("emit", payload=payload)

    def emit_activity(
        self,
        payload: Dict[str, Any],
        event_type: str = "activity",
    ) -> Dict[str, Any]:
        return self.emit(self._stamp(payload, event_type))

    def emit_feedback(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.emit(self._stamp(payload, "feedback"))

    def wait(self, last_seen: int = 0) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
        """
        Block until there is activity after ``last_seen``.

        Returns:
            List of activity events, or a ``{"type": "stop"}`` control
            message if the bridge shut down while waiting. A protocol
            error comes back as an ``{"ok": False}`` envelope.
        """
        return self._send_command("wait", lastSeen=last_seen, timeout=None)

    def poll(self) -> Optional[Dict[str, Any]]:
        """Take the oldest pending feedback event, or None."""
        return self._send_command("poll")

    def history(self, last: int = 10) -> List[Dict[str, Any]]:
        return self._send_command("history", last=last)

    def status(self, timeout: Any = _USE_DEFAULT) -> Dict[str, Any]:
        return self._send_command("status", timeout=timeout)

    def stop(self) -> bool:
        """
        Request bridge shutdown.

        Returns True if shutdown was acknowledged.
        """
        response = self._send_command("stop", timeout=5.0)
        return isinstance(response, dict) and response.get("ok") is True

    @staticmethod
    def _stamp(payload: Dict[str, Any], event_type: str) -> Dict[str, Any]:
        stamped = dict(payload)
        stamped["type"] = event_type
        stamped.setdefault("timestamp", utc_timestamp())
        return stamped

    def _send_command(
        self,
        command: str,
        timeout: Any = _USE_DEFAULT,
        **fields: Any,
    ) -> Any:
        """
        Send one command and return the first reply line, decoded.

        Args:
            timeout: Seconds; None blocks forever (default: self.timeout)

        Raises:
            BridgeNotRunningError: If the socket file does not exist
            BridgeError: If the bridge closes without replying or replies
                with invalid JSON
            OSError: Other socket errors (including timeouts)
        """
        if not self.socket_path.exists():
            raise BridgeNotRunningError(
                f"Bridge not running (socket not found: {self.socket_path})"
            )

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout if timeout is _USE_DEFAULT else timeout)

        try:
            sock.connect(str(self.socket_path))
            sock.sendall(encode_command(command, **fields))

            buffer = LineBuffer()
            while True:
                chunk = sock.recv(65536)
                if not chunk:
                    break
                lines = buffer.feed(chunk)
                if lines:
                    try:
                        return decode_message(lines[0])
                    except ProtocolError as e:
                        raise BridgeError(f"Malformed reply from bridge: {e}") from e

            raise BridgeError(f"Bridge closed the connection without replying to '{command}'")
        finally:
            sock.close()
