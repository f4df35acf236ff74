"""Line-delimited JSON protocol for bridge IPC.

Every message is a single UTF-8 JSON document terminated by ``\\n``.

Request format:
    {
        "command": "emit" | "wait" | "poll" | "history" | "status" | "stop",
        "payload": dict,        # For emit
        "lastSeen": int,        # For wait (default 0)
        "last": int,            # For history (default 10)
    }

Envelope response format (emit, stop and all errors):
    {
        "ok": bool,
        "data": Any,            # Optional
        "error": str,           # Optional, present when ok is false
    }

wait, poll, history and status reply with their bare data instead of an
envelope. A waiting client may also receive a ``{"type": "stop", ...}``
control message when the bridge shuts down.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

DEFAULT_SOCKET_DIR = Path("/tmp")
SOCKET_NAME_TEMPLATE = "claude-pair-{session_id}.sock"


class ProtocolError(ValueError):
    """A request could not be understood; reported back to the client."""


def get_socket_path(
    session_id: str,
    socket_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Derive the socket path for a session.

    Any process that knows the session id can compute the same path, so
    no discovery step is needed. Adapters embed this exact path in the
    prompt handed to the pair agent.
    """
    base = Path(socket_dir) if socket_dir else DEFAULT_SOCKET_DIR
    return base / SOCKET_NAME_TEMPLATE.format(session_id=session_id)


class LineBuffer:
    """
    Accumulate raw socket reads and split them into complete lines.

    A trailing partial line is held back until the next ``feed`` call.
    Lines are returned as undecoded bytes so a bad UTF-8 sequence only
    poisons its own line.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, data: bytes) -> List[bytes]:
        self._pending += data
        *lines, self._pending = self._pending.split(b"\n")
        return [line for line in lines if line.strip()]

    @property
    def pending(self) -> bytes:
        return self._pending


def encode_message(message: Any) -> bytes:
    """Serialize one message to a newline-terminated UTF-8 frame."""
    return json.dumps(message, ensure_ascii=False).encode("utf-8") + b"\n"


def decode_message(line: Union[bytes, str]) -> Any:
    """
    Decode one frame (without its newline).

    Raises:
        ProtocolError: If the line is not valid UTF-8 JSON
    """
    try:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        return json.loads(line)
    # ValueError also covers oversized integer literals; RecursionError
    # comes from very deeply nested arrays or objects
    except (ValueError, RecursionError) as e:
        raise ProtocolError("Invalid JSON") from e


def decode_command(line: Union[bytes, str]) -> Dict[str, Any]:
    """
    Decode a request frame into a command dict.

    Raises:
        ProtocolError: If the line is not JSON or not a JSON object
    """
    request = decode_message(line)
    if not isinstance(request, dict):
        raise ProtocolError("Invalid command")
    return request


def encode_command(command: str, **fields: Any) -> bytes:
    """Build a request frame, dropping fields that are None."""
    request: Dict[str, Any] = {"command": command}
    request.update({k: v for k, v in fields.items() if v is not None})
    return encode_message(request)


def ok_response(data: Any = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"ok": True}
    if data is not None:
        response["data"] = data
    return response


def error_response(error: str) -> Dict[str, Any]:
    return {"ok": False, "error": error}


def read_count(request: Dict[str, Any], key: str, default: int) -> int:
    """
    Read a non-negative integer field from a request.

    Booleans are rejected even though they are ints in Python.

    Raises:
        ProtocolError: If the value is present but not a non-negative int
    """
    value = request.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"Invalid {key}: {value!r}")
    return value
