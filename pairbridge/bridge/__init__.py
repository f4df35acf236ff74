"""Session broker for pair programming agents.

The bridge is a small Unix socket server that sits between a main agent
doing work and a pair agent watching it.

Architecture:
- SessionState: In-memory activity log, feedback queue and waiter set
- BridgeServer: Async Unix socket server, one per session
- BridgeClient: Lightweight blocking client used by the CLI

Activity flows main -> pair through a long-poll ``wait`` that never
busy-polls; feedback flows pair -> main through a FIFO drained by ``poll``.
"""

from pairbridge.bridge.client import BridgeClient, BridgeError, BridgeNotRunningError
from pairbridge.bridge.protocol import (
    LineBuffer,
    ProtocolError,
    decode_command,
    encode_message,
    get_socket_path,
)
from pairbridge.bridge.server import BridgeServer, BridgeState
from pairbridge.bridge.state import SessionState

__all__ = [
    "BridgeClient",
    "BridgeError",
    "BridgeNotRunningError",
    "BridgeServer",
    "BridgeState",
    "LineBuffer",
    "ProtocolError",
    "SessionState",
    "decode_command",
    "encode_message",
    "get_socket_path",
]
