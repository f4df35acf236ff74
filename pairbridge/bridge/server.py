"""Async Unix socket server for the pair bridge.

This module implements the broker that sits between the main agent and
the pair agent:
1. Keeps the session's activity log and feedback queue in memory
2. Serves line-delimited JSON commands over a per-session Unix socket
3. Holds ``wait`` connections open until new activity arrives (long-poll)

Usage:
    python -m pairbridge.bridge.server [--session-id ID] [--socket-dir DIR]

    Or use the CLI:
    pair-bridge start
"""

import asyncio
import logging
import os
import re
import signal
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional, Set, Union

from pairbridge.bridge.events import (
    ACTIVITY_TYPES,
    FEEDBACK_TYPE,
    BridgeStatus,
    ControlEvent,
)
from pairbridge.bridge.protocol import (
    LineBuffer,
    ProtocolError,
    decode_command,
    encode_message,
    error_response,
    get_socket_path,
    ok_response,
    read_count,
)
from pairbridge.bridge.state import SessionState

logger = logging.getLogger(__name__)

READ_CHUNK = 65536
# How long stop() lets parked waiters flush their stop message
STOP_FLUSH_TIMEOUT = 2.0
DEFAULT_HISTORY = 10

_NO_REPLY = object()

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_session_id(session_id: str) -> str:
    """Session ids end up in a file name, so keep them to a safe alphabet."""
    if not session_id or not _SESSION_ID_RE.match(session_id):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


class BridgeState(Enum):
    """Lifecycle of a BridgeServer."""
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"


class ConnectionState(Enum):
    READING = "reading"
    DISPATCHING = "dispatching"
    WAITING = "waiting"
    CLOSED = "closed"


class Connection:
    """Per-client framing state: partial-line buffer plus undispatched lines."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.buffer = LineBuffer()
        self.lines: Deque[bytes] = deque()
        self.state = ConnectionState.READING

    def absorb(self, data: bytes) -> None:
        self.lines.extend(self.buffer.feed(data))

    async def send(self, message: Any) -> None:
        self.writer.write(encode_message(message))
        await self.writer.drain()


class BridgeServer:
    """
    Async Unix socket server for one bridge session.

    Handles concurrent client connections on a single asyncio loop, so
    the SessionState it owns needs no locking. Each connection may send
    any number of newline-terminated commands; ``wait`` parks the
    connection until there is something to deliver.
    """

    def __init__(
        self,
        session_id: str,
        socket_dir: Optional[Union[str, Path]] = None,
        history_limit: int = 0,
        on_stop_request: Optional[Callable[[], "asyncio.Task[Any]"]] = None,
    ):
        """
        Initialize bridge server.

        Args:
            session_id: Session identifier (determines the socket path)
            socket_dir: Directory for the socket file (default: /tmp)
            history_limit: Max activities kept in memory (0 = unbounded)
            on_stop_request: Called instead of scheduling stop() when a
                client or signal asks for shutdown
        """
        self.session_id = validate_session_id(session_id)
        self.socket_path = get_socket_path(session_id, socket_dir)
        self.history_limit = history_limit
        self.on_stop_request = on_stop_request

        self.lifecycle = BridgeState.STOPPED
        self.session: Optional[SessionState] = None
        self.server: Optional[asyncio.AbstractServer] = None
        # Status taken just before the last stop() discarded the session
        self.final_status: Optional[BridgeStatus] = None

        self._writers: Set[asyncio.StreamWriter] = set()
        self._waiting_tasks: Set["asyncio.Task[Any]"] = set()
        self._background: Set["asyncio.Task[Any]"] = set()
        self._stopped: Optional[asyncio.Event] = None

    def get_socket_path(self) -> Path:
        return self.socket_path

    @property
    def is_listening(self) -> bool:
        return self.lifecycle is BridgeState.LISTENING

    async def start(self) -> None:
        """
        Bind the socket and start accepting connections.

        Returns once listening; use serve_forever() to block until stopped.

        Raises:
            RuntimeError: If the server is not stopped
            OSError: If the socket path cannot be bound
        """
        if self.lifecycle is not BridgeState.STOPPED:
            raise RuntimeError(f"Bridge is {self.lifecycle.value}, cannot start")

        self.lifecycle = BridgeState.STARTING
        self.session = SessionState(self.session_id, history_limit=self.history_limit)
        self.final_status = None
        self._stopped = asyncio.Event()

        try:
            self.socket_path.parent.mkdir(parents=True, exist_ok=True)

            # Clean up stale socket from a crashed instance
            if self.socket_path.exists() or self.socket_path.is_symlink():
                logger.info(f"Removing stale socket {self.socket_path}")
                self.socket_path.unlink()

            self.server = await asyncio.start_unix_server(
                self._handle_connection,
                path=str(self.socket_path),
            )
            # Owner only
            os.chmod(self.socket_path, 0o600)
        except BaseException:
            if self.server is not None:
                self.server.close()
                self.server = None
            self.session = None
            self.lifecycle = BridgeState.STOPPED
            raise

        self.lifecycle = BridgeState.LISTENING
        logger.info(f"Bridge {self.session_id} listening on {self.socket_path}")

    async def serve_forever(self) -> None:
        """Block until the bridge has been stopped."""
        if self._stopped is None:
            raise RuntimeError("Bridge was never started")
        await self._stopped.wait()

    async def stop(self) -> None:
        """
        Stop the bridge: notify waiters, close connections, remove socket.

        Idempotent. A caller arriving while another stop is in progress
        waits for that stop to finish.
        """
        if self.lifecycle is BridgeState.STOPPED:
            return
        if self.lifecycle is BridgeState.STOPPING:
            await self._stopped.wait()
            return

        self.lifecycle = BridgeState.STOPPING
        logger.info(f"Stopping bridge {self.session_id}...")

        notified = 0
        if self.session:
            self.final_status = self.session.snapshot()
            notified = self.session.close()
        if notified:
            logger.info(f"Notified {notified} waiter(s) of shutdown")
        if self._waiting_tasks:
            await asyncio.wait(set(self._waiting_tasks), timeout=STOP_FLUSH_TIMEOUT)

        for writer in list(self._writers):
            writer.close()

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

        self.socket_path.unlink(missing_ok=True)

        self.session = None
        self.lifecycle = BridgeState.STOPPED
        self._stopped.set()
        logger.info(f"Bridge {self.session_id} stopped")

    def request_stop(self) -> "asyncio.Task[Any]":
        """Schedule shutdown on the loop without waiting for it."""
        if self.on_stop_request is not None:
            return self.on_stop_request()
        task = asyncio.create_task(self.stop())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Read loop for a single client connection."""
        conn = Connection(reader, writer)
        self._writers.add(writer)
        logger.debug("Client connected")

        try:
            while True:
                data = await reader.read(READ_CHUNK)
                if not data:
                    break
                conn.absorb(data)

                keep_open = True
                while conn.lines and keep_open:
                    keep_open = await self._dispatch(conn, conn.lines.popleft())
                if not keep_open:
                    break
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(f"Client connection dropped: {e}")
        except OSError as e:
            logger.warning(f"Socket error: {e}")
        except Exception as e:
            logger.exception(f"Error handling client: {e}")
        finally:
            conn.state = ConnectionState.CLOSED
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Failed to close client writer: {e}")
            logger.debug("Client disconnected")

    async def _dispatch(self, conn: Connection, line: bytes) -> bool:
        """
        Handle exactly one command line.

        Returns:
            False when the connection should be closed afterwards
        """
        conn.state = ConnectionState.DISPATCHING
        try:
            request = decode_command(line)
        except ProtocolError as e:
            await conn.send(error_response(str(e)))
            conn.state = ConnectionState.READING
            return True

        if self.session is None:
            await conn.send(error_response("Bridge is stopped"))
            return False

        command = request.get("command")
        keep_open = True
        # wait and stop write their own replies
        response: Any = _NO_REPLY
        try:
            if command == "emit":
                response = self._handle_emit(request)
            elif command == "wait":
                keep_open = await self._handle_wait(conn, request)
            elif command == "poll":
                response = self._handle_poll()
            elif command == "history":
                response = self._handle_history(request)
            elif command == "status":
                response = self._handle_status()
            elif command == "stop":
                await self._handle_stop(conn)
            else:
                response = error_response(f"Unknown command: {command}")
        except ProtocolError as e:
            response = error_response(str(e))

        if response is not _NO_REPLY:
            await conn.send(response)
        conn.state = ConnectionState.READING
        return keep_open

    def _handle_emit(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Route an emitted payload to the activity log or feedback queue."""
        payload = request.get("payload")
        if not payload:
            return error_response("Missing payload")
        if not isinstance(payload, dict):
            return error_response("Invalid payload")

        payload_type = payload.get("type")
        if payload_type in ACTIVITY_TYPES:
            event = self.session.append(payload)
            logger.debug(f"Activity {event.sequence} ({event.tool or event.type})")
            return ok_response()
        if payload_type == FEEDBACK_TYPE:
            try:
                self.session.enqueue_feedback(payload)
            except ValueError as e:
                return error_response(f"Invalid feedback: {e}")
            return ok_response()
        return error_response(f"Unknown payload type: {payload_type}")

    async def _handle_wait(self, conn: Connection, request: Dict[str, Any]) -> bool:
        """
        Long-poll for activity after ``lastSeen``.

        Replies at once if there is unseen activity. Otherwise parks the
        connection as a waiter; bytes that arrive meanwhile are buffered
        but not dispatched, and EOF deregisters the waiter.
        """
        last_seen = read_count(request, "lastSeen", 0)
        session = self.session

        if self.lifecycle is BridgeState.STOPPING:
            await conn.send(ControlEvent(type="stop", session_id=self.session_id).to_dict())
            return False

        unseen = session.unseen_since(last_seen)
        if unseen:
            await conn.send([event.to_dict() for event in unseen])
            return True

        waiter = session.register_waiter(last_seen)
        conn.state = ConnectionState.WAITING
        task = asyncio.current_task()
        self._waiting_tasks.add(task)
        read: Optional["asyncio.Future[bytes]"] = None
        try:
            while not waiter.resolved:
                read = asyncio.ensure_future(conn.reader.read(READ_CHUNK))
                done, _ = await asyncio.wait(
                    {waiter.future, read},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if read in done:
                    data = read.result()
                    read = None
                    if not data:
                        logger.debug(f"Waiter (lastSeen={last_seen}) disconnected")
                        return False
                    conn.absorb(data)
        finally:
            if read is not None and not read.done():
                read.cancel()
            session.remove_waiter(waiter)
            self._waiting_tasks.discard(task)

        result = waiter.future.result()
        conn.state = ConnectionState.DISPATCHING
        if isinstance(result, ControlEvent):
            await conn.send(result.to_dict())
            return False
        await conn.send([event.to_dict() for event in result])
        return True

    def _handle_poll(self) -> Optional[Dict[str, Any]]:
        event = self.session.dequeue_feedback()
        return event.to_dict() if event else None

    def _handle_history(self, request: Dict[str, Any]) -> list:
        last = read_count(request, "last", DEFAULT_HISTORY)
        return [event.to_dict() for event in self.session.tail(last)]

    def _handle_status(self) -> Dict[str, Any]:
        return self.session.snapshot().to_dict()

    async def _handle_stop(self, conn: Connection) -> None:
        """Acknowledge, then tear down once the ack has been flushed."""
        logger.info("Shutdown requested via socket")
        await conn.send(ok_response({"stopping": True}))
        self.request_stop()


async def _serve(server: BridgeServer) -> None:
    await server.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, server.request_stop)

    await server.serve_forever()


def run_bridge(
    session_id: str,
    socket_dir: Optional[str] = None,
    history_limit: int = 0,
    log_level: str = "INFO",
) -> None:
    """
    Run a bridge in the current process until it is stopped.

    Args:
        session_id: Session identifier
        socket_dir: Directory for the socket file
        history_limit: Max activities kept in memory (0 = unbounded)
        log_level: Logging level name
    """
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    server = BridgeServer(
        session_id,
        socket_dir=socket_dir,
        history_limit=history_limit,
    )
    asyncio.run(_serve(server))


if __name__ == "__main__":
    import argparse
    import sys

    from pairbridge.core.configs import get_bridge_config, resolve_session_id

    try:
        config = get_bridge_config()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    parser = argparse.ArgumentParser(description="pair-bridge session broker")
    parser.add_argument(
        "--session-id",
        default=resolve_session_id(),
        help="Session identifier (default: $CLAUDE_SESSION_ID or 'default')",
    )
    parser.add_argument(
        "--socket-dir",
        default=str(config.socket_dir),
        help="Directory for the Unix socket",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=config.history_limit,
        help="Max activities kept in memory (0 = unbounded)",
    )
    parser.add_argument(
        "--log-level",
        default=config.log_level,
        help="Logging level",
    )

    args = parser.parse_args()

    run_bridge(
        session_id=args.session_id,
        socket_dir=args.socket_dir,
        history_limit=args.history_limit,
        log_level=args.log_level,
    )
