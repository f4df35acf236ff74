"""Pair programming session orchestration.

SessionManager owns the one active session of a process: it starts the
bridge, asks an adapter to launch the pair agent, and tears both down in
the right order. Construct one manager at startup and pass it to
whatever needs it.
"""

import asyncio
import logging
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pairbridge.adapters import BaseAdapter, create_adapter
from pairbridge.bridge.server import BridgeServer
from pairbridge.core.configs import BridgeConfig, SESSION_ENV_VARS
from pairbridge.prompts.pair_prompt import load_pair_prompt

logger = logging.getLogger(__name__)

SESSION_ENV_VAR = SESSION_ENV_VARS[0]


class SessionError(RuntimeError):
    """Session manager misuse: double start, or stop with nothing running."""


@dataclass
class SessionInfo:
    session_id: str
    socket_path: Path
    backend: Optional[str]


@dataclass
class ActiveSession:
    id: str
    bridge: BridgeServer
    adapter: Optional[BaseAdapter]
    backend: Optional[str]
    started_at: float


def generate_session_id() -> str:
    """Short random hex id (8 characters)."""
    return secrets.token_hex(4)


class SessionManager:
    """
    Runs at most one pair programming session at a time.

    All methods must be called from the asyncio loop that runs the bridge.
    """

    def __init__(self, config: Optional[BridgeConfig] = None):
        self.config = config or BridgeConfig()
        self.active: Optional[ActiveSession] = None
        self._stop_task: Optional["asyncio.Task[Dict[str, Any]]"] = None

    def is_session_active(self) -> bool:
        return self.active is not None

    @property
    def session_id(self) -> Optional[str]:
        return self.active.id if self.active else None

    async def start_session(
        self,
        backend: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        spawn_pair: bool = True,
    ) -> SessionInfo:
        """
        Start the bridge and (optionally) the pair agent.

        Args:
            backend: Adapter backend tag (default: config.default_backend)
            custom_prompt: Override the pair agent system prompt
            spawn_pair: Launch a pair agent through an adapter

        Raises:
            SessionError: If a session is already active
            ValueError: If the backend is unknown
            OSError: If the bridge socket cannot be bound
            AdapterError: If the pair agent fails to start
        """
        if self.active:
            raise SessionError(f"Session already active: {self.active.id}")
        self._stop_task = None

        backend = (backend or self.config.default_backend) if spawn_pair else None
        adapter = create_adapter(backend, self.config) if backend else None

        session_id = generate_session_id()
        bridge = BridgeServer(
            session_id,
            socket_dir=self.config.socket_dir,
            history_limit=self.config.history_limit,
            on_stop_request=self.request_stop,
        )
        await bridge.start()

        if adapter is not None:
            system_prompt = custom_prompt or load_pair_prompt(self.config.prompt_path)
            try:
                await adapter.spawn(session_id, system_prompt)
            except BaseException:
                # Don't leave a bridge behind when the pair agent fails
                await bridge.stop()
                raise

        self.active = ActiveSession(
            id=session_id,
            bridge=bridge,
            adapter=adapter,
            backend=backend,
            started_at=time.monotonic(),
        )

        # For hooks and the CLI running in child processes
        os.environ[SESSION_ENV_VAR] = session_id

        logger.info(f"Session {session_id} started (backend: {backend or 'none'})")
        return SessionInfo(
            session_id=session_id,
            socket_path=bridge.get_socket_path(),
            backend=backend,
        )

    async def stop_session(self) -> Dict[str, Any]:
        """
        Stop the pair agent (best effort), then the bridge.

        Returns:
            Dict with session_id, duration (seconds) and the final bridge
            status (taken before teardown)

        Raises:
            SessionError: If no session is active
        """
        if not self.active:
            raise SessionError("No active session")

        session = self.active
        if session.bridge.session is not None:
            snapshot = session.bridge.session.snapshot()
        else:
            snapshot = session.bridge.final_status
        status = snapshot.to_dict() if snapshot else None

        if session.adapter is not None:
            try:
                await session.adapter.stop()
            except Exception as e:
                logger.warning(f"Pair agent did not stop cleanly: {e}")

        await session.bridge.stop()

        duration = int(time.monotonic() - session.started_at)
        self.active = None
        if os.environ.get(SESSION_ENV_VAR) == session.id:
            del os.environ[SESSION_ENV_VAR]

        logger.info(f"Session {session.id} stopped after {duration}s")
        return {
            "session_id": session.id,
            "duration": duration,
            "status": status,
        }

    def request_stop(self) -> "asyncio.Task[Dict[str, Any]]":
        """
        Schedule stop_session() once and return its task.

        The bridge routes a socket ``stop`` command here, and the CLI routes
        SIGINT/SIGTERM here, so the pair agent is stopped before the bridge.
        Repeated requests share one task.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self.stop_session())
        return self._stop_task

    def get_session_status(self) -> Dict[str, Any]:
        """Describe the active session, or ``{"active": False}``."""
        if not self.active:
            return {"active": False}

        session = self.active
        bridge_state = session.bridge.session
        return {
            "active": True,
            "session_id": session.id,
            "backend": session.backend,
            "socket_path": str(session.bridge.get_socket_path()),
            "uptime": int(time.monotonic() - session.started_at),
            "pair_running": session.adapter.is_running() if session.adapter else False,
            "pair_process_id": session.adapter.get_process_id() if session.adapter else None,
            "status": bridge_state.snapshot().to_dict() if bridge_state else None,
        }
