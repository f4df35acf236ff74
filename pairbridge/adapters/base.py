"""
Base adapter interface for pair agent backends.
Each backend knows how to launch and supervise one kind of pair agent.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from pairbridge.bridge.protocol import get_socket_path
from pairbridge.core.configs import BridgeConfig


class AdapterError(RuntimeError):
    """The pair agent could not be spawned or supervised."""


class BaseAdapter(ABC):
    """Abstract base class for pair agent adapters."""

    backend: str = ""
    name: str = ""

    def __init__(self, socket_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            socket_dir: Directory the bridge socket lives in (default: /tmp)
        """
        self.socket_dir = socket_dir

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "BaseAdapter":
        """Build the adapter from user configuration."""
        return cls(socket_dir=config.socket_dir)

    def socket_path_for(self, session_id: str) -> Path:
        return get_socket_path(session_id, self.socket_dir)

    @abstractmethod
    async def spawn(self, session_id: str, system_prompt: str) -> None:
        """
        Launch the pair agent for a session.

        Args:
            session_id: Bridge session id (determines the socket path)
            system_prompt: Pair programmer system prompt

        Raises:
            AdapterError: If the agent could not be started
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop the pair agent. Safe to call when it is not running."""

    @abstractmethod
    def is_running(self) -> bool:
        pass

    @abstractmethod
    def get_process_id(self) -> Optional[str]:
        """Identifier of the running agent (pid or task id), if any."""
