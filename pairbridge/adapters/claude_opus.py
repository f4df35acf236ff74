"""Claude Opus adapter: the pair agent runs as a background task of the host."""

import logging
from typing import Optional

from pairbridge.adapters.base import BaseAdapter
from pairbridge.prompts.pair_prompt import build_pair_prompt

logger = logging.getLogger(__name__)


class ClaudeOpusAdapter(BaseAdapter):
    """
    Adapter for using Claude Opus as the pair programmer.

    No process is launched here. The host agent starts Opus as a
    background task using the prompt prepared by spawn(), which points the
    task at this session's bridge socket.
    """

    backend = "claude-opus"
    name = "Claude Opus"

    def __init__(self, socket_dir=None):
        super().__init__(socket_dir)
        self.task_id: Optional[str] = None
        self.prompt: Optional[str] = None
        self._running = False

    async def spawn(self, session_id: str, system_prompt: str) -> None:
        self.prompt = build_pair_prompt(
            system_prompt,
            socket_path=self.socket_path_for(session_id),
            session_id=session_id,
        )
        self.task_id = f"pair-{session_id}"
        self._running = True
        logger.info(f"Prepared Claude Opus pair task {self.task_id}")

    async def stop(self) -> None:
        if self._running:
            logger.info(f"Releasing Claude Opus pair task {self.task_id}")
        self._running = False
        self.task_id = None

    def is_running(self) -> bool:
        return self._running

    def get_process_id(self) -> Optional[str]:
        return self.task_id
