"""Codex adapter: runs the `codex` CLI as a subprocess watching the bridge."""

import asyncio
import logging
import os
import shlex
from typing import Optional

from pairbridge.adapters.base import AdapterError, BaseAdapter
from pairbridge.core.configs import BridgeConfig
from pairbridge.prompts.pair_prompt import build_pair_prompt

logger = logging.getLogger(__name__)

# Grace period before deciding the process survived startup
STARTUP_CHECK_DELAY = 0.1


class CodexAdapter(BaseAdapter):
    """
    Adapter for using OpenAI Codex as the pair programmer.

    Requirements:
    - `codex` CLI must be installed and in PATH (or set codex_command)
    - OPENAI_API_KEY must be set in environment
    """

    backend = "codex"
    name = "Codex"

    def __init__(
        self,
        socket_dir=None,
        command: str = "codex",
        stop_timeout: float = 5.0,
    ):
        """
        Args:
            socket_dir: Directory the bridge socket lives in
            command: Codex executable, may include extra arguments
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL
        """
        super().__init__(socket_dir)
        self.command = command
        self.stop_timeout = stop_timeout
        self.process: Optional[asyncio.subprocess.Process] = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "CodexAdapter":
        return cls(
            socket_dir=config.socket_dir,
            command=config.codex_command,
            stop_timeout=config.adapter_stop_timeout,
        )

    async def spawn(self, session_id: str, system_prompt: str) -> None:
        prompt = build_pair_prompt(
            system_prompt,
            socket_path=self.socket_path_for(session_id),
            session_id=session_id,
        )
        argv = shlex.split(self.command) + ["--prompt", prompt]
        env = {
            **os.environ,
            "CLAUDE_PAIR_SESSION": session_id,
            "CLAUDE_SESSION_ID": session_id,
        }

        try:
            self.process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            self.process = None
            raise AdapterError(f"Failed to start {argv[0]}: {e}") from e

        # Catch immediate failures (bad flags, missing API key)
        await asyncio.sleep(STARTUP_CHECK_DELAY)
        if self.process.returncode is not None:
            code = self.process.returncode
            self.process = None
            raise AdapterError(f"Codex process exited immediately with code {code}")

        logger.info(f"Codex pair agent started (pid {self.process.pid})")

    async def stop(self) -> None:
        process = self.process
        if process is None:
            return

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            else:
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Codex (pid {process.pid}) ignored SIGTERM for "
                        f"{self.stop_timeout:.0f}s, killing"
                    )
                    process.kill()
                    await process.wait()

        self.process = None

    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def get_process_id(self) -> Optional[str]:
        if self.process is None:
            return None
        return str(self.process.pid)
