"""Pair agent prompt loading and assembly.

The pair agent only learns where the bridge lives from the prompt it is
launched with, so build_pair_prompt() must embed the socket path exactly
as get_socket_path() computes it.
"""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PAIR_PROMPT = """You are a pair programmer. Watch the main agent's activity via pair-bridge wait,
and emit feedback via pair-bridge emit feedback when you spot issues.
Focus on bugs, security issues, and missed edge cases."""


def load_pair_prompt(path: Optional[Path] = None) -> str:
    """
    Load the pair agent system prompt.

    Falls back to DEFAULT_PAIR_PROMPT when no path is given or the file
    is missing or unreadable.
    """
    if path is None:
        return DEFAULT_PAIR_PROMPT

    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Could not read pair prompt {path}: {e}; using default")
        return DEFAULT_PAIR_PROMPT

    return text or DEFAULT_PAIR_PROMPT


def build_pair_prompt(system_prompt: str, socket_path: Path, session_id: str) -> str:
    """
    Wrap the system prompt with bridge connection instructions.

    Args:
        system_prompt: Pair programmer behaviour prompt
        socket_path: Bridge socket the agent must talk to
        session_id: Bridge session id (exported to the CLI as CLAUDE_SESSION_ID)
    """
    return f"""{system_prompt}

You are connected to a pair programming bridge at {socket_path}.
Export CLAUDE_SESSION_ID={session_id} and use these commands to communicate:
- pair-bridge wait <lastSeen>: Block until the main agent does something
- pair-bridge emit feedback '{{"severity":"high|medium|low","message":"..."}}'

Start your watch loop now.""".strip()
