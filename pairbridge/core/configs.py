"""Configuration management for pair-bridge.

Loads user settings from ~/.config/pairbridge/config.cfg, then overlays
PAIR_BRIDGE_* values from ~/.config/pairbridge/.env and finally from the
process environment. Provides BridgeConfig.
"""

import configparser
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from pairbridge.bridge.protocol import DEFAULT_SOCKET_DIR

CONFIG_DIR = Path.home() / ".config" / "pairbridge"
CONFIG_PATH = CONFIG_DIR / "config.cfg"
ENV_PATH = CONFIG_DIR / ".env"
ENV_PREFIX = "PAIR_BRIDGE_"

SESSION_ENV_VARS = ("CLAUDE_SESSION_ID", "SESSION_ID")
DEFAULT_SESSION_ID = "default"

VERBOSITY_LEVELS = {
    "quiet": ("high",),
    "normal": ("high", "medium"),
    "verbose": ("high", "medium", "low"),
}


@dataclass
class BridgeConfig:
    socket_dir: Path = DEFAULT_SOCKET_DIR
    history_limit: int = 0
    default_backend: str = "claude-opus"
    feedback_verbosity: str = "normal"
    prompt_path: Optional[Path] = None
    codex_command: str = "codex"
    adapter_stop_timeout: float = 5.0
    log_level: str = "INFO"


def _prefixed(values: Mapping[str, Optional[str]]) -> Dict[str, str]:
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in values.items()
        if key.upper().startswith(ENV_PREFIX) and value is not None
    }


def load_raw_config(
    path: Path = CONFIG_PATH,
    env_path: Optional[Path] = ENV_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Load configuration values with lowercase keys.

    Precedence (highest first): process environment, .env file, config.cfg.
    """
    cfg = configparser.ConfigParser()
    data: Dict[str, str] = {}

    if path.exists():
        cfg.read(path)
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})

    if env_path is not None and env_path.exists():
        data.update(_prefixed(dotenv_values(env_path)))

    data.update(_prefixed(os.environ if environ is None else environ))
    return data


def _get_int(raw: Dict[str, str], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid integer for '{key}': {value!r}")


def _get_float(raw: Dict[str, str], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid number for '{key}': {value!r}")


def get_bridge_config(raw: Optional[Dict[str, str]] = None) -> BridgeConfig:
    """
    Build a BridgeConfig from raw configuration values.
    Raises ValueError if a value is malformed.
    """
    raw = load_raw_config() if raw is None else raw

    history_limit = _get_int(raw, "history_limit", 0)
    if history_limit < 0:
        raise ValueError("'history_limit' must be >= 0")

    verbosity = raw.get("feedback_verbosity", "normal").strip().lower()
    if verbosity not in VERBOSITY_LEVELS:
        raise ValueError(
            f"Invalid 'feedback_verbosity': {verbosity!r}. "
            f"Expected one of: {', '.join(VERBOSITY_LEVELS)}"
        )

    socket_dir = raw.get("socket_dir", "").strip()
    prompt_path = raw.get("prompt_path", "").strip()

    return BridgeConfig(
        socket_dir=Path(socket_dir).expanduser() if socket_dir else DEFAULT_SOCKET_DIR,
        history_limit=history_limit,
        default_backend=raw.get("default_backend", "claude-opus").strip().lower(),
        feedback_verbosity=verbosity,
        prompt_path=Path(prompt_path).expanduser() if prompt_path else None,
        codex_command=raw.get("codex_command", "codex").strip() or "codex",
        adapter_stop_timeout=_get_float(raw, "adapter_stop_timeout", 5.0),
        log_level=raw.get("log_level", "INFO").strip().upper() or "INFO",
    )


def resolve_session_id(environ: Optional[Mapping[str, str]] = None) -> str:
    """Session id from $CLAUDE_SESSION_ID, then $SESSION_ID, else 'default'."""
    environ = os.environ if environ is None else environ
    for name in SESSION_ENV_VARS:
        value = environ.get(name, "").strip()
        if value:
            return value
    return DEFAULT_SESSION_ID


def should_display(severity: str, verbosity: str) -> bool:
    """Whether feedback of this severity is shown at the given verbosity."""
    return severity in VERBOSITY_LEVELS.get(verbosity, VERBOSITY_LEVELS["normal"])
