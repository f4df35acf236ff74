"""Pair agent adapters and the registry that selects them by backend tag.

Adding a backend means writing a BaseAdapter subclass and registering it;
nothing that creates adapters needs to change.
"""

from typing import Dict, List, Optional, Type

from pairbridge.adapters.base import AdapterError, BaseAdapter
from pairbridge.adapters.claude_opus import ClaudeOpusAdapter
from pairbridge.adapters.codex import CodexAdapter
from pairbridge.core.configs import BridgeConfig

# Registry of available backends
ADAPTERS: Dict[str, Type[BaseAdapter]] = {}


def register_adapter(adapter_class: Type[BaseAdapter]) -> Type[BaseAdapter]:
    """Register an adapter class under its ``backend`` tag. Usable as a decorator."""
    if not adapter_class.backend:
        raise ValueError(f"{adapter_class.__name__} has no backend tag")
    ADAPTERS[adapter_class.backend] = adapter_class
    return adapter_class


register_adapter(ClaudeOpusAdapter)
register_adapter(CodexAdapter)


def create_adapter(backend: str, config: Optional[BridgeConfig] = None) -> BaseAdapter:
    """
    Create an adapter for the given backend.

    Args:
        backend: Backend tag (case-insensitive)
        config: Settings for the adapter (default: built-in defaults)

    Raises:
        ValueError: If the backend is not registered
    """
    adapter_class = ADAPTERS.get(backend.lower())
    if not adapter_class:
        available = ", ".join(ADAPTERS)
        raise ValueError(f"Unknown backend: {backend}. Available backends: {available}")
    return adapter_class.from_config(config or BridgeConfig())


def list_backends() -> List[Dict[str, str]]:
    return [
        {"backend": tag, "name": adapter_class.name}
        for tag, adapter_class in ADAPTERS.items()
    ]


__all__ = [
    "ADAPTERS",
    "AdapterError",
    "BaseAdapter",
    "ClaudeOpusAdapter",
    "CodexAdapter",
    "create_adapter",
    "list_backends",
    "register_adapter",
]
