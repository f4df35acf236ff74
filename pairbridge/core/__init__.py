"""Configuration and session orchestration for pair-bridge.

Import directly from submodules as needed.
"""

__all__ = []
