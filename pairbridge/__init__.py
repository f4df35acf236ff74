"""pair-bridge: connect a main coding agent with a pair agent that watches it."""

__version__ = "0.1.0"
