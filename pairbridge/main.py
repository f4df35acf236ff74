#!/usr/bin/env python3
"""
Main entry point for the Typer-based pair-bridge CLI.

This delegates to the UI layer in pairbridge.ui.cli to keep the
console script mapping stable.
"""

from pairbridge.ui.cli import run as pair_bridge


if __name__ == "__main__":
    pair_bridge()
