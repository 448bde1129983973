#!/usr/bin/env python3
"""
otron: multi-platform AI agent session runner.

This module is a thin shim that exposes the CLI app from otron.cli.
The actual implementation lives in otron/cli/cli.py.

Usage:
    otron run [OPTIONS] MESSAGE
    otron sessions list [--completed]
    otron sessions show SESSION_ID
    otron sessions cancel SESSION_ID
    otron sessions queue SESSION_ID TEXT [--stop]
"""

from .cli.cli import bootstrap

# Call bootstrap at module import time so the console entrypoint
# (otron.main:app) loads the user env before any client is created
bootstrap()

from .cli.cli import app  # noqa: E402

if __name__ == "__main__":
    app()
