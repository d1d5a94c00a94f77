"""
Entry point for the bulk send server.
"""

from __future__ import annotations

import uvicorn

from easysend.common.config import Config
from easysend.common.logging_utils import setup_logging

from .core import EasySendServer


def start_server(config: Config | None = None) -> None:
    """Start the bulk send server."""
    if config is None:
        config = Config()
    setup_logging(config)
    server = EasySendServer(config=config)
    uvicorn.run(server.app, host=config.SERVER_HOST, port=config.SERVER_PORT)
