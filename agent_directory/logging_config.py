"""Logging setup for the API process.

Application loggers live under the ``agent_directory`` namespace. HTTP and
web3 client libraries stay at WARNING unless LOG_LEVEL is DEBUG.
"""
import logging
import os
from typing import Iterable


CLIENT_LOGGERS: Iterable[str] = (
    "httpx",
    "httpcore",
    "web3",
    "urllib3",
)


def setup_logging() -> None:
    """Configure root logging. Safe to call more than once."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root.setLevel(level)

    client_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)
