"""
Logging setup shared by the protection market model.

Every module logs through a child of the `protection_market` logger, which owns the
only handler. LOG_LEVEL (from the environment or a .env file) sets the level of the
whole tree, so tests and simulations can silence or open up every contract at once.
"""

import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

ROOT_LOGGER = "protection_market"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        root.setLevel(getattr(logging, level, logging.INFO))
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the logger of a contract or module, e.g. `protection_market.multicall`."""
    return _configure_root().getChild(name)
