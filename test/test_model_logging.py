"""Tests for the shared logger tree."""

import logging
import os
import sys
import unittest

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from model_logging import ROOT_LOGGER, get_logger


class TestGetLogger(unittest.TestCase):
    def test_loggers_share_one_handler(self):
        logger = get_logger("multicall")

        self.assertEqual(logger.name, "protection_market.multicall")
        self.assertEqual(logger.handlers, [])
        self.assertEqual(len(logging.getLogger(ROOT_LOGGER).handlers), 1)

        get_logger("chain")
        self.assertEqual(len(logging.getLogger(ROOT_LOGGER).handlers), 1)

    def test_messages_reach_the_root_logger(self):
        with self.assertLogs(ROOT_LOGGER, level="WARNING") as cm:
            get_logger("cozy_market").warning("market triggered")
        self.assertEqual(cm.output, ["WARNING:protection_market.cozy_market:market triggered"])


if __name__ == "__main__":
    unittest.main()
