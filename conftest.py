"""Root conftest.py for hookrelay tests.

This file MUST be at the repository root for fixtures to be discovered
when running tests from any subdirectory.
"""

import pytest
from unittest.mock import MagicMock


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Components bind a component name on construction; ``bind`` returns the
    same mock so assertions see every call.
    """
    logger = MagicMock()
    logger.info = MagicMock()
    logger.debug = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.exception = MagicMock()
    logger.bind = MagicMock(return_value=logger)
    return logger
