"""
Shared fixtures for the clarify test suite.

The LLM is always an AsyncMock: no test touches the network.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.helpers import ALL_ON, RecordingHost, llm_decision


@pytest.fixture
def flags():
    return ALL_ON


@pytest.fixture
def llm():
    """Stand-in LLM client; set .call.side_effect or .call.return_value per test."""
    client = MagicMock()
    client.call = AsyncMock(return_value=llm_decision("ask_clarify"))
    return client


@pytest.fixture
def host():
    return RecordingHost()
