"""
Shared pytest fixtures and configuration for Orchestrator tests.
"""

import asyncio
from collections import Counter

import pytest


@pytest.fixture
def calls():
    """Count producer invocations by name."""
    return Counter()


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run
