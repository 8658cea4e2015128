"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything that needs no display
    CHIP8_GUI=1 python -m pytest     # also open real pygame windows
"""

import os
import random

import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "gui: tests that open a real pygame window (skipped unless CHIP8_GUI=1)")


def pytest_collection_modifyitems(config, items):
    if os.environ.get("CHIP8_GUI"):
        return
    skip_gui = pytest.mark.skip(reason="set CHIP8_GUI=1 to run display tests")
    for item in items:
        if "gui" in item.keywords:
            item.add_marker(skip_gui)


@pytest.fixture
def seeded_rng():
    """Deterministic RNG for RND tests."""
    return random.Random(1234)
