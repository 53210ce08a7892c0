"""
Global pytest configuration and fixtures for mcpy tests
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mcpy.config import reset_config

MCPY_ENV_VARS = (
    'MCPY_LOG_LEVEL',
    'MCPY_ARENA_BATCH_SIZE',
    'MCPY_STRICT_INITIALIZATION',
    'MCPY_LOG_PAYLOADS',
    'MCPY_MAX_WORKERS',
)


@pytest.fixture(autouse=True)
def clean_mcpy_environment(monkeypatch):
    """Run every test against default settings, whatever the shell exported"""
    for name in MCPY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
