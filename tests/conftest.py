"""Shared pytest fixtures for AgriAid tests."""

import os
import sys

import pytest

# Add the project root so the flat modules import without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings  # noqa: E402
from engine import WizardSession  # noqa: E402
from mock_data import FakeGateway  # noqa: E402


@pytest.fixture
def settings():
    return Settings(gemini_api_key="test-gemini-key", elevenlabs_api_key="test-eleven-key")


@pytest.fixture
def session():
    return WizardSession()


@pytest.fixture
def gateway():
    return FakeGateway()
