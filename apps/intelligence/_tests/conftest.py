"""Shared test fixtures for intelligence app."""

import pytest


@pytest.fixture
def local_classifier():
    """Create a LocalClassifier with small vectors for testing."""
    from apps.intelligence.providers import LocalClassifier

    return LocalClassifier(dimensions=64)
