"""Shared test fixtures for the notify app."""

import pytest

from apps.notify._tests.factories import make_incident


@pytest.fixture
def incident():
    return make_incident()
