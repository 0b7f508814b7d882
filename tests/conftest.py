"""Provide fixtures for the entire parent directory."""

import os

import pytest

from tests.fixtures.videos import *  # noqa: F403


@pytest.fixture(scope="session", autouse=True)
def force_eager_imports():
    """Force eager imports during testing to catch import issues.

    This fixture sets EAGER_IMPORT=1 for the entire test session, which forces
    the lazy_loader library to import all modules immediately rather than deferring
    them until first access.
    """
    os.environ["EAGER_IMPORT"] = "1"
    yield
    os.environ.pop("EAGER_IMPORT", None)
