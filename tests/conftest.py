"""Pytest configuration for otron tests."""

import logging
import os
from collections.abc import Iterator

import pytest

from otron.infra.store.session_store import SessionStore
from tests.fakes import FakeKeyValueClient


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Disable Braintrust tracing
    - Keep a developer's Redis and model settings out of unit tests
    """
    # Remove BRAINTRUST_API_KEY to disable Braintrust tracing
    os.environ.pop("BRAINTRUST_API_KEY", None)

    for name in (
        "OTRON_REDIS_URL",
        "REDIS_URL",
        "KV_URL",
        "OTRON_MAX_RETRY_ATTEMPTS",
        "OTRON_MAX_STEPS",
        "OTRON_GOAL_CONFIDENCE_THRESHOLD",
        "OTRON_REPOSITORIES_FILE",
    ):
        os.environ.pop(name, None)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration", "e2e")):
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def kv() -> FakeKeyValueClient:
    return FakeKeyValueClient()


@pytest.fixture
def store(kv: FakeKeyValueClient) -> SessionStore:
    return SessionStore(kv)


@pytest.fixture(autouse=True)
def restore_otron_logger() -> Iterator[None]:
    """Undo configure_logging() calls made by CLI tests."""
    root = logging.getLogger("otron")
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    root.propagate = propagate
