"""Shared fixtures for reconciler tests."""

import logging

import pytest

from reconciler.config.models import ProviderSettings
from reconciler.providers.memory import build_simulated_registry
from reconciler.state.models import ResourceSpec
from reconciler.state.store import InMemoryStateStore
from reconciler.utils.retry import RetryStrategy


def spec(resource_type, resource_name, depends_on=(), **attributes):
    """Build a ResourceSpec whose ``name`` attribute defaults to the logical name."""
    attributes.setdefault("name", resource_name)
    return ResourceSpec(type=resource_type, name=resource_name, attributes=attributes, depends_on=list(depends_on))


@pytest.fixture
def settings():
    return ProviderSettings(project="demo-project", region="us-central1")


@pytest.fixture
def registry(settings):
    return build_simulated_registry(settings)


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def fast_retry():
    return RetryStrategy(max_attempts=3, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers and isinstance(handler, logging.FileHandler):
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
