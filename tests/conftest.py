"""
Shared pytest fixtures for the stampede test suite.

Fixtures hand out fresh recorders, testing settings and fake-session
HTTP clients so every test starts from an empty metric state.

Key Concepts Demonstrated:
- Fixture dependencies (clients built on the shared recorder)
- Factory fixtures for per-test customisation
- Testing configuration selected through the config factory
"""

import os
import random
import threading

import pytest
from faker import Faker

# Select the testing configuration before anything reads it.
os.environ["STAMPEDE_ENV"] = "testing"

from stampede.config import Settings, TestingConfig
from stampede.http import HttpClient
from stampede.metrics import MetricRecorder
from stampede.scenario import IterationState, StepRunner
from tests.mocks.fake_http import FakeSession


fake = Faker()


# -----------------------------------------------------------------------------
# Engine Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def recorder():
    """A fresh metric recorder for each test."""
    return MetricRecorder()


@pytest.fixture
def settings():
    """Settings built from ``TestingConfig`` (fake URL, short timers)."""
    return Settings.from_config(TestingConfig)


@pytest.fixture
def make_client(recorder, settings):
    """
    Factory fixture for ``HttpClient`` instances backed by a ``FakeSession``.

    Example:
        def test_something(make_client):
            client, session = make_client([FakeResponse(201)])
    """

    def _make_client(replies=None, default=None, tags=None):
        session = FakeSession(replies, default)
        client = HttpClient(
            settings.base_url,
            recorder,
            settings.request_timeout,
            tags=tags,
            session=session,
        )
        return client, session

    return _make_client


@pytest.fixture
def halt():
    return threading.Event()


@pytest.fixture
def step_runner(make_client, recorder, halt):
    """
    Factory fixture returning ``(runner, session)`` for scenario tests.
    """

    def _step_runner(replies=None, default=None, seed=7):
        client, session = make_client(replies, default, tags={"vu": "1"})
        runner = StepRunner(client, recorder, random.Random(seed), halt)
        return runner, session

    return _step_runner


@pytest.fixture
def iteration_state():
    """Factory fixture for ``IterationState`` with optional setup data."""

    def _iteration_state(scenario="scenario", data=None, **variables):
        state = IterationState(vu=1, scenario=scenario, data=data, rng=random.Random(1))
        state.vars.update(variables)
        return state

    return _iteration_state


@pytest.fixture
def pr_id():
    """A random pull-request id in the service's format."""
    return f"pr-{fake.uuid4()}"
