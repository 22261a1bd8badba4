"""Pytest configuration and fixtures."""

import pytest

from cadence.config import Settings
from cadence.models import Actor, Workflow, default_workflow
from cadence.store import InMemoryTaskStore
from cadence.tasks import TaskManager, TaskWorkflowEngine

from tests.fakes import T0, FrozenClock, RecordingDispatcher


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a Monday morning."""
    return FrozenClock(T0)


@pytest.fixture
def workflow() -> Workflow:
    return default_workflow()


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def actor() -> Actor:
    return Actor(id="user-dev", roles=["developer"])


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(_env_file=None)


@pytest.fixture
def engine(
    workflow: Workflow,
    store: InMemoryTaskStore,
    dispatcher: RecordingDispatcher,
    clock: FrozenClock,
) -> TaskWorkflowEngine:
    return TaskWorkflowEngine(workflow, store, dispatcher, clock)


@pytest.fixture
def manager(
    store: InMemoryTaskStore,
    workflow: Workflow,
    dispatcher: RecordingDispatcher,
    clock: FrozenClock,
    test_settings: Settings,
) -> TaskManager:
    return TaskManager(
        store, workflow, dispatcher=dispatcher, clock=clock, settings=test_settings
    )

