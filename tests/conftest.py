"""
Core pytest configuration and fixtures for TutorConnect testing.

This module provides shared test fixtures, configuration, and utilities
for the backend, controller and app tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from tutorconnect.backend import Backend, InMemory, Subscription
from tutorconnect.config import Settings
from tutorconnect.controller import Controller
from tutorconnect.models import STUDENT_ROLE, TEACHER_ROLE, Review, Student, Teacher

# ===== CLOCK =====


class FakeClock:
    """Deterministic time source for the in-memory backend."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_teacher() -> Teacher:
    """A fully filled-in teacher profile."""
    return Teacher(
        id="t1",
        name="Dr. Evelyn Reed",
        email="evelyn@example.com",
        headline="PhD in Physics",
        subjects=["Physics", "Mathematics", "Chemistry"],
        bio="Ten years of teaching experience.",
        rating=4.9,
        reviews=[
            Review(id=1, student_name="Alex", rating=5, comment="Amazing teacher!")
        ],
        hourly_rate=60,
    )


@pytest.fixture
def sample_student() -> Student:
    return Student(
        id="s1",
        name="Alice Carter",
        email="alice@example.com",
        learning_goals="Prepare for AP Physics",
    )


# ===== BACKEND FIXTURES =====


@pytest.fixture
def backend(clock) -> InMemory:
    """An empty in-memory backend driven by the fake clock."""
    return InMemory(clock=clock)


@pytest.fixture
def student_session(backend):
    """A backend session signed in as a freshly registered student."""
    session = backend.session()
    session.sign_up_with_password(
        "Alice Carter", "alice@example.com", "secret1", STUDENT_ROLE
    )
    return session


@pytest.fixture
def teacher_session(backend):
    """A backend session signed in as a freshly registered teacher."""
    session = backend.session()
    session.sign_up_with_password(
        "Evelyn Reed", "evelyn@example.com", "secret2", TEACHER_ROLE
    )
    return session


# ===== CONTROLLER FIXTURES =====


@pytest.fixture
def guest(backend) -> Controller:
    """A signed-out session."""
    return Controller(backend.session())


@pytest.fixture
def student(student_session, teacher_session) -> Controller:
    """The student's session, with one teacher in the directory."""
    return Controller(student_session)


@pytest.fixture
def teacher(student_session, teacher_session) -> Controller:
    return Controller(teacher_session)


@pytest.fixture
def mock_backend():
    """Mock backend that reports a signed-out user."""
    mock = MagicMock(spec=Backend)
    mock.list_all_users.return_value = []
    mock.list_conversations_for_user.return_value = []

    def subscribe_auth_state(callback):
        callback(None)
        return Subscription(lambda: None)

    mock.subscribe_auth_state.side_effect = subscribe_auth_state
    mock.subscribe_messages.return_value = Subscription(lambda: None)
    mock.session.return_value = mock
    return mock


# ===== APP FIXTURES =====


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def test_app(backend, settings):
    """
    Provides a TutorConnect app instance on the in-memory backend.

    Useful for integration tests that need a fully wired app without any
    hosted service.
    """
    from tutorconnect import TutorConnect

    return TutorConnect(backend=backend, settings=settings)


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow-running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
