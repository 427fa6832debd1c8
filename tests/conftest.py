"""Shared test fixtures for the Claude CLI Gateway."""

import functools

import pytest

from helpers import write_fake_cli, RecordingNotifier
from session_manager import SessionStore


@pytest.fixture
def fake_cli(tmp_path):
    """Factory writing a fake Claude CLI into tmp_path; returns its path."""
    return functools.partial(write_fake_cli, tmp_path)


@pytest.fixture
def record_path(tmp_path):
    """Where a fake CLI writes its argv, cwd and environment."""
    return tmp_path / "invocation.json"


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions.json", ttl=3600)


@pytest.fixture
def notifier():
    return RecordingNotifier()
