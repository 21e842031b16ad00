"""Shared pytest fixtures for npmsentinel tests."""

import pytest


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def state_env(tmp_path, monkeypatch):
    """Point the settings at a throwaway state/work directory pair."""
    monkeypatch.setenv("NPMSENTINEL_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("NPMSENTINEL_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
    return tmp_path
