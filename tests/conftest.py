"""
Pytest configuration and shared fixtures for Agent History tests.
"""

import os
from pathlib import Path

import pytest

from agent_history.checkpoint.repository import HistoryRepository
from agent_history.utils.config import HistoryConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment overrides out of the tests."""
    for key in list(os.environ):
        if key.startswith("AGENT_HISTORY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """An empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def history_config() -> HistoryConfig:
    return HistoryConfig()


@pytest.fixture
def repo(project_dir: Path, history_config: HistoryConfig) -> HistoryRepository:
    return HistoryRepository(project_dir, history_config)


@pytest.fixture
async def initialized_repo(repo: HistoryRepository) -> HistoryRepository:
    """A repository initialized on an empty project (no initial commit)."""
    result = await repo.initialize()
    assert result.ok, result
    return repo
