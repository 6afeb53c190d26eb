"""Shared fixtures: two isolated roots per test and a settings object."""

from pathlib import Path

import pytest

from pai.config.settings import EngineSettings
from pai.core.runner import ActionRunner


class Counter:
    """File-backed invocation counter shared with action implementations.

    Action modules are imported from disk, so they cannot see test
    variables; they append one character to this file per call instead.
    """

    def __init__(self, path: Path):
        self.path = path
        self.path.write_text("")

    @property
    def count(self) -> int:
        return len(self.path.read_text())

    @property
    def snippet(self) -> str:
        """Python statement that records one invocation."""
        return f"with open({str(self.path)!r}, 'a') as f: f.write('x')"


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(
        user_root=tmp_path / "user",
        system_root=tmp_path / "system",
        cloud={"subdomain": "acme"},
    )


@pytest.fixture
def user_actions(settings) -> Path:
    return settings.user_root / "actions"


@pytest.fixture
def system_actions(settings) -> Path:
    return settings.system_root / "actions"


@pytest.fixture
def user_pipelines(settings) -> Path:
    return settings.user_root / "pipelines"


@pytest.fixture
def system_pipelines(settings) -> Path:
    return settings.system_root / "pipelines"


@pytest.fixture
def runner(settings) -> ActionRunner:
    return ActionRunner.from_settings(settings)


@pytest.fixture
def counter(tmp_path) -> Counter:
    return Counter(tmp_path / "calls.txt")
