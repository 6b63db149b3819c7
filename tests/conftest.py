"""
Shared test fixtures for Leash tests.
"""

from pathlib import Path

import pytest

from leash.core.analyzer import CommandAnalyzer
from leash.core.config import Config, configure_logging
from leash.core.paths import PathResolver, ShellEnvironment

# Outside /tmp on purpose: the home directory must not fall in a temp zone
HOME = "/home/leash-test-user"


@pytest.fixture(autouse=True)
def _no_decision_log():
    """Make sure no test leaks a configured decision log into the next."""
    configure_logging(Config())
    yield
    configure_logging(Config())


@pytest.fixture
def env():
    """Shell environment with a fixed home and no OLDPWD."""
    return ShellEnvironment(home=HOME, variables={"HOME": HOME, "USER": "leash"})


@pytest.fixture
def project(tmp_path) -> Path:
    """Working directory for the guarded agent."""
    work = tmp_path / "project"
    work.mkdir()
    return work


@pytest.fixture
def resolver(project, env):
    return PathResolver(str(project), environment=env)


@pytest.fixture
def analyzer(project, env):
    """Return a CommandAnalyzer factory with the test home and working directory."""

    def _make(config: Config | None = None, environment: ShellEnvironment | None = None):
        return CommandAnalyzer(project, config=config, environment=environment or env)

    return _make


@pytest.fixture
def check(analyzer):
    """Return an analyze wrapper using the default config."""
    default = analyzer()

    def _check(command: str):
        return default.analyze(command)

    return _check


def home(path: str = "") -> str:
    """Absolute path under the test home directory."""
    return f"{HOME}/{path}" if path else HOME
