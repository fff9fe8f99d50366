"""Shared fixtures.  Engine processes in these tests run the bundled stub
engine under the current interpreter, so no JVM is needed.
"""
import os
import sys

import pytest

from partiql_explorer import metrics
from partiql_explorer.config import ExplorerConfig

_REPO_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), '..', '..'))


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Start each test from an empty metrics registry."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def stub_command(monkeypatch):
    """Command that runs the stub engine in a child process."""
    path = os.environ.get('PYTHONPATH')
    monkeypatch.setenv('PYTHONPATH', _REPO_ROOT + (os.pathsep + path if path else ''))
    return [sys.executable, '-m', 'partiql_explorer.engine.stub_engine']


@pytest.fixture
def worker_config(stub_command):
    return ExplorerConfig(engine_command=stub_command, close_timeout=5)


@pytest.fixture
def oneshot_config(stub_command):
    return ExplorerConfig(engine_command=stub_command, no_server=True)
