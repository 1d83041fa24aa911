import json
import os
import sys

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import lazy_todo as lt  # noqa: E402


@pytest.fixture
def data_path(tmp_path):
    """Return a unique task file path per test; the file does not exist yet."""
    return tmp_path / "todos.json"


@pytest.fixture
def write_tasks(data_path):
    def _write(entries):
        data_path.write_text(json.dumps(entries), encoding="utf-8")
        return data_path
    return _write


@pytest.fixture
def make_session(data_path):
    """Build a session over an in-memory list backed by ``data_path``."""
    def _make(tasks=None, **kwargs):
        store = lt.TaskStore(str(data_path), tasks or [])
        return lt.TodoSession(store, **kwargs)
    return _make
