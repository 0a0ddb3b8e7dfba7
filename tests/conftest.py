"""Common test fixtures for snipbook."""

import logging
import tempfile
from pathlib import Path

import pytest

from snipbook.config import config
from snipbook.observability import ROOT_LOGGER_NAME, metrics
from snipbook.services.store import Store
from snipbook.storage.persistence import PersistenceLayer
from tests.fakes import FakeClipboard, FakeEditorLauncher

RUST_MAIN = 'use std::io;\n\nfn main() {\n    println!("hello");\n}\n'


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory."""
    with tempfile.TemporaryDirectory() as data_dir:
        yield Path(data_dir)


@pytest.fixture
def test_config(temp_data_dir, monkeypatch):
    """Point the global config at the temporary directory (auto-restored)."""
    monkeypatch.setattr(config, "data_dir", temp_data_dir)
    monkeypatch.setattr(config, "database_file", Path("database.json"))
    monkeypatch.setattr(config, "snippets_dir", Path("snippets"))
    monkeypatch.setattr(config, "backup_dir", Path("backups"))
    monkeypatch.setattr(config, "max_backups", 10)
    yield config


@pytest.fixture(autouse=True)
def _reset_logging_and_metrics():
    """Drop handlers installed by configure_logging and clear metrics."""
    yield
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    metrics.reset()


@pytest.fixture
def persistence(test_config):
    """Create a persistence layer inside the temporary data directory."""
    return PersistenceLayer()


@pytest.fixture
def store(persistence):
    """Create an empty disk-backed store."""
    return Store.open(persistence)


@pytest.fixture
def memory_store():
    """Create a store that never touches the disk."""
    return Store()


@pytest.fixture
def populated_store(store):
    """A store with a small tree:

        Work
          Rust        (hello: Rust, favorite, tags #rust #cli)
          Python      (fetch: Python, tag #http)
        Personal      (notes: Markdown)
    """
    work = store.create_notebook("Work", description="Day job snippets")
    rust = store.create_notebook("Rust", parent_id=work)
    python = store.create_notebook("Python", parent_id=work)
    personal = store.create_notebook("Personal")

    hello = store.create_snippet(
        "hello", "rust", rust, content=RUST_MAIN, tags=["rust", "#cli"]
    )
    store.toggle_favorite(hello)
    store.create_snippet(
        "fetch",
        "python",
        python,
        description="GET with retries",
        content="import requests\n\nrequests.get(url, timeout=5)\n",
        tags=["http"],
    )
    store.create_snippet("notes", "markdown", personal, content="# Todo\n- buy milk\n")

    store.ids = {"work": work, "rust": rust, "python": python, "personal": personal}
    return store


@pytest.fixture
def fake_editor():
    return FakeEditorLauncher()


@pytest.fixture
def fake_clipboard():
    return FakeClipboard()
