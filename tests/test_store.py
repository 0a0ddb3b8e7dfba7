"""Tests for the Store aggregate root."""
from unittest.mock import patch

import pytest

from snipbook.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    StorageError,
    ValidationError,
)
from snipbook.models.schema import Notebook
from snipbook.services.store import Store
from tests.conftest import RUST_MAIN
from tests.fakes import FakeEditorLauncher


def _reopen(store):
    return Store.open(store.persistence)


class TestPersistenceFlow:
    def test_every_mutation_is_persisted(self, populated_store):
        reopened = _reopen(populated_store)
        assert reopened.stats() == populated_store.stats()
        assert reopened.root_notebooks == populated_store.root_notebooks
        assert reopened.check_invariants() == []

    def test_content_written_to_side_file(self, populated_store):
        rust = populated_store.ids["rust"]
        snippet = populated_store.list_snippets(rust)[0]
        path = populated_store.persistence.content_path(snippet)
        assert path.parent.name == rust
        assert path.name == f"{snippet.id}.rs"
        assert path.read_text(encoding="utf-8") == RUST_MAIN

    def test_tags_survive_restart(self, populated_store):
        reopened = _reopen(populated_store)
        assert reopened.tag_counts() == {"cli": 1, "http": 1, "rust": 1}
        hello = reopened.resolve_snippet("hello")
        assert reopened.get_snippet(hello).tags == ["cli", "rust"]

    def test_flush_failure_marks_dirty(self, store):
        with patch.object(
            store.persistence,
            "save",
            side_effect=StorageError("disk full", operation="save"),
        ):
            with pytest.raises(StorageError):
                store.create_notebook("Work")
        # The in-memory change stays, waiting for a retry
        assert store.dirty is True
        assert len(store.list_notebooks()) == 1

        store.flush()
        assert store.dirty is False
        assert len(_reopen(store).list_notebooks()) == 1

    def test_memory_store_needs_no_disk(self, memory_store):
        notebook = memory_store.create_notebook("Work")
        memory_store.create_snippet("hello", "rust", notebook, content="x")
        assert memory_store.dirty is False
        assert memory_store.stats()["snippets"] == 1

    def test_open_repairs_broken_document(self, persistence):
        store = Store.open(persistence)
        work = store.create_notebook("Work")
        snippet_id = store.create_snippet("hello", "rust", work, tags=["rust"])
        # Simulate another tool leaving a snippet in a notebook that is gone
        store.snippets.snippets[snippet_id].notebook_id = "gone"
        store.tree.notebooks[work].snippet_count = 5
        store.flush()

        reopened = Store.open(persistence)

        assert reopened.check_invariants() == []
        assert reopened.list_snippets() == []
        assert reopened.get_notebook(work).snippet_count == 0
        assert reopened.tag_counts() == {}


class TestNotebooks:
    def test_create_child_and_rename(self, store):
        work = store.create_notebook("Work")
        rust = store.create_notebook("Rust", parent_id=work)
        store.rename_notebook(rust, "Rust Lang")
        assert store.notebook_path(rust) == "Work > Rust Lang"

    def test_update_notebook(self, store):
        work = store.create_notebook("Work")
        store.update_notebook(work, description="desc", color="#123456", icon="W")
        notebook = store.get_notebook(work)
        assert (notebook.description, notebook.color, notebook.icon) == (
            "desc",
            "#123456",
            "W",
        )

    def test_validation_failure_does_not_flush(self, store):
        with patch.object(store, "flush") as flush:
            with pytest.raises(ValidationError):
                store.create_notebook("  ")
            with pytest.raises(NotFoundError):
                store.create_notebook("Child", parent_id="missing")
        flush.assert_not_called()
        assert store.list_notebooks() == []

    def test_delete_non_empty_conflicts(self, populated_store):
        with pytest.raises(ConflictError) as exc_info:
            populated_store.delete_notebook(populated_store.ids["work"])
        assert exc_info.value.code is ErrorCode.NOTEBOOK_NOT_EMPTY
        assert populated_store.check_invariants() == []

    def test_cascade_delete(self, populated_store):
        ids = populated_store.ids
        snippets_dir = populated_store.persistence.snippets_dir

        removed = populated_store.delete_notebook(ids["work"], cascade=True)

        assert set(removed) == {ids["work"], ids["rust"], ids["python"]}
        assert removed[-1] == ids["work"]
        assert populated_store.root_notebooks == [ids["personal"]]
        assert [s.title for s in populated_store.list_snippets()] == ["notes"]
        assert populated_store.tag_counts() == {}
        assert not (snippets_dir / ids["rust"]).exists()
        assert not (snippets_dir / ids["python"]).exists()
        assert populated_store.check_invariants() == []
        assert _reopen(populated_store).check_invariants() == []

    def test_move_notebook(self, populated_store):
        ids = populated_store.ids
        assert populated_store.move_notebook(ids["personal"], -1) is True
        assert populated_store.root_notebooks == [ids["personal"], ids["work"]]
        assert populated_store.move_notebook(ids["personal"], -1) is False


class TestSnippets:
    def test_create_with_tags(self, store):
        work = store.create_notebook("Work")
        snippet_id = store.create_snippet("hello", "rust", work, tags=["#Rust", "cli"])
        assert store.get_snippet(snippet_id).tags == ["cli", "Rust"]
        assert store.get_notebook(work).snippet_count == 1

    def test_create_with_empty_tag_changes_nothing(self, store):
        work = store.create_notebook("Work")
        with pytest.raises(ValidationError):
            store.create_snippet("hello", "rust", work, tags=["ok", "#"])
        assert store.list_snippets() == []
        assert store.get_notebook(work).snippet_count == 0

    def test_create_with_repeated_marker_tag(self, store):
        work = store.create_notebook("Work")
        snippet_id = store.create_snippet("hello", "rust", work, tags=["##x", "#x"])
        assert store.get_snippet(snippet_id).tags == ["x"]
        assert store.dirty is False
        assert _reopen(store).tag_counts() == {"x": 1}

    def test_failed_tagging_rolls_back_snippet(self, store):
        work = store.create_notebook("Work")
        failure = ValidationError("bad tag", field="tag", code=ErrorCode.TAG_INVALID)
        with patch.object(
            type(store.tags), "add_tag_to_snippet", side_effect=[None, failure]
        ):
            with pytest.raises(ValidationError):
                store.create_snippet("hello", "rust", work, tags=["ok", "later"])
        assert store.list_snippets() == []
        assert store.tag_counts() == {}
        assert store.get_notebook(work).snippet_count == 0
        assert store.dirty is False
        assert _reopen(store).list_snippets() == []

    def test_reads_return_copies(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        copy = populated_store.get_snippet(hello)
        copy.title = "changed"
        copy.tags.append("sneaky")
        assert populated_store.get_snippet(hello).title == "hello"
        assert "sneaky" not in populated_store.get_snippet(hello).tags

    def test_update_content(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        populated_store.update_snippet_content(hello, "fn main() {}\n")
        snippet = populated_store.get_snippet(hello)
        assert snippet.version == 2
        path = populated_store.persistence.content_path(snippet)
        assert path.read_text(encoding="utf-8") == "fn main() {}\n"

    def test_language_change_renames_file(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        old_path = populated_store.persistence.content_path(
            populated_store.get_snippet(hello)
        )
        populated_store.update_snippet_details(hello, language="text")
        new_path = populated_store.persistence.content_path(
            populated_store.get_snippet(hello)
        )
        assert not old_path.exists()
        assert new_path.suffix == ".txt"
        assert new_path.read_text(encoding="utf-8") == RUST_MAIN

    def test_move_snippet_relocates_file(self, populated_store):
        ids = populated_store.ids
        hello = populated_store.resolve_snippet("hello")
        old_path = populated_store.persistence.content_path(
            populated_store.get_snippet(hello)
        )

        populated_store.move_snippet(hello, ids["personal"])

        snippet = populated_store.get_snippet(hello)
        new_path = populated_store.persistence.content_path(snippet)
        assert not old_path.exists()
        assert new_path.parent.name == ids["personal"]
        assert new_path.read_text(encoding="utf-8") == RUST_MAIN
        assert populated_store.get_notebook(ids["rust"]).snippet_count == 0
        assert populated_store.get_notebook(ids["personal"]).snippet_count == 2

    def test_delete_snippet(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        path = populated_store.persistence.content_path(populated_store.get_snippet(hello))

        populated_store.delete_snippet(hello)

        assert not path.exists()
        assert populated_store.resolve_snippet(hello) is None
        assert "rust" not in populated_store.tag_counts()
        assert populated_store.get_notebook(populated_store.ids["rust"]).snippet_count == 0
        assert populated_store.check_invariants() == []

    def test_toggle_favorite_and_access(self, populated_store):
        fetch = populated_store.resolve_snippet("fetch")
        assert populated_store.toggle_favorite(fetch) is True
        assert len(populated_store.favorites()) == 2
        populated_store.mark_accessed(fetch)
        assert populated_store.recently_used(limit=1)[0].id == fetch
        assert _reopen(populated_store).get_snippet(fetch).use_count == 1


class TestTags:
    def test_add_and_remove(self, populated_store):
        fetch = populated_store.resolve_snippet("fetch")
        populated_store.add_tag(fetch, "#Rust")
        assert populated_store.tag_counts()["rust"] == 2
        assert populated_store.get_snippet(fetch).tags == ["http", "rust"]

        assert populated_store.remove_tag(fetch, "http") is True
        assert "http" not in populated_store.tag_counts()
        assert populated_store.get_snippet(fetch).tags == ["rust"]

    def test_add_repeated_marker_tag(self, populated_store):
        fetch = populated_store.resolve_snippet("fetch")
        tag_id = populated_store.add_tag(fetch, "##x")
        assert populated_store.add_tag(fetch, "#x") == tag_id
        assert populated_store.get_snippet(fetch).tags == ["http", "x"]
        assert populated_store.tag_counts()["x"] == 1
        assert populated_store.dirty is False

    def test_add_tag_to_missing_snippet(self, store):
        with pytest.raises(NotFoundError):
            store.add_tag("missing", "rust")
        assert store.tag_counts() == {}


class TestEditor:
    def test_edit_replaces_content(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        editor = FakeEditorLauncher(new_content="fn main() {}\n")

        assert populated_store.edit_in_editor(hello, editor) is True

        assert editor.seen_content == [RUST_MAIN]
        assert editor.opened[0].suffix == ".rs"
        assert populated_store.get_snippet(hello).content == "fn main() {}\n"
        assert populated_store.get_snippet(hello).version == 2

    def test_unchanged_edit(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        assert populated_store.edit_in_editor(hello, FakeEditorLauncher()) is False
        assert populated_store.get_snippet(hello).version == 1

    def test_edit_in_memory_store(self, memory_store):
        work = memory_store.create_notebook("Work")
        snippet_id = memory_store.create_snippet("x", "python", work, content="a")
        assert memory_store.edit_in_editor(snippet_id, FakeEditorLauncher("b")) is True
        assert memory_store.get_snippet(snippet_id).content == "b"


def test_flatten_returns_copies(populated_store):
    rows = populated_store.flatten()
    first, depth = rows[0]
    assert isinstance(first, Notebook)
    assert (first.name, depth) == ("Work", 0)
    first.name = "Changed"
    assert populated_store.flatten()[0][0].name == "Work"


def test_resolve_notebook_by_name_or_id(populated_store):
    ids = populated_store.ids
    assert populated_store.resolve_notebook(ids["rust"]) == ids["rust"]
    assert populated_store.resolve_notebook("python") == ids["python"]
    assert populated_store.resolve_notebook("nothing") is None
