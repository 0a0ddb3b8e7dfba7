"""Tests for exporting bundles and merging them back in."""
import datetime
import json

import pytest
import yaml

from snipbook.exceptions import ErrorCode, SerializationError, StorageError
from snipbook.models.schema import CodeSnippet, ExportDocument, Notebook
from snipbook.services.export_service import (
    ExportOptions,
    build_export,
    export_to_clipboard,
    export_to_file,
    export_to_text,
    import_from_clipboard,
    load_import_file,
    parse_import_text,
)
from snipbook.services.merge_service import (
    MergeEngine,
    MergePolicy,
    merge_documents,
)
from snipbook.services.store import Store
from tests.conftest import RUST_MAIN
from tests.fakes import FakeClipboard


def _later(moment, seconds=60):
    return moment + datetime.timedelta(seconds=seconds)


class TestBuildExport:
    def test_full_export(self, populated_store):
        bundle = build_export(populated_store)
        assert len(bundle.notebooks) == 4
        assert len(bundle.snippets) == 3
        assert bundle.root_notebooks == populated_store.root_notebooks
        assert bundle.include_content is True
        hello = populated_store.resolve_snippet("hello")
        assert bundle.snippets[hello].content == RUST_MAIN
        assert sorted(bundle.tags) == ["cli", "http", "rust"]

    def test_export_is_a_snapshot(self, populated_store):
        bundle = build_export(populated_store)
        hello = populated_store.resolve_snippet("hello")
        bundle.snippets[hello].title = "changed"
        assert populated_store.get_snippet(hello).title == "hello"

    def test_notebook_filter(self, populated_store):
        ids = populated_store.ids
        bundle = build_export(
            populated_store, ExportOptions(notebook_ids=[ids["rust"], ids["work"]])
        )
        assert set(bundle.notebooks) == {ids["rust"], ids["work"]}
        assert bundle.root_notebooks == [ids["work"]]
        assert [s.title for s in bundle.snippets.values()] == ["hello"]
        assert sorted(bundle.tags) == ["cli", "rust"]

    def test_favorites_only(self, populated_store):
        bundle = build_export(populated_store, ExportOptions(favorites_only=True))
        assert [s.title for s in bundle.snippets.values()] == ["hello"]
        assert len(bundle.notebooks) == 4
        assert "http" not in bundle.tags

    def test_without_content(self, populated_store):
        bundle = build_export(populated_store, ExportOptions(include_content=False))
        assert bundle.include_content is False
        assert all(s.content == "" for s in bundle.snippets.values())

    def test_text_is_json(self, populated_store):
        data = json.loads(export_to_text(build_export(populated_store)))
        assert set(data) >= {"version", "notebooks", "snippets", "root_notebooks", "tags"}


class TestFiles:
    def test_export_and_load(self, populated_store, temp_data_dir):
        path = temp_data_dir / "out" / "bundle.json"
        written = export_to_file(populated_store, path)
        assert path.exists()
        assert not path.with_name("bundle.json.tmp").exists()
        loaded = load_import_file(path)
        assert set(loaded.snippets) == set(written.snippets)

    def test_load_missing_file(self, temp_data_dir):
        with pytest.raises(StorageError):
            load_import_file(temp_data_dir / "nope.json")

    def test_export_to_unwritable_path(self, populated_store, temp_data_dir):
        blocker = temp_data_dir / "blocker"
        blocker.write_text("file", encoding="utf-8")
        with pytest.raises(StorageError) as exc_info:
            export_to_file(populated_store, blocker / "bundle.json")
        assert exc_info.value.code is ErrorCode.STORAGE_WRITE_FAILED


class TestParse:
    def test_yaml_accepted(self):
        notebook = Notebook(name="Work")
        text = yaml.safe_dump(
            {
                "version": "0.1.0",
                "notebooks": {notebook.id: {"id": notebook.id, "name": "Work"}},
                "root_notebooks": [notebook.id],
            }
        )
        bundle = parse_import_text(text)
        assert bundle.notebooks[notebook.id].name == "Work"

    @pytest.mark.parametrize("text", ["", "   ", "[1, 2, 3]", "just words", "{: bad"])
    def test_malformed(self, text):
        with pytest.raises(SerializationError) as exc_info:
            parse_import_text(text)
        assert exc_info.value.code is ErrorCode.IMPORT_MALFORMED

    def test_wrong_shape(self):
        with pytest.raises(SerializationError):
            parse_import_text(json.dumps({"version": "1", "notebooks": {"a": {"id": "b"}}}))


class TestClipboard:
    def test_round_trip_through_clipboard(self, populated_store, memory_store):
        clipboard = FakeClipboard()
        export_to_clipboard(populated_store, clipboard)
        assert clipboard.write_count == 1

        bundle = import_from_clipboard(clipboard)
        result = memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)

        assert result.as_tuple() == (4, 3)
        assert memory_store.check_invariants() == []

    def test_empty_clipboard(self, fake_clipboard):
        assert import_from_clipboard(fake_clipboard) is None


class TestMerge:
    def test_single_snippet_into_empty_store(self, memory_store, store):
        work = memory_store.create_notebook("Work")
        foo = memory_store.create_snippet("foo", "rust", work, content=RUST_MAIN)
        bundle = build_export(memory_store)

        assert merge_documents(store, bundle, False) == (1, 1)
        assert store.get_snippet(foo).content == RUST_MAIN
        assert store.root_notebooks == [work]
        assert Store.open(store.persistence).get_snippet(foo).content == RUST_MAIN

    def test_round_trip_reproduces_store(self, populated_store, memory_store):
        bundle = build_export(populated_store)
        MergeEngine(memory_store).merge_with_overwrite(bundle, True)

        assert memory_store.root_notebooks == populated_store.root_notebooks
        assert {n.id for n in memory_store.list_notebooks()} == set(bundle.notebooks)
        assert memory_store.tag_counts() == populated_store.tag_counts()
        for original in populated_store.list_snippets():
            copy = memory_store.get_snippet(original.id)
            assert copy.content == original.content
            assert copy.tags == original.tags
        assert memory_store.check_invariants() == []

    def test_skip_existing_is_idempotent(self, populated_store, memory_store):
        bundle = build_export(populated_store)
        first = memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)
        second = memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)

        assert first.as_tuple() == (4, 3)
        assert second.as_tuple() == (0, 0)
        assert second.snippets_skipped == 3
        assert memory_store.stats() == populated_store.stats()
        assert memory_store.check_invariants() == []

    def test_same_names_stay_distinct(self, memory_store):
        memory_store.create_notebook("Work")
        other = Store()
        other.create_notebook("Work")

        result = memory_store.merge_bundle(build_export(other), MergePolicy.SKIP_EXISTING)

        assert result.notebooks_added == 1
        assert [n.name for n in memory_store.list_notebooks()] == ["Work", "Work"]
        assert len(memory_store.root_notebooks) == 2

    def test_orphan_snippet_dropped(self, memory_store):
        orphan = CodeSnippet(title="lost", notebook_id="nowhere")
        bundle = ExportDocument(version="0.1.0", snippets={orphan.id: orphan})

        result = memory_store.merge_bundle(bundle, MergePolicy.OVERWRITE_ALL)

        assert result.as_tuple() == (0, 0)
        assert result.snippets_dropped == 1
        assert memory_store.list_snippets() == []

    def test_skip_existing_keeps_local_edit(self, populated_store, memory_store):
        memory_store.merge_bundle(build_export(populated_store), MergePolicy.OVERWRITE_ALL)
        hello = populated_store.resolve_snippet("hello")
        memory_store.update_snippet_details(hello, title="local")

        memory_store.merge_bundle(build_export(populated_store), MergePolicy.SKIP_EXISTING)

        assert memory_store.get_snippet(hello).title == "local"

    def test_overwrite_all_replaces(self, populated_store, memory_store):
        memory_store.merge_bundle(build_export(populated_store), MergePolicy.OVERWRITE_ALL)
        hello = populated_store.resolve_snippet("hello")
        memory_store.update_snippet_details(hello, title="local")

        result = memory_store.merge_bundle(
            build_export(populated_store), MergePolicy.OVERWRITE_ALL
        )

        assert memory_store.get_snippet(hello).title == "hello"
        assert result.snippets_replaced == 3

    def test_merge_and_update_replaces(self, populated_store, memory_store):
        memory_store.merge_bundle(build_export(populated_store), MergePolicy.OVERWRITE_ALL)
        hello = populated_store.resolve_snippet("hello")
        memory_store.update_snippet_details(hello, title="local")

        memory_store.merge_bundle(
            build_export(populated_store), MergePolicy.MERGE_AND_UPDATE
        )

        assert memory_store.get_snippet(hello).title == "hello"

    def test_smart_merge_takes_newer(self, populated_store, memory_store):
        memory_store.merge_bundle(build_export(populated_store), MergePolicy.OVERWRITE_ALL)
        hello = populated_store.resolve_snippet("hello")
        bundle = build_export(populated_store)
        incoming = bundle.snippets[hello]
        incoming.title = "newer"
        incoming.updated_at = _later(incoming.updated_at)

        result = memory_store.merge_bundle(bundle, MergePolicy.SMART_MERGE)

        assert memory_store.get_snippet(hello).title == "newer"
        assert result.snippets_replaced == 1
        assert result.snippets_skipped == 2

    def test_smart_merge_keeps_newer_local(self, populated_store, memory_store):
        memory_store.merge_bundle(build_export(populated_store), MergePolicy.OVERWRITE_ALL)
        hello = populated_store.resolve_snippet("hello")
        bundle = build_export(populated_store)
        memory_store.update_snippet_details(hello, title="local")
        memory_store.snippets.get(hello).updated_at = _later(
            bundle.snippets[hello].updated_at
        )
        bundle.snippets[hello].title = "older"

        memory_store.merge_bundle(bundle, MergePolicy.SMART_MERGE)

        assert memory_store.get_snippet(hello).title == "local"

    def test_contentless_bundle_keeps_existing_content(self, populated_store):
        hello = populated_store.resolve_snippet("hello")
        bundle = build_export(populated_store, ExportOptions(include_content=False))
        bundle.snippets[hello].title = "renamed"

        populated_store.merge_bundle(bundle, MergePolicy.OVERWRITE_ALL)

        snippet = populated_store.get_snippet(hello)
        assert snippet.title == "renamed"
        assert snippet.content == RUST_MAIN
        path = populated_store.persistence.content_path(snippet)
        assert path.read_text(encoding="utf-8") == RUST_MAIN

    def test_replacing_with_new_notebook_moves_file(self, populated_store):
        ids = populated_store.ids
        hello = populated_store.resolve_snippet("hello")
        old_path = populated_store.persistence.content_path(
            populated_store.get_snippet(hello)
        )
        bundle = build_export(populated_store)
        bundle.snippets[hello].notebook_id = ids["personal"]

        populated_store.merge_bundle(bundle, MergePolicy.OVERWRITE_ALL)

        snippet = populated_store.get_snippet(hello)
        assert not old_path.exists()
        assert populated_store.persistence.content_path(snippet).exists()
        assert populated_store.get_notebook(ids["personal"]).snippet_count == 2
        assert populated_store.get_notebook(ids["rust"]).snippet_count == 0
        assert populated_store.check_invariants() == []

    def test_tags_from_snippet_names_when_map_missing(self, memory_store):
        notebook = Notebook(name="Work")
        snippet = CodeSnippet(title="t", notebook_id=notebook.id, tags=["rust", "cli"])
        bundle = ExportDocument(
            version="0.1.0",
            notebooks={notebook.id: notebook},
            root_notebooks=[notebook.id],
            snippets={snippet.id: snippet},
        )

        memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)

        assert memory_store.tag_counts() == {"cli": 1, "rust": 1}
        assert memory_store.check_invariants() == []

    def test_empty_tag_names_ignored(self, memory_store):
        notebook = Notebook(name="Work")
        snippet = CodeSnippet(title="t", notebook_id=notebook.id)
        bundle = ExportDocument(
            version="0.1.0",
            notebooks={notebook.id: notebook},
            root_notebooks=[notebook.id],
            snippets={snippet.id: snippet},
            tags={"#": [snippet.id], "ok": [snippet.id]},
        )

        memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)

        assert memory_store.tag_counts() == {"ok": 1}

    def test_child_listed_as_root_is_pruned(self, memory_store):
        parent = Notebook(name="Parent")
        child = Notebook(name="Child", parent_id=parent.id)
        parent.add_child(child.id)
        bundle = ExportDocument(
            version="0.1.0",
            notebooks={parent.id: parent, child.id: child},
            root_notebooks=[parent.id, child.id],
        )

        memory_store.merge_bundle(bundle, MergePolicy.SKIP_EXISTING)

        assert memory_store.root_notebooks == [parent.id]
        assert memory_store.check_invariants() == []

    def test_malformed_import_leaves_store_untouched(self, populated_store):
        before = populated_store.stats()
        with pytest.raises(SerializationError):
            populated_store.merge_bundle(parse_import_text("{nope"), MergePolicy.OVERWRITE_ALL)
        assert populated_store.stats() == before


class TestMergePolicy:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("smart-merge", MergePolicy.SMART_MERGE),
            ("Skip Existing", MergePolicy.SKIP_EXISTING),
            ("overwrite_all", MergePolicy.OVERWRITE_ALL),
        ],
    )
    def test_from_name(self, name, expected):
        assert MergePolicy.from_name(name) is expected

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            MergePolicy.from_name("yolo")

    def test_should_replace(self):
        now = datetime.datetime.now(datetime.timezone.utc)
        assert MergePolicy.SMART_MERGE.should_replace(now, _later(now)) is True
        assert MergePolicy.SMART_MERGE.should_replace(now, now) is False
        assert MergePolicy.SKIP_EXISTING.should_replace(now, _later(now)) is False
        assert MergePolicy.MERGE_AND_UPDATE.should_replace(_later(now), now) is True

    def test_summary(self, populated_store, memory_store):
        result = memory_store.merge_bundle(
            build_export(populated_store), MergePolicy.SKIP_EXISTING
        )
        assert result.summary().startswith("Skip Existing: 4 notebook(s)")
