"""Tests for the bidirectional tag index."""
import json

import pytest

from snipbook.exceptions import ErrorCode, ValidationError
from snipbook.storage.tag_index import TagIndex


@pytest.fixture
def index():
    return TagIndex()


class TestAddTag:
    def test_creates_tag_and_links_both_ways(self, index):
        tag_id = index.add_tag_to_snippet("s1", "rust")
        assert index.tags[tag_id].name == "rust"
        assert index.snippet_tags["s1"] == {tag_id}
        assert index.tag_snippets[tag_id] == {"s1"}
        assert index.tags[tag_id].usage_count == 1

    def test_reuses_tag_case_insensitively(self, index):
        first = index.add_tag_to_snippet("s1", "Rust")
        second = index.add_tag_to_snippet("s2", "#rust")
        third = index.add_tag_to_snippet("s3", "  RUST ")
        assert first == second == third
        assert len(index) == 1
        # The first spelling wins
        assert index.tags[first].name == "Rust"
        assert index.tags[first].usage_count == 3

    def test_strips_one_marker(self, index):
        tag_id = index.add_tag_to_snippet("s1", "#async")
        assert index.tags[tag_id].name == "async"

    def test_strips_repeated_markers(self, index):
        tag_id = index.add_tag_to_snippet("s1", "##x")
        assert index.tags[tag_id].name == "x"
        assert index.add_tag_to_snippet("s2", "# #x") == tag_id
        assert index.add_tag_to_snippet("s3", "#x") == tag_id
        assert index.get_by_name("###X").id == tag_id
        assert index.check_invariants() == []

    @pytest.mark.parametrize("raw", ["", "   ", "#", " # ", "##"])
    def test_empty_name_rejected(self, index, raw):
        with pytest.raises(ValidationError) as exc_info:
            index.add_tag_to_snippet("s1", raw)
        assert exc_info.value.code is ErrorCode.TAG_INVALID
        assert len(index) == 0
        assert index.snippet_tags == {}

    def test_adding_twice_keeps_one_association(self, index):
        tag_id = index.add_tag_to_snippet("s1", "rust")
        index.add_tag_to_snippet("s1", "rust")
        assert index.tag_snippets[tag_id] == {"s1"}
        assert index.check_invariants() == []


class TestRemoval:
    def test_snippet_deletion_prunes_empty_tags(self, index):
        shared = index.add_tag_to_snippet("s1", "shared")
        index.add_tag_to_snippet("s2", "shared")
        only = index.add_tag_to_snippet("s1", "only")

        index.handle_snippet_deleted("s1")

        assert "s1" not in index.snippet_tags
        assert index.tag_snippets[shared] == {"s2"}
        assert only not in index.tags
        assert only not in index.tag_snippets
        assert index.check_invariants() == []

    def test_deleting_untagged_snippet_is_noop(self, index):
        index.add_tag_to_snippet("s1", "rust")
        index.handle_snippet_deleted("unknown")
        assert len(index) == 1

    def test_remove_tag_from_snippet(self, index):
        index.add_tag_to_snippet("s1", "rust")
        index.add_tag_to_snippet("s2", "rust")
        assert index.remove_tag_from_snippet("s1", "#RUST") is True
        assert index.remove_tag_from_snippet("s1", "rust") is False
        assert index.get_by_name("rust") is not None
        assert index.remove_tag_from_snippet("s2", "rust") is True
        assert index.get_by_name("rust") is None
        assert index.check_invariants() == []


class TestQueries:
    def test_find_tags_by_name(self, index):
        index.add_tag_to_snippet("s1", "rust-async")
        index.add_tag_to_snippet("s1", "Rust")
        index.add_tag_to_snippet("s2", "python")
        names = [t.name for t in index.find_tags_by_name("RUST")]
        assert names == ["Rust", "rust-async"]
        assert index.find_tags_by_name("go") == []

    def test_tags_for_snippet_sorted(self, index):
        index.add_tag_to_snippet("s1", "zeta")
        index.add_tag_to_snippet("s1", "alpha")
        assert [t.name for t in index.tags_for_snippet("s1")] == ["alpha", "zeta"]
        assert index.tags_for_snippet("nope") == []

    def test_tag_counts(self, index):
        index.add_tag_to_snippet("s1", "rust")
        index.add_tag_to_snippet("s2", "rust")
        index.add_tag_to_snippet("s2", "cli")
        assert index.tag_counts() == {"cli": 1, "rust": 2}

    def test_export_map_restricted(self, index):
        index.add_tag_to_snippet("s1", "rust")
        index.add_tag_to_snippet("s2", "rust")
        index.add_tag_to_snippet("s2", "cli")
        assert index.export_map() == {"rust": ["s1", "s2"], "cli": ["s2"]}
        assert index.export_map(["s1"]) == {"rust": ["s1"]}


class TestConsistency:
    def test_reconcile_drops_unknown_snippets(self, index):
        keep = index.add_tag_to_snippet("s1", "keep")
        gone = index.add_tag_to_snippet("ghost", "gone")
        # Break the reverse map the way a hand-edited document might
        index.tag_snippets[keep] = set()

        dropped = index.reconcile(["s1"])

        assert dropped == 1
        assert index.tag_snippets == {keep: {"s1"}}
        assert gone not in index.tags
        assert index.check_invariants() == []

    def test_check_invariants_reports_asymmetry(self, index):
        tag_id = index.add_tag_to_snippet("s1", "rust")
        index.tag_snippets[tag_id].discard("s1")
        assert index.check_invariants()

    def test_serializes_sets_as_sorted_lists(self, index):
        index.add_tag_to_snippet("b", "rust")
        tag_id = index.add_tag_to_snippet("a", "rust")
        data = json.loads(index.model_dump_json())
        assert data["tag_snippets"][tag_id] == ["a", "b"]
        restored = TagIndex.model_validate(data)
        assert restored.tag_snippets[tag_id] == {"a", "b"}
        assert restored.check_invariants() == []
