"""Service for searching notebooks and snippets in the store."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from snipbook.observability import timed_operation
from snipbook.utils import TAG_MARKER, first_matching_line

if TYPE_CHECKING:
    from snipbook.services.store import Store

logger = logging.getLogger(__name__)


class SearchResultType(Enum):
    """Kinds of match; the value is the sort rank."""

    NOTEBOOK = 0
    SNIPPET = 1
    CONTENT_MATCH = 2


@dataclass(frozen=True)
class SearchResult:
    """One match of one field of one entity."""

    entity_id: str
    display_name: str
    result_type: SearchResultType
    match_context: str
    parent_notebook_id: Optional[str] = None

    def sort_key(self):
        return (self.result_type.value, self.display_name.lower(), self.entity_id)


class SearchEngine:
    """Case-insensitive substring search over the whole store.

    Results come back ordered by kind (notebooks, snippet fields, content
    matches), then display name, then id. The sort is stable, so several
    matches on one entity keep field order.
    """

    def __init__(self, store: "Store"):
        self.store = store

    def search(self, query: str) -> List[SearchResult]:
        """Search notebook names and descriptions, snippet titles,
        descriptions and content.

        A single word starting with '#' searches tags instead.

        Returns:
            Ordered results; empty for a blank query.
        """
        needle = query.strip().lower() if query else ""
        if not needle:
            return []
        if needle.startswith(TAG_MARKER) and len(needle) > 1 and " " not in needle:
            return self.search_tags(needle[1:])

        with timed_operation("search", query=needle) as op:
            results = self._notebook_matches(needle) + self._snippet_matches(needle)
            results.sort(key=SearchResult.sort_key)
            op["result_count"] = len(results)
        return results

    def _notebook_matches(self, needle: str) -> List[SearchResult]:
        results = []
        for notebook in self.store.tree:
            if needle in notebook.name.lower():
                results.append(
                    SearchResult(
                        entity_id=notebook.id,
                        display_name=notebook.name,
                        result_type=SearchResultType.NOTEBOOK,
                        match_context=f"Notebook name match: {notebook.name}",
                        parent_notebook_id=notebook.parent_id,
                    )
                )
            if notebook.description and needle in notebook.description.lower():
                results.append(
                    SearchResult(
                        entity_id=notebook.id,
                        display_name=notebook.name,
                        result_type=SearchResultType.NOTEBOOK,
                        match_context=f"Description: {notebook.description}",
                        parent_notebook_id=notebook.parent_id,
                    )
                )
        return results

    def _snippet_matches(self, needle: str) -> List[SearchResult]:
        results = []
        for snippet in self.store.snippets:
            if needle in snippet.title.lower():
                results.append(
                    SearchResult(
                        entity_id=snippet.id,
                        display_name=snippet.title,
                        result_type=SearchResultType.SNIPPET,
                        match_context=f"Snippet title match: {snippet.title}",
                        parent_notebook_id=snippet.notebook_id,
                    )
                )
            if snippet.description and needle in snippet.description.lower():
                results.append(
                    SearchResult(
                        entity_id=snippet.id,
                        display_name=snippet.title,
                        result_type=SearchResultType.SNIPPET,
                        match_context=f"Description: {snippet.description}",
                        parent_notebook_id=snippet.notebook_id,
                    )
                )
            if needle in snippet.content.lower():
                # A needle spanning a line break matches no single line
                line = first_matching_line(snippet.content, needle)
                context = f"Line {line[0]}: {line[1]}" if line else ""
                results.append(
                    SearchResult(
                        entity_id=snippet.id,
                        display_name=snippet.title,
                        result_type=SearchResultType.CONTENT_MATCH,
                        match_context=context,
                        parent_notebook_id=snippet.notebook_id,
                    )
                )
        return results

    def search_tags(self, query: str) -> List[SearchResult]:
        """Snippets carrying any tag whose name contains query."""
        with timed_operation("search_tags", query=query) as op:
            results = []
            seen = set()
            for tag in self.store.tags.find_tags_by_name(query):
                for snippet_id in sorted(self.store.tags.snippets_with_tag(tag.id)):
                    # One row per snippet; the first matching tag names it
                    if snippet_id in seen or snippet_id not in self.store.snippets:
                        continue
                    seen.add(snippet_id)
                    snippet = self.store.snippets.get(snippet_id)
                    results.append(
                        SearchResult(
                            entity_id=snippet.id,
                            display_name=snippet.title,
                            result_type=SearchResultType.SNIPPET,
                            match_context=f"Tagged with {tag.display_name}",
                            parent_notebook_id=snippet.notebook_id,
                        )
                    )
            results.sort(key=SearchResult.sort_key)
            op["result_count"] = len(results)
        return results

    def parent_path(self, parent_notebook_id: Optional[str]) -> str:
        """Readable location of a result, e.g. 'Work > Rust'."""
        if parent_notebook_id is None or parent_notebook_id not in self.store.tree:
            return ""
        return self.store.tree.path(parent_notebook_id)
