"""Flat collection of snippets, each owned by one notebook."""
import logging
from typing import Dict, Iterator, List, Optional, Union

from snipbook.exceptions import ErrorCode, NotFoundError, ValidationError
from snipbook.models.schema import CodeSnippet, SnippetLanguage, utc_now
from snipbook.storage.notebook_tree import NotebookTree
from snipbook.storage.tag_index import TagIndex

logger = logging.getLogger(__name__)


class SnippetStore:
    """Mutation primitives for snippets.

    Keeps the owning notebook's cached snippet_count exact and the tag
    index free of deleted snippets. Content files are not touched here;
    the Store flushes them through the persistence layer.
    """

    def __init__(
        self,
        tree: NotebookTree,
        tags: TagIndex,
        snippets: Optional[Dict[str, CodeSnippet]] = None,
    ):
        self.tree = tree
        self.tags = tags
        self.snippets: Dict[str, CodeSnippet] = snippets if snippets is not None else {}

    def __contains__(self, snippet_id: object) -> bool:
        return snippet_id in self.snippets

    def __len__(self) -> int:
        return len(self.snippets)

    def __iter__(self) -> Iterator[CodeSnippet]:
        return iter(self.snippets.values())

    def get(self, snippet_id: str) -> CodeSnippet:
        """Get a snippet by id.

        Raises:
            NotFoundError: If no snippet has this id.
        """
        snippet = self.snippets.get(snippet_id)
        if snippet is None:
            raise NotFoundError("snippet", snippet_id, code=ErrorCode.SNIPPET_NOT_FOUND)
        return snippet

    @staticmethod
    def _checked_title(title: str) -> str:
        if not title or not title.strip():
            raise ValidationError(
                "Snippet title cannot be empty",
                field="title",
                value=title,
                code=ErrorCode.SNIPPET_TITLE_REQUIRED,
            )
        return title.strip()

    def count_for(self, notebook_id: str) -> int:
        return sum(1 for s in self.snippets.values() if s.notebook_id == notebook_id)

    def recount(self, notebook_id: str) -> None:
        """Recompute the cached snippet_count of one notebook."""
        self.tree.set_snippet_count(notebook_id, self.count_for(notebook_id))

    def recount_all(self) -> None:
        counts = {nid: 0 for nid in self.tree.notebooks}
        for snippet in self.snippets.values():
            if snippet.notebook_id in counts:
                counts[snippet.notebook_id] += 1
        for notebook_id, count in counts.items():
            self.tree.set_snippet_count(notebook_id, count)

    def create(
        self,
        title: str,
        language: Union[SnippetLanguage, str],
        notebook_id: str,
        description: Optional[str] = None,
        content: str = "",
    ) -> str:
        """Create a snippet inside an existing notebook.

        Raises:
            ValidationError: If the title is blank.
            NotFoundError: If the notebook does not exist.
        """
        checked = self._checked_title(title)
        self.tree.get(notebook_id)
        if isinstance(language, str):
            language = SnippetLanguage.from_name(language)

        snippet = CodeSnippet(
            title=checked,
            description=description,
            content=content,
            language=language,
            notebook_id=notebook_id,
        )
        self.snippets[snippet.id] = snippet
        self.recount(notebook_id)
        logger.debug(f"Created snippet '{snippet.title}' ({snippet.id}) in {notebook_id}")
        return snippet.id

    def update_content(self, snippet_id: str, content: str) -> None:
        """Replace content, bump the version and refresh updated_at."""
        self.get(snippet_id).update_content(content)

    def update_details(
        self,
        snippet_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        language: Optional[Union[SnippetLanguage, str]] = None,
    ) -> None:
        """Update metadata fields; None leaves a field unchanged.

        A language change also changes the file extension, so the caller
        must relocate the content file.
        """
        snippet = self.get(snippet_id)
        checked = self._checked_title(title) if title is not None else None
        if checked is not None:
            snippet.title = checked
        if description is not None:
            snippet.description = description or None
        if language is not None:
            if isinstance(language, str):
                language = SnippetLanguage.from_name(language)
            snippet.language = language
            snippet.file_extension = language.file_extension
        snippet.updated_at = utc_now()

    def mark_accessed(self, snippet_id: str) -> None:
        self.get(snippet_id).mark_accessed()

    def toggle_favorite(self, snippet_id: str) -> bool:
        """Flip the favorite flag and return the new value."""
        return self.get(snippet_id).toggle_favorite()

    def move(self, snippet_id: str, target_notebook_id: str) -> str:
        """Reassign a snippet to another notebook.

        Returns:
            The previous notebook id.

        Raises:
            NotFoundError: If the snippet or the target notebook does not exist.
        """
        snippet = self.get(snippet_id)
        self.tree.get(target_notebook_id)
        previous = snippet.notebook_id
        if previous == target_notebook_id:
            return previous
        snippet.notebook_id = target_notebook_id
        snippet.updated_at = utc_now()
        self.recount(previous)
        self.recount(target_notebook_id)
        return previous

    def delete(self, snippet_id: str) -> CodeSnippet:
        """Remove a snippet; tags go first, then the snippet, then the count.

        Returns:
            The removed snippet (so its content file can be deleted).
        """
        snippet = self.get(snippet_id)
        self.tags.handle_snippet_deleted(snippet_id)
        del self.snippets[snippet_id]
        if snippet.notebook_id in self.tree:
            self.recount(snippet.notebook_id)
        logger.debug(f"Deleted snippet '{snippet.title}' ({snippet_id})")
        return snippet

    def put(self, snippet: CodeSnippet) -> None:
        """Insert or replace a snippet without touching counts; used by merges."""
        self.snippets[snippet.id] = snippet

    def in_notebook(self, notebook_id: str) -> List[CodeSnippet]:
        return [s for s in self.snippets.values() if s.notebook_id == notebook_id]

    def favorites(self) -> List[CodeSnippet]:
        return [s for s in self.snippets.values() if s.is_favorite]

    def recently_used(self, limit: int = 10) -> List[CodeSnippet]:
        """Snippets ordered by accessed_at, most recent first."""
        ordered = sorted(
            self.snippets.values(), key=lambda s: (s.accessed_at, s.id), reverse=True
        )
        return ordered[:limit]

    def sync_tag_names(self, snippet_id: str) -> None:
        """Refresh the denormalized tag-name list from the tag index."""
        snippet = self.get(snippet_id)
        snippet.tags = [t.name for t in self.tags.tags_for_snippet(snippet_id)]
