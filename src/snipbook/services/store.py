"""Aggregate root over notebooks, snippets and tags.

Every external operation goes through Store. Mutations keep the
NotebookTree, SnippetStore and TagIndex consistent with one another and
are followed by a flush of the whole aggregate through the
PersistenceLayer.
"""
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple, Union

from snipbook.config import config
from snipbook.exceptions import ErrorCode, SnipbookError, StorageError, ValidationError
from snipbook.models.schema import CodeSnippet, Notebook, SnippetLanguage, Tag
from snipbook.observability import timed_operation
from snipbook.services.collaborators import EditorLauncher
from snipbook.storage.notebook_tree import NotebookTree, TreeRow
from snipbook.storage.persistence import PersistenceLayer, StoreDocument
from snipbook.storage.snippet_store import SnippetStore
from snipbook.utils import canonical_tag_name

if TYPE_CHECKING:
    from snipbook.models.schema import ExportDocument
    from snipbook.services.merge_service import MergePolicy, MergeResult

logger = logging.getLogger(__name__)


class Store:
    """The in-memory store, mirrored to disk after every mutation.

    Read accessors hand out deep copies; the Store stays the only owner of
    its entities. A Store created without a persistence layer lives in
    memory only.

    If a flush fails after an in-memory change, the change is kept,
    ``dirty`` is set and the StorageError propagates; call flush() again
    to retry.
    """

    def __init__(
        self,
        persistence: Optional[PersistenceLayer] = None,
        document: Optional[StoreDocument] = None,
        default_color: Optional[str] = None,
    ):
        document = document if document is not None else StoreDocument()
        self.persistence = persistence
        self.tree = NotebookTree(
            document.notebooks,
            document.root_notebooks,
            default_color or config.default_notebook_color,
        )
        self.tags = document.tag_index
        self.snippets = SnippetStore(self.tree, self.tags, document.snippets)
        self.dirty = False

        # Content-file work waiting for the next successful flush
        self._pending_writes: Dict[str, None] = {}
        self._pending_moves: List[Tuple[str, str, str]] = []
        self._pending_deletes: List[CodeSnippet] = []
        self._pending_dir_deletes: List[str] = []

    @classmethod
    def open(cls, persistence: Optional[PersistenceLayer] = None) -> "Store":
        """Load a store from disk, repairing anything another tool broke."""
        persistence = persistence or PersistenceLayer()
        with timed_operation("open", path=persistence.database_path) as op:
            store = cls(persistence, persistence.load())
            problems = store._reconcile_loaded()
            op["notebooks"] = len(store.tree)
            op["snippets"] = len(store.snippets)
            op["repairs"] = problems
        return store

    def _reconcile_loaded(self) -> int:
        actions = self.tree.repair()
        orphans = [
            s for s in self.snippets if s.notebook_id not in self.tree
        ]
        for snippet in orphans:
            logger.warning(
                f"Snippet '{snippet.title}' ({snippet.id}) references missing "
                f"notebook {snippet.notebook_id}; ignoring it"
            )
            del self.snippets.snippets[snippet.id]
        dropped = self.tags.reconcile(self.snippets.snippets.keys())
        self.snippets.recount_all()
        for snippet_id in list(self.snippets.snippets):
            self.snippets.sync_tag_names(snippet_id)
        return len(actions) + len(orphans) + dropped

    # -- persistence ----------------------------------------------------------

    def document(self) -> StoreDocument:
        """The aggregate as a persistable document (shares entities)."""
        return StoreDocument(
            notebooks=self.tree.notebooks,
            root_notebooks=self.tree.root_notebooks,
            snippets=self.snippets.snippets,
            tag_index=self.tags,
        )

    def schedule_content_write(self, snippet_id: str) -> None:
        self._pending_writes[snippet_id] = None

    def schedule_relocation(
        self, snippet_id: str, old_notebook_id: str, old_extension: str
    ) -> None:
        self._pending_moves.append((snippet_id, old_notebook_id, old_extension))

    def flush(self) -> None:
        """Write pending content-file changes and the aggregate document.

        Raises:
            StorageError: If anything cannot be written; the store stays dirty.
        """
        if self.persistence is None:
            self._pending_writes.clear()
            self._pending_moves.clear()
            self._pending_deletes.clear()
            self._pending_dir_deletes.clear()
            self.dirty = False
            return

        try:
            while self._pending_moves:
                snippet_id, old_notebook_id, old_extension = self._pending_moves[0]
                snippet = self.snippets.snippets.get(snippet_id)
                if snippet is not None:
                    self.persistence.move_snippet_file(
                        snippet, old_notebook_id, old_extension
                    )
                self._pending_moves.pop(0)
            while self._pending_deletes:
                self.persistence.delete_snippet_file(self._pending_deletes[0])
                self._pending_deletes.pop(0)
            while self._pending_dir_deletes:
                self.persistence.delete_notebook_directory(self._pending_dir_deletes[0])
                self._pending_dir_deletes.pop(0)
            for snippet_id in list(self._pending_writes):
                snippet = self.snippets.snippets.get(snippet_id)
                if snippet is not None:
                    self.persistence.save_snippet_content(snippet)
                del self._pending_writes[snippet_id]
            self.persistence.save(self.document())
        except StorageError:
            self.dirty = True
            logger.error("Flush failed; in-memory changes are kept until the next flush")
            raise
        self.dirty = False

    @contextmanager
    def mutation(self, operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
        """Time a mutating operation and flush once it succeeds."""
        with timed_operation(operation, **context) as op:
            yield op
            self.dirty = True
            self.flush()

    # -- notebooks ------------------------------------------------------------

    def create_notebook(
        self,
        name: str,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        """Create a root notebook, or a child when parent_id is given."""
        with self.mutation("create_notebook", name=name, parent_id=parent_id) as op:
            if parent_id is None:
                notebook_id = self.tree.create_root(name, description)
            else:
                notebook_id = self.tree.create_child(parent_id, name, description)
            op["notebook_id"] = notebook_id
        return notebook_id

    def rename_notebook(self, notebook_id: str, name: str) -> None:
        with self.mutation("rename_notebook", notebook_id=notebook_id):
            self.tree.rename(notebook_id, name)

    def update_notebook(
        self,
        notebook_id: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> None:
        with self.mutation("update_notebook", notebook_id=notebook_id):
            self.tree.update(notebook_id, description, color, icon)

    def delete_notebook(self, notebook_id: str, cascade: bool = False) -> List[str]:
        """Delete a notebook.

        Without cascade the notebook must be empty. With cascade its
        snippets and every descendant notebook (with their snippets) are
        removed bottom-up first.

        Returns:
            Ids of the deleted notebooks, deepest first.

        Raises:
            NotFoundError: If the notebook does not exist.
            ConflictError: If not cascading and the notebook is not empty.
        """
        with self.mutation(
            "delete_notebook", notebook_id=notebook_id, cascade=cascade
        ) as op:
            if cascade:
                doomed = self.tree.descendants(notebook_id) + [notebook_id]
            else:
                self.tree.get(notebook_id)
                doomed = [notebook_id]

            removed_snippets = 0
            for current in doomed:
                if cascade:
                    for snippet in self.snippets.in_notebook(current):
                        self._pending_deletes.append(self.snippets.delete(snippet.id))
                        removed_snippets += 1
                self.tree.delete(current)
                self._pending_dir_deletes.append(current)
            op["notebooks_removed"] = len(doomed)
            op["snippets_removed"] = removed_snippets
        return doomed

    def move_notebook(self, notebook_id: str, direction: int) -> bool:
        """Swap a notebook with its previous (-1) or next (+1) sibling."""
        with self.mutation("move_notebook", notebook_id=notebook_id, direction=direction):
            moved = self.tree.move_sibling(notebook_id, direction)
        return moved

    # -- snippets -------------------------------------------------------------

    def create_snippet(
        self,
        title: str,
        language: Union[SnippetLanguage, str],
        notebook_id: str,
        description: Optional[str] = None,
        content: str = "",
        tags: Optional[List[str]] = None,
    ) -> str:
        """Create a snippet, write its content file and apply tags."""
        for raw in tags or ():
            if not canonical_tag_name(raw):
                raise ValidationError(
                    "Tag name cannot be empty",
                    field="tag",
                    value=raw,
                    code=ErrorCode.TAG_INVALID,
                )

        with self.mutation("create_snippet", notebook_id=notebook_id) as op:
            snippet_id = self.snippets.create(
                title, language, notebook_id, description, content
            )
            try:
                for raw in tags or ():
                    self.tags.add_tag_to_snippet(snippet_id, raw)
            except SnipbookError:
                self.snippets.delete(snippet_id)
                raise
            self.snippets.sync_tag_names(snippet_id)
            self.schedule_content_write(snippet_id)
            op["snippet_id"] = snippet_id
        return snippet_id

    def update_snippet_content(self, snippet_id: str, content: str) -> None:
        with self.mutation("update_snippet_content", snippet_id=snippet_id):
            self.snippets.update_content(snippet_id, content)
            self.schedule_content_write(snippet_id)

    def update_snippet_details(
        self,
        snippet_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        language: Optional[Union[SnippetLanguage, str]] = None,
    ) -> None:
        """Update title, description or language; a new language renames the file."""
        snippet = self.snippets.get(snippet_id)
        old_extension = snippet.file_extension
        with self.mutation("update_snippet_details", snippet_id=snippet_id):
            self.snippets.update_details(snippet_id, title, description, language)
            if snippet.file_extension != old_extension:
                self.schedule_relocation(snippet_id, snippet.notebook_id, old_extension)

    def mark_accessed(self, snippet_id: str) -> None:
        with self.mutation("mark_accessed", snippet_id=snippet_id):
            self.snippets.mark_accessed(snippet_id)

    def toggle_favorite(self, snippet_id: str) -> bool:
        with self.mutation("toggle_favorite", snippet_id=snippet_id) as op:
            op["is_favorite"] = self.snippets.toggle_favorite(snippet_id)
        return op["is_favorite"]

    def move_snippet(self, snippet_id: str, target_notebook_id: str) -> None:
        """Move a snippet to another notebook, relocating its content file."""
        with self.mutation(
            "move_snippet", snippet_id=snippet_id, target=target_notebook_id
        ):
            extension = self.snippets.get(snippet_id).file_extension
            previous = self.snippets.move(snippet_id, target_notebook_id)
            if previous != target_notebook_id:
                self.schedule_relocation(snippet_id, previous, extension)

    def delete_snippet(self, snippet_id: str) -> None:
        """Delete a snippet: tag index first, then the snippet, then its file."""
        with self.mutation("delete_snippet", snippet_id=snippet_id):
            removed = self.snippets.delete(snippet_id)
            self._pending_writes.pop(snippet_id, None)
            self._pending_deletes.append(removed)

    def edit_in_editor(self, snippet_id: str, launcher: EditorLauncher) -> bool:
        """Open a snippet in an external editor and take back what it saved.

        Returns:
            True if the content changed.
        """
        snippet = self.snippets.get(snippet_id)
        if self.persistence is None:
            with tempfile.TemporaryDirectory(prefix="snipbook-") as tmp_dir:
                path = Path(tmp_dir) / f"{snippet.id}.{snippet.file_extension}"
                path.write_text(snippet.content, encoding="utf-8")
                launcher.edit(path)
                content = path.read_text(encoding="utf-8")
        else:
            path = self.persistence.save_snippet_content(snippet)
            launcher.edit(path)
            content = self.persistence.load_snippet_content(
                snippet.id, snippet.notebook_id, snippet.file_extension
            )

        if content == snippet.content:
            return False
        self.update_snippet_content(snippet_id, content)
        return True

    # -- tags -----------------------------------------------------------------

    def add_tag(self, snippet_id: str, raw_name: str) -> str:
        """Tag a snippet, creating the tag if needed; returns the tag id."""
        self.snippets.get(snippet_id)
        with self.mutation("add_tag", snippet_id=snippet_id, tag=raw_name) as op:
            tag_id = self.tags.add_tag_to_snippet(snippet_id, raw_name)
            self.snippets.sync_tag_names(snippet_id)
            op["tag_id"] = tag_id
        return tag_id

    def remove_tag(self, snippet_id: str, raw_name: str) -> bool:
        self.snippets.get(snippet_id)
        with self.mutation("remove_tag", snippet_id=snippet_id, tag=raw_name) as op:
            removed = self.tags.remove_tag_from_snippet(snippet_id, raw_name)
            self.snippets.sync_tag_names(snippet_id)
            op["removed"] = removed
        return removed

    # -- import ---------------------------------------------------------------

    def merge_bundle(
        self, bundle: "ExportDocument", policy: "MergePolicy"
    ) -> "MergeResult":
        """Reconcile an imported bundle into this store."""
        from snipbook.services.merge_service import MergeEngine

        return MergeEngine(self).merge(bundle, policy)

    # -- reads ----------------------------------------------------------------

    def get_notebook(self, notebook_id: str) -> Notebook:
        return self.tree.get(notebook_id).model_copy(deep=True)

    def get_snippet(self, snippet_id: str) -> CodeSnippet:
        return self.snippets.get(snippet_id).model_copy(deep=True)

    @property
    def root_notebooks(self) -> List[str]:
        return list(self.tree.root_notebooks)

    def list_notebooks(self) -> List[Notebook]:
        return [n.model_copy(deep=True) for n in self.tree]

    def list_snippets(self, notebook_id: Optional[str] = None) -> List[CodeSnippet]:
        """All snippets in insertion order, or only those of one notebook."""
        if notebook_id is None:
            found = list(self.snippets)
        else:
            self.tree.get(notebook_id)
            found = self.snippets.in_notebook(notebook_id)
        return [s.model_copy(deep=True) for s in found]

    def favorites(self) -> List[CodeSnippet]:
        return [s.model_copy(deep=True) for s in self.snippets.favorites()]

    def recently_used(self, limit: int = 10) -> List[CodeSnippet]:
        return [s.model_copy(deep=True) for s in self.snippets.recently_used(limit)]

    def tags_for_snippet(self, snippet_id: str) -> List[Tag]:
        self.snippets.get(snippet_id)
        return [t.model_copy(deep=True) for t in self.tags.tags_for_snippet(snippet_id)]

    def tag_counts(self) -> Dict[str, int]:
        return self.tags.tag_counts()

    def flatten(self, root_id: Optional[str] = None) -> List[TreeRow]:
        """Indentation-ready listing of notebooks and their snippets."""
        return [
            (entity.model_copy(deep=True), depth)
            for entity, depth in self.tree.flatten(self.snippets.snippets, root_id)
        ]

    def notebook_path(self, notebook_id: str) -> str:
        return self.tree.path(notebook_id)

    def resolve_notebook(self, name_or_id: str) -> Optional[str]:
        """Accept either a notebook id or (part of) its name."""
        if name_or_id in self.tree:
            return name_or_id
        return self.tree.find_by_name(name_or_id)

    def resolve_snippet(self, title_or_id: str) -> Optional[str]:
        """Accept either a snippet id or its title (exact match first, case-insensitive)."""
        if title_or_id in self.snippets:
            return title_or_id
        wanted = title_or_id.strip().lower()
        if not wanted:
            return None
        for snippet in self.snippets:
            if snippet.title.lower() == wanted:
                return snippet.id
        for snippet in self.snippets:
            if wanted in snippet.title.lower():
                return snippet.id
        return None

    def stats(self) -> Dict[str, int]:
        return {
            "notebooks": len(self.tree),
            "root_notebooks": len(self.tree.root_notebooks),
            "snippets": len(self.snippets),
            "favorites": len(self.snippets.favorites()),
            "tags": len(self.tags),
        }

    def check_invariants(self) -> List[str]:
        """Describe every broken invariant across the aggregate (empty if none)."""
        problems = self.tree.check_invariants() + self.tags.check_invariants()
        for notebook in self.tree:
            actual = self.snippets.count_for(notebook.id)
            if notebook.snippet_count != actual:
                problems.append(
                    f"notebook {notebook.id} caches {notebook.snippet_count} "
                    f"snippets but owns {actual}"
                )
        for snippet in self.snippets:
            if snippet.notebook_id not in self.tree:
                problems.append(f"snippet {snippet.id} has a dangling notebook")
            indexed = [t.name for t in self.tags.tags_for_snippet(snippet.id)]
            if sorted(indexed) != sorted(snippet.tags):
                problems.append(f"snippet {snippet.id} tag names are stale")
        for snippet_id in self.tags.snippet_tags:
            if snippet_id not in self.snippets:
                problems.append(f"tag index references unknown snippet {snippet_id}")
        return problems
