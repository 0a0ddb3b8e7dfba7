"""Forest of notebooks addressed by id."""
import logging
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from snipbook.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from snipbook.models.schema import DEFAULT_NOTEBOOK_COLOR, CodeSnippet, Notebook

logger = logging.getLogger(__name__)

# One row of a flattened listing: the entity and its indentation depth
TreeRow = Tuple[Union[Notebook, CodeSnippet], int]

PATH_SEPARATOR = " > "


class NotebookTree:
    """Notebook hierarchy stored as an id-addressed arena.

    Notebooks reference their parent and children by id only, so the
    tree can be mutated without ownership cycles. The tree keeps these
    invariants after every successful call:

    - every parent_id resolves to an existing notebook
    - no notebook is its own ancestor
    - a notebook's children list is exactly the set of notebooks whose
      parent_id points at it
    - root_notebooks lists exactly the notebooks without a parent
    """

    def __init__(
        self,
        notebooks: Optional[Dict[str, Notebook]] = None,
        root_notebooks: Optional[List[str]] = None,
        default_color: str = DEFAULT_NOTEBOOK_COLOR,
    ):
        self.notebooks: Dict[str, Notebook] = notebooks if notebooks is not None else {}
        self.root_notebooks: List[str] = (
            root_notebooks if root_notebooks is not None else []
        )
        self.default_color = default_color

    def __contains__(self, notebook_id: object) -> bool:
        return notebook_id in self.notebooks

    def __len__(self) -> int:
        return len(self.notebooks)

    def __iter__(self) -> Iterator[Notebook]:
        return iter(self.notebooks.values())

    def get(self, notebook_id: str) -> Notebook:
        """Get a notebook by id.

        Raises:
            NotFoundError: If no notebook has this id.
        """
        notebook = self.notebooks.get(notebook_id)
        if notebook is None:
            raise NotFoundError(
                "notebook", notebook_id, code=ErrorCode.NOTEBOOK_NOT_FOUND
            )
        return notebook

    @staticmethod
    def _checked_name(name: str) -> str:
        if not name or not name.strip():
            raise ValidationError(
                "Notebook name cannot be empty",
                field="name",
                value=name,
                code=ErrorCode.NOTEBOOK_NAME_REQUIRED,
            )
        return name.strip()

    def create_root(self, name: str, description: Optional[str] = None) -> str:
        """Create a top-level notebook appended to the root list.

        Raises:
            ValidationError: If name is blank.
        """
        notebook = Notebook(
            name=self._checked_name(name),
            description=description,
            color=self.default_color,
        )
        self.notebooks[notebook.id] = notebook
        self.root_notebooks.append(notebook.id)
        logger.debug(f"Created root notebook '{notebook.name}' ({notebook.id})")
        return notebook.id

    def create_child(
        self, parent_id: str, name: str, description: Optional[str] = None
    ) -> str:
        """Create a notebook appended to parent's children.

        Raises:
            ValidationError: If name is blank.
            NotFoundError: If the parent does not exist.
        """
        checked = self._checked_name(name)
        parent = self.get(parent_id)
        notebook = Notebook(
            name=checked,
            description=description,
            color=self.default_color,
            parent_id=parent_id,
        )
        self.notebooks[notebook.id] = notebook
        parent.add_child(notebook.id)
        logger.debug(
            f"Created notebook '{notebook.name}' ({notebook.id}) under {parent_id}"
        )
        return notebook.id

    def rename(self, notebook_id: str, name: str) -> None:
        checked = self._checked_name(name)
        notebook = self.get(notebook_id)
        notebook.name = checked
        notebook.touch()

    def update(
        self,
        notebook_id: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> None:
        """Update presentation fields; None leaves a field unchanged."""
        notebook = self.get(notebook_id)
        if description is not None:
            notebook.description = description or None
        if color is not None:
            notebook.color = color
        if icon is not None:
            notebook.icon = icon
        notebook.touch()

    def delete(self, notebook_id: str) -> Notebook:
        """Delete an empty notebook.

        Raises:
            NotFoundError: If the notebook does not exist.
            ConflictError: If it still owns snippets or child notebooks.
        """
        notebook = self.get(notebook_id)
        if notebook.snippet_count or notebook.children:
            raise ConflictError(
                f"Notebook '{notebook.name}' still has "
                f"{notebook.snippet_count} snippet(s) and "
                f"{len(notebook.children)} child notebook(s)",
                entity_id=notebook_id,
            )

        if notebook.parent_id is not None and notebook.parent_id in self.notebooks:
            self.notebooks[notebook.parent_id].remove_child(notebook_id)
        if notebook_id in self.root_notebooks:
            self.root_notebooks.remove(notebook_id)
        del self.notebooks[notebook_id]
        logger.debug(f"Deleted notebook '{notebook.name}' ({notebook_id})")
        return notebook

    def _siblings(self, notebook: Notebook) -> List[str]:
        if notebook.parent_id is None:
            return self.root_notebooks
        return self.get(notebook.parent_id).children

    def move_sibling(self, notebook_id: str, direction: int) -> bool:
        """Swap a notebook with its previous (-1) or next (+1) sibling.

        Returns:
            True if the order changed, False at the boundary.

        Raises:
            ValidationError: If direction is not -1 or +1.
        """
        if direction not in (-1, 1):
            raise ValidationError(
                "Direction must be -1 or +1",
                field="direction",
                value=direction,
                code=ErrorCode.INVALID_DIRECTION,
            )
        notebook = self.get(notebook_id)
        siblings = self._siblings(notebook)
        index = siblings.index(notebook_id)
        target = index + direction
        if target < 0 or target >= len(siblings):
            return False
        siblings[index], siblings[target] = siblings[target], siblings[index]
        if notebook.parent_id is not None:
            self.notebooks[notebook.parent_id].touch()
        return True

    def set_snippet_count(self, notebook_id: str, count: int) -> None:
        notebook = self.get(notebook_id)
        if notebook.snippet_count != count:
            notebook.snippet_count = count
            notebook.touch()

    def flatten(
        self,
        snippets: Mapping[str, CodeSnippet],
        root_id: Optional[str] = None,
    ) -> List[TreeRow]:
        """Produce an indentation-ready listing of the forest.

        Depth-first pre-order from each root in root order: a notebook, then
        its own snippets in insertion order one level deeper, then each
        child notebook in children order.

        Args:
            snippets: All snippets, in insertion order.
            root_id: Only walk the subtree below this notebook.

        Returns:
            List of (entity, depth) rows.
        """
        owned: Dict[str, List[CodeSnippet]] = {}
        for snippet in snippets.values():
            owned.setdefault(snippet.notebook_id, []).append(snippet)

        start = [self.get(root_id).id] if root_id is not None else self.root_notebooks
        rows: List[TreeRow] = []
        visited = set()

        def walk(notebook_id: str, depth: int) -> None:
            notebook = self.notebooks.get(notebook_id)
            if notebook is None or notebook_id in visited:
                return
            visited.add(notebook_id)
            rows.append((notebook, depth))
            for snippet in owned.get(notebook_id, ()):
                rows.append((snippet, depth + 1))
            for child_id in notebook.children:
                walk(child_id, depth + 1)

        for notebook_id in start:
            walk(notebook_id, 0)
        return rows

    def ancestors(self, notebook_id: str) -> List[str]:
        """Ids from the parent up to the root (nearest first)."""
        result = []
        seen = {notebook_id}
        current = self.get(notebook_id).parent_id
        while current is not None and current in self.notebooks and current not in seen:
            result.append(current)
            seen.add(current)
            current = self.notebooks[current].parent_id
        return result

    def descendants(self, notebook_id: str) -> List[str]:
        """Ids below a notebook, deepest first (safe order for deletion)."""
        result: List[str] = []

        def collect(current: str) -> None:
            for child_id in self.get(current).children:
                if child_id in self.notebooks and child_id not in result:
                    collect(child_id)
                    result.append(child_id)

        collect(notebook_id)
        return result

    def path(self, notebook_id: str) -> str:
        """Names from the root down to this notebook, joined with ' > '."""
        chain = [notebook_id] + self.ancestors(notebook_id)
        return PATH_SEPARATOR.join(self.notebooks[i].name for i in reversed(chain))

    def find_by_name(self, name: str) -> Optional[str]:
        """Find a notebook id by name: exact (case-insensitive) match first, then substring."""
        wanted = name.strip().lower()
        if not wanted:
            return None
        for notebook in self.notebooks.values():
            if notebook.name.lower() == wanted:
                return notebook.id
        for notebook in self.notebooks.values():
            if wanted in notebook.name.lower():
                return notebook.id
        return None

    def put(self, notebook: Notebook) -> None:
        """Insert or replace a notebook without relinking; call repair() afterwards."""
        self.notebooks[notebook.id] = notebook

    def _cycle_entry(self, notebook_id: str) -> Optional[str]:
        """The first notebook revisited while walking up from notebook_id.

        That notebook lies on the loop itself; notebooks that merely hang
        below a loop never get returned.
        """
        seen = set()
        current: Optional[str] = notebook_id
        while current is not None:
            if current in seen:
                return current
            seen.add(current)
            parent = self.notebooks.get(current)
            current = parent.parent_id if parent is not None else None
        return None

    def repair(self) -> List[str]:
        """Restore the forest invariants after raw put() calls.

        parent_id is treated as the source of truth:
        - notebooks with a missing parent become roots, and each parent
          cycle is broken by promoting the first of its members reached
        - children lists are rebuilt from parent_id, keeping the existing
          order and appending newcomers in insertion order
        - the root list keeps its order, drops notebooks that now have a
          parent, and gains parentless notebooks at the end

        Returns:
            Human-readable descriptions of the changes made.
        """
        actions: List[str] = []

        for notebook in self.notebooks.values():
            if notebook.parent_id is None:
                continue
            if notebook.parent_id not in self.notebooks:
                actions.append(
                    f"'{notebook.name}' ({notebook.id}) lost parent "
                    f"{notebook.parent_id}; promoted to root"
                )
                notebook.parent_id = None
                continue
            # One promotion per loop; everything below it stays attached
            entry = self._cycle_entry(notebook.id)
            if entry is not None:
                on_loop = self.notebooks[entry]
                actions.append(
                    f"'{on_loop.name}' ({on_loop.id}) was on a parent cycle; "
                    "promoted to root"
                )
                on_loop.parent_id = None

        expected: Dict[str, List[str]] = {nid: [] for nid in self.notebooks}
        for notebook in self.notebooks.values():
            if notebook.parent_id is not None:
                expected[notebook.parent_id].append(notebook.id)

        for notebook in self.notebooks.values():
            wanted = expected[notebook.id]
            ordered = [c for c in notebook.children if c in wanted]
            ordered = list(dict.fromkeys(ordered))
            ordered += [c for c in wanted if c not in ordered]
            if ordered != notebook.children:
                actions.append(f"children of '{notebook.name}' rebuilt")
                notebook.children = ordered

        roots = [
            nid
            for nid in dict.fromkeys(self.root_notebooks)
            if nid in self.notebooks and self.notebooks[nid].parent_id is None
        ]
        roots += [
            nid
            for nid, notebook in self.notebooks.items()
            if notebook.parent_id is None and nid not in roots
        ]
        if roots != self.root_notebooks:
            actions.append("root notebook list rebuilt")
            self.root_notebooks[:] = roots

        for action in actions:
            logger.info(f"Notebook tree repair: {action}")
        return actions

    def check_invariants(self) -> List[str]:
        """Return a description of every forest violation (empty if none)."""
        problems = []
        for notebook in self.notebooks.values():
            if notebook.parent_id is not None:
                if notebook.parent_id not in self.notebooks:
                    problems.append(f"{notebook.id} has a dangling parent")
                elif notebook.id not in self.notebooks[notebook.parent_id].children:
                    problems.append(f"{notebook.id} missing from its parent's children")
            if self._cycle_entry(notebook.id) == notebook.id:
                problems.append(f"{notebook.id} is its own ancestor")
            for child_id in notebook.children:
                child = self.notebooks.get(child_id)
                if child is None or child.parent_id != notebook.id:
                    problems.append(f"{notebook.id} lists {child_id} as a child")
            if len(set(notebook.children)) != len(notebook.children):
                problems.append(f"{notebook.id} lists a child twice")
        roots = [n.id for n in self.notebooks.values() if n.parent_id is None]
        if sorted(roots) != sorted(self.root_notebooks):
            problems.append("root list does not match parentless notebooks")
        return problems
