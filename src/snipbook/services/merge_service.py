"""Reconcile an imported bundle into the live store."""
import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Set, Tuple

from snipbook.models.schema import ExportDocument
from snipbook.utils import canonical_tag_name

if TYPE_CHECKING:
    from snipbook.services.store import Store

logger = logging.getLogger(__name__)


class MergePolicy(str, Enum):
    """What to do when an imported entity's id already exists."""

    OVERWRITE_ALL = "overwrite_all"
    SKIP_EXISTING = "skip_existing"
    MERGE_AND_UPDATE = "merge_and_update"
    SMART_MERGE = "smart_merge"

    @property
    def label(self) -> str:
        return {
            MergePolicy.OVERWRITE_ALL: "Overwrite All",
            MergePolicy.SKIP_EXISTING: "Skip Existing",
            MergePolicy.MERGE_AND_UPDATE: "Merge and Update",
            MergePolicy.SMART_MERGE: "Smart Merge",
        }[self]

    @property
    def overwrites_existing(self) -> bool:
        """Whether the policy can replace an existing entity at all."""
        return self is not MergePolicy.SKIP_EXISTING

    @classmethod
    def from_name(cls, name: str) -> "MergePolicy":
        """Parse 'smart-merge', 'Smart Merge', 'smart_merge' and friends."""
        key = name.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown merge policy '{name}' (choose from {choices})")

    def should_replace(
        self, existing_updated: datetime.datetime, incoming_updated: datetime.datetime
    ) -> bool:
        """Decide an id collision.

        SMART_MERGE keeps whichever side was updated last; a tie keeps the
        existing entity.
        """
        if self is MergePolicy.SKIP_EXISTING:
            return False
        if self is MergePolicy.SMART_MERGE:
            return incoming_updated > existing_updated
        return True


@dataclass
class MergeResult:
    """Outcome of one merge.

    notebooks_added and snippets_added count entities inserted or replaced;
    the *_replaced fields are the replaced subset.
    """

    policy: MergePolicy
    notebooks_added: int = 0
    snippets_added: int = 0
    notebooks_replaced: int = 0
    snippets_replaced: int = 0
    notebooks_skipped: int = 0
    snippets_skipped: int = 0
    # Imported snippets whose notebook is not in the store after the notebook pass
    snippets_dropped: int = 0
    roots_added: int = 0
    tags_applied: int = 0
    repairs: List[str] = field(default_factory=list)

    def as_tuple(self) -> Tuple[int, int]:
        return self.notebooks_added, self.snippets_added

    def summary(self) -> str:
        parts = [
            f"{self.notebooks_added} notebook(s)",
            f"{self.snippets_added} snippet(s) imported",
        ]
        if self.notebooks_skipped or self.snippets_skipped:
            parts.append(
                f"{self.notebooks_skipped + self.snippets_skipped} existing kept"
            )
        if self.snippets_dropped:
            parts.append(f"{self.snippets_dropped} orphan snippet(s) dropped")
        return f"{self.policy.label}: " + ", ".join(parts)


class MergeEngine:
    """Applies an ExportDocument to a Store under a MergePolicy.

    Identity is by id only: two notebooks sharing a name stay distinct.
    """

    def __init__(self, store: "Store"):
        self.store = store

    def merge(self, bundle: ExportDocument, policy: MergePolicy) -> MergeResult:
        """Merge bundle into the store and flush.

        Steps: notebooks, then root order, then snippets (dropping those
        whose notebook is absent), then additive tag re-application, then
        a consistency pass over the tree, counts and tag names.
        """
        policy = MergePolicy(policy)
        if policy is MergePolicy.SMART_MERGE:
            logger.info(
                "Smart Merge compares updated_at; imported entities that are "
                "not newer than the existing ones are kept out"
            )
        elif policy is MergePolicy.MERGE_AND_UPDATE:
            logger.info("Merge and Update replaces every entity whose id already exists")

        result = MergeResult(policy=policy)
        with self.store.mutation(
            "merge",
            policy=policy.value,
            notebooks=len(bundle.notebooks),
            snippets=len(bundle.snippets),
        ) as op:
            self._merge_notebooks(bundle, policy, result)
            self._merge_roots(bundle, result)
            written = self._merge_snippets(bundle, policy, result)
            self._apply_tags(bundle, written, result)
            self._restore_consistency(result)
            op["notebooks_added"] = result.notebooks_added
            op["snippets_added"] = result.snippets_added

        logger.info(result.summary())
        return result

    def merge_with_overwrite(
        self, bundle: ExportDocument, overwrite_existing: bool
    ) -> MergeResult:
        """Boolean form: True replaces on every collision, False never does."""
        policy = (
            MergePolicy.OVERWRITE_ALL if overwrite_existing else MergePolicy.SKIP_EXISTING
        )
        return self.merge(bundle, policy)

    def _merge_notebooks(
        self, bundle: ExportDocument, policy: MergePolicy, result: MergeResult
    ) -> None:
        tree = self.store.tree
        for notebook_id, incoming in bundle.notebooks.items():
            existing = tree.notebooks.get(notebook_id)
            if existing is None:
                tree.put(incoming.model_copy(deep=True))
                result.notebooks_added += 1
            elif policy.should_replace(existing.updated_at, incoming.updated_at):
                tree.put(incoming.model_copy(deep=True))
                result.notebooks_added += 1
                result.notebooks_replaced += 1
            else:
                result.notebooks_skipped += 1

    def _merge_roots(self, bundle: ExportDocument, result: MergeResult) -> None:
        tree = self.store.tree
        for notebook_id in bundle.root_notebooks:
            if notebook_id in tree.notebooks and notebook_id not in tree.root_notebooks:
                tree.root_notebooks.append(notebook_id)
                result.roots_added += 1

    def _merge_snippets(
        self, bundle: ExportDocument, policy: MergePolicy, result: MergeResult
    ) -> Dict[str, List[str]]:
        """Insert or replace snippets; returns written id -> imported tag names."""
        tree = self.store.tree
        snippets = self.store.snippets
        written: Dict[str, List[str]] = {}

        for snippet_id, incoming in bundle.snippets.items():
            if incoming.notebook_id not in tree.notebooks:
                logger.debug(
                    f"Dropping snippet {snippet_id}: notebook "
                    f"{incoming.notebook_id} is not in the store"
                )
                result.snippets_dropped += 1
                continue

            existing = snippets.snippets.get(snippet_id)
            if existing is not None and not policy.should_replace(
                existing.updated_at, incoming.updated_at
            ):
                result.snippets_skipped += 1
                continue

            replacement = incoming.model_copy(deep=True)
            if existing is not None:
                if not bundle.include_content:
                    replacement.content = existing.content
                if (
                    existing.notebook_id != replacement.notebook_id
                    or existing.file_extension != replacement.file_extension
                ):
                    self.store.schedule_relocation(
                        snippet_id, existing.notebook_id, existing.file_extension
                    )
                result.snippets_replaced += 1

            snippets.put(replacement)
            self.store.schedule_content_write(snippet_id)
            written[snippet_id] = list(incoming.tags)
            result.snippets_added += 1

        return written

    def _apply_tags(
        self,
        bundle: ExportDocument,
        written: Dict[str, List[str]],
        result: MergeResult,
    ) -> None:
        tags = self.store.tags
        snippets = self.store.snippets
        applied: Set[Tuple[str, str]] = set()

        for raw_name, snippet_ids in bundle.tags.items():
            name = canonical_tag_name(raw_name)
            if not name:
                logger.warning(f"Ignoring imported tag with empty name: {raw_name!r}")
                continue
            for snippet_id in snippet_ids:
                if snippet_id in snippets:
                    tags.add_tag_to_snippet(snippet_id, name)
                    applied.add((snippet_id, name.lower()))
                    result.tags_applied += 1

        # Bundles written without a tag map still carry the names on each snippet
        for snippet_id, names in written.items():
            for raw_name in names:
                name = canonical_tag_name(raw_name)
                if name and (snippet_id, name.lower()) not in applied:
                    current = {t.name.lower() for t in tags.tags_for_snippet(snippet_id)}
                    if name.lower() not in current:
                        tags.add_tag_to_snippet(snippet_id, name)
                        result.tags_applied += 1

    def _restore_consistency(self, result: MergeResult) -> None:
        result.repairs = self.store.tree.repair()
        self.store.snippets.recount_all()
        for snippet_id in list(self.store.snippets.snippets):
            self.store.snippets.sync_tag_names(snippet_id)


def merge_documents(
    store: "Store", bundle: ExportDocument, overwrite_existing: bool
) -> Tuple[int, int]:
    """Merge with the boolean contract; returns (notebooks_added, snippets_added)."""
    return MergeEngine(store).merge_with_overwrite(bundle, overwrite_existing).as_tuple()
