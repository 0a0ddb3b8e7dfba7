"""Bidirectional index between tags and snippets."""
import logging
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, Field, field_serializer

from snipbook.exceptions import ErrorCode, ValidationError
from snipbook.models.schema import Tag
from snipbook.utils import canonical_tag_name

logger = logging.getLogger(__name__)


class TagIndex(BaseModel):
    """Many-to-many mapping between tags and snippets.

    Owns the tag lifecycle: a tag is created the first time it is applied
    to a snippet and removed as soon as no snippet carries it. Both maps
    are kept symmetric:

        snippet_id in tag_snippets[tag_id]  <=>  tag_id in snippet_tags[snippet_id]

    The index is persisted as part of the aggregate document.
    """

    tags: Dict[str, Tag] = Field(default_factory=dict)
    snippet_tags: Dict[str, Set[str]] = Field(default_factory=dict)
    tag_snippets: Dict[str, Set[str]] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @field_serializer("snippet_tags", "tag_snippets")
    def _serialize_sets(self, value: Dict[str, Set[str]]) -> Dict[str, List[str]]:
        # Sorted so the persisted document diffs cleanly
        return {key: sorted(ids) for key, ids in value.items()}

    def __len__(self) -> int:
        return len(self.tags)

    def get_by_name(self, name: str) -> Optional[Tag]:
        """Get a tag by name, ignoring case and any leading '#' markers.

        Args:
            name: The tag name as typed by a user.

        Returns:
            The Tag if found, None otherwise.
        """
        wanted = canonical_tag_name(name).lower()
        if not wanted:
            return None
        for tag in self.tags.values():
            if tag.name.lower() == wanted:
                return tag
        return None

    def _get_or_create(self, name: str) -> Tag:
        tag = self.get_by_name(name)
        if tag is None:
            tag = Tag(name=name)
            self.tags[tag.id] = tag
            logger.debug(f"Created tag #{tag.name} ({tag.id})")
        return tag

    def add_tag_to_snippet(self, snippet_id: str, raw_name: str) -> str:
        """Apply a tag to a snippet, creating the tag if needed.

        Args:
            snippet_id: The snippet to tag.
            raw_name: Tag name as typed; leading '#' markers are dropped and the
                lookup against existing tags ignores case.

        Returns:
            The id of the (new or reused) tag.

        Raises:
            ValidationError: If the name is empty after canonicalization.
        """
        name = canonical_tag_name(raw_name)
        if not name:
            raise ValidationError(
                "Tag name cannot be empty",
                field="tag",
                value=raw_name,
                code=ErrorCode.TAG_INVALID,
            )

        tag = self._get_or_create(name)
        tag.mark_used()
        self.snippet_tags.setdefault(snippet_id, set()).add(tag.id)
        self.tag_snippets.setdefault(tag.id, set()).add(snippet_id)
        return tag.id

    def remove_tag_from_snippet(self, snippet_id: str, raw_name: str) -> bool:
        """Remove a tag from a snippet, pruning the tag if it is now unused.

        Returns:
            True if the association existed, False otherwise.
        """
        tag = self.get_by_name(raw_name)
        if tag is None or tag.id not in self.snippet_tags.get(snippet_id, set()):
            return False

        self._unlink(snippet_id, tag.id)
        return True

    def _unlink(self, snippet_id: str, tag_id: str) -> None:
        tag_ids = self.snippet_tags.get(snippet_id)
        if tag_ids is not None:
            tag_ids.discard(tag_id)
            if not tag_ids:
                del self.snippet_tags[snippet_id]

        snippet_ids = self.tag_snippets.get(tag_id)
        if snippet_ids is not None:
            snippet_ids.discard(snippet_id)
            if not snippet_ids:
                # Tags have no standalone existence
                del self.tag_snippets[tag_id]
                removed = self.tags.pop(tag_id, None)
                if removed is not None:
                    logger.debug(f"Pruned unused tag #{removed.name}")

    def handle_snippet_deleted(self, snippet_id: str) -> None:
        """Drop a deleted snippet from every tag, pruning emptied tags."""
        for tag_id in list(self.snippet_tags.get(snippet_id, ())):
            self._unlink(snippet_id, tag_id)
        self.snippet_tags.pop(snippet_id, None)

    def find_tags_by_name(self, query: str) -> List[Tag]:
        """Find tags whose name contains query, ignoring case.

        Returns:
            Matching tags ordered by name.
        """
        needle = canonical_tag_name(query).lower()
        matches = [t for t in self.tags.values() if needle in t.name.lower()]
        return sorted(matches, key=lambda t: (t.name.lower(), t.id))

    def tags_for_snippet(self, snippet_id: str) -> List[Tag]:
        """Get the tags of a snippet ordered by name."""
        tags = [
            self.tags[tag_id]
            for tag_id in self.snippet_tags.get(snippet_id, ())
            if tag_id in self.tags
        ]
        return sorted(tags, key=lambda t: t.name.lower())

    def snippets_with_tag(self, tag_id: str) -> Set[str]:
        return set(self.tag_snippets.get(tag_id, ()))

    def tag_counts(self) -> Dict[str, int]:
        """Get all tags with the number of snippets carrying them.

        Returns:
            Dictionary mapping tag names to snippet counts.
        """
        return {
            tag.name: len(self.tag_snippets.get(tag_id, ()))
            for tag_id, tag in sorted(
                self.tags.items(), key=lambda item: item[1].name.lower()
            )
        }

    def export_map(
        self, snippet_ids: Optional[Iterable[str]] = None
    ) -> Dict[str, List[str]]:
        """Flatten the index to tag name -> snippet ids.

        Args:
            snippet_ids: Restrict the output to these snippets; tags left
                without snippets are omitted.
        """
        allowed = set(snippet_ids) if snippet_ids is not None else None
        result: Dict[str, List[str]] = {}
        for tag_id, tag in self.tags.items():
            ids = self.tag_snippets.get(tag_id, set())
            if allowed is not None:
                ids = ids & allowed
            if ids:
                result[tag.name] = sorted(ids)
        return result

    def reconcile(self, snippet_ids: Iterable[str]) -> int:
        """Rebuild the reverse map and drop associations of unknown snippets.

        Used after loading a document written by another tool, where the
        two maps might not agree.

        Returns:
            Number of associations dropped.
        """
        known = set(snippet_ids)
        dropped = 0
        rebuilt: Dict[str, Set[str]] = {}

        for snippet_id in list(self.snippet_tags):
            keep = set()
            for tag_id in self.snippet_tags[snippet_id]:
                if snippet_id in known and tag_id in self.tags:
                    keep.add(tag_id)
                    rebuilt.setdefault(tag_id, set()).add(snippet_id)
                else:
                    dropped += 1
            if keep:
                self.snippet_tags[snippet_id] = keep
            else:
                del self.snippet_tags[snippet_id]

        self.tag_snippets = rebuilt
        for tag_id in [t for t in self.tags if t not in rebuilt]:
            del self.tags[tag_id]

        if dropped:
            logger.warning(f"Tag index reconciled: dropped {dropped} stale association(s)")
        return dropped

    def check_invariants(self) -> List[str]:
        """Return a description of every consistency violation (empty if none)."""
        problems = []
        for snippet_id, tag_ids in self.snippet_tags.items():
            for tag_id in tag_ids:
                if snippet_id not in self.tag_snippets.get(tag_id, set()):
                    problems.append(f"{snippet_id} -> {tag_id} has no reverse entry")
        for tag_id, snippet_ids in self.tag_snippets.items():
            if not snippet_ids:
                problems.append(f"tag {tag_id} has an empty snippet set")
            if tag_id not in self.tags:
                problems.append(f"tag {tag_id} is indexed but not defined")
            for snippet_id in snippet_ids:
                if tag_id not in self.snippet_tags.get(snippet_id, set()):
                    problems.append(f"{tag_id} -> {snippet_id} has no reverse entry")
        for tag_id in self.tags:
            if not self.tag_snippets.get(tag_id):
                problems.append(f"tag {tag_id} is not used by any snippet")
        return problems
