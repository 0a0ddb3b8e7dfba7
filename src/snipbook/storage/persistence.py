"""File-backed persistence for the snippet store.

The aggregate (notebooks, root order, snippets without content, tag index)
is one JSON document. Snippet content lives in one plain-text file per
snippet so an external editor can open it directly:

    <data-root>/snippets/<notebook_id>/<snippet_id>.<extension>
"""
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from snipbook.config import config
from snipbook.exceptions import ErrorCode, SerializationError, StorageError
from snipbook.models.schema import CodeSnippet, Notebook, validate_safe_path_component
from snipbook.storage.tag_index import TagIndex

logger = logging.getLogger(__name__)


class StoreDocument(BaseModel):
    """In-memory shape of the aggregate document."""

    notebooks: Dict[str, Notebook] = Field(default_factory=dict)
    root_notebooks: List[str] = Field(default_factory=list)
    snippets: Dict[str, CodeSnippet] = Field(default_factory=dict)
    # Older documents call it tag_manager
    tag_index: TagIndex = Field(
        default_factory=TagIndex,
        validation_alias=AliasChoices("tag_index", "tag_manager"),
    )

    model_config = {"extra": "ignore", "populate_by_name": True}


class PersistenceLayer:
    """Pure I/O boundary between the Store and the filesystem."""

    def __init__(
        self,
        database_path: Optional[Path] = None,
        snippets_dir: Optional[Path] = None,
    ):
        """Initialize the persistence layer.

        Args:
            database_path: Aggregate document path. If None, uses config.
            snippets_dir: Root of the content files. If None, uses config.
        """
        self.database_path = (
            Path(database_path) if database_path else config.get_database_path()
        )
        self.snippets_dir = (
            Path(snippets_dir) if snippets_dir else config.get_snippets_path()
        )

    # -- aggregate document -------------------------------------------------

    def load(self) -> StoreDocument:
        """Load the aggregate document and every snippet's content.

        Returns:
            An empty document if nothing has been saved yet.

        Raises:
            SerializationError: If the document is not valid JSON or does
                not match the schema.
            StorageError: If the document cannot be read.
        """
        if not self.database_path.exists():
            logger.info(f"No store document at {self.database_path}; starting empty")
            return StoreDocument()

        try:
            with open(self.database_path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StorageError(
                "Failed to read store document",
                operation="load",
                path=str(self.database_path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

        try:
            document = StoreDocument.model_validate(json.loads(raw))
        except (ValueError, PydanticValidationError) as e:
            raise SerializationError(
                "Store document is malformed",
                source=self.database_path.name,
                code=ErrorCode.DOCUMENT_MALFORMED,
                original_error=e,
            ) from e

        for snippet in document.snippets.values():
            snippet.content = self.load_snippet_content(
                snippet.id, snippet.notebook_id, snippet.file_extension
            )

        logger.info(
            f"Loaded {len(document.notebooks)} notebooks, "
            f"{len(document.snippets)} snippets, {len(document.tag_index)} tags"
        )
        return document

    def save(self, document: StoreDocument) -> None:
        """Write the aggregate document atomically (temp file + rename).

        Snippet content is left out; use save_snippet_content for that.

        Raises:
            StorageError: If the document cannot be written.
        """
        payload = document.model_dump(mode="json")
        for snippet in payload["snippets"].values():
            snippet.pop("content", None)
        tmp_path = self.database_path.with_name(self.database_path.name + ".tmp")
        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.database_path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise StorageError(
                "Failed to write store document",
                operation="save",
                path=str(self.database_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Saved store document to {self.database_path}")

    # -- content files ------------------------------------------------------

    def snippet_path(self, snippet_id: str, notebook_id: str, extension: str) -> Path:
        """Path of a snippet's content file.

        Raises:
            StorageError: If any component could escape the snippets directory.
        """
        try:
            validate_safe_path_component(notebook_id, "Notebook ID")
            validate_safe_path_component(snippet_id, "Snippet ID")
            validate_safe_path_component(extension, "File extension")
        except ValueError as e:
            raise StorageError(
                str(e),
                operation="resolve",
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
                original_error=e,
            ) from e
        return self.snippets_dir / notebook_id / f"{snippet_id}.{extension}"

    def content_path(self, snippet: CodeSnippet) -> Path:
        return self.snippet_path(snippet.id, snippet.notebook_id, snippet.file_extension)

    def save_snippet_content(self, snippet: CodeSnippet) -> Path:
        """Write a snippet's content to its file, creating the notebook directory."""
        file_path = self.content_path(snippet)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                f.write(snippet.content)
        except OSError as e:
            raise StorageError(
                f"Failed to write content of snippet {snippet.id}",
                operation="save_content",
                path=str(file_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return file_path

    def load_snippet_content(
        self, snippet_id: str, notebook_id: str, extension: str
    ) -> str:
        """Read a snippet's content; a missing file reads as empty content."""
        file_path = self.snippet_path(snippet_id, notebook_id, extension)
        if not file_path.exists():
            return ""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read content of snippet {snippet_id}",
                operation="load_content",
                path=str(file_path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def delete_snippet_file(self, snippet: CodeSnippet) -> bool:
        """Remove a snippet's content file.

        Returns:
            True if a file was removed, False if there was none.
        """
        file_path = self.content_path(snippet)
        try:
            file_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete content of snippet {snippet.id}",
                operation="delete_content",
                path=str(file_path),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        return True

    def move_snippet_file(
        self, snippet: CodeSnippet, old_notebook_id: str, old_extension: str
    ) -> Path:
        """Relocate a content file after a notebook or language change.

        The snippet must already carry its new notebook_id and extension.
        When the old file is gone the current content is written instead.
        """
        old_path = self.snippet_path(snippet.id, old_notebook_id, old_extension)
        new_path = self.content_path(snippet)
        if old_path == new_path:
            return new_path
        if not old_path.exists():
            return self.save_snippet_content(snippet)
        try:
            new_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(old_path, new_path)
        except OSError as e:
            raise StorageError(
                f"Failed to move content of snippet {snippet.id}",
                operation="move_content",
                path=str(new_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Moved {old_path.name} from {old_notebook_id} to {snippet.notebook_id}")
        return new_path

    def delete_notebook_directory(self, notebook_id: str) -> bool:
        """Remove a notebook's content directory and anything left in it."""
        try:
            validate_safe_path_component(notebook_id, "Notebook ID")
        except ValueError as e:
            raise StorageError(
                str(e),
                operation="delete_directory",
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
                original_error=e,
            ) from e
        directory = self.snippets_dir / notebook_id
        if not directory.is_dir():
            return False
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise StorageError(
                f"Failed to delete directory of notebook {notebook_id}",
                operation="delete_directory",
                path=str(directory),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        return True
