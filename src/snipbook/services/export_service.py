"""Build, write and parse export bundles."""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from snipbook import __version__
from snipbook.exceptions import ErrorCode, SerializationError, StorageError
from snipbook.models.schema import ExportDocument
from snipbook.observability import timed_operation
from snipbook.services.collaborators import Clipboard

if TYPE_CHECKING:
    from snipbook.services.store import Store

logger = logging.getLogger(__name__)


@dataclass
class ExportOptions:
    """Filters applied when building a bundle.

    notebook_ids restricts both notebooks and snippets to the listed
    notebooks (subtrees are not followed). Without content, snippets are
    exported with an empty body and the bundle says so.
    """

    notebook_ids: Optional[List[str]] = None
    include_content: bool = True
    favorites_only: bool = False


def build_export(store: "Store", options: Optional[ExportOptions] = None) -> ExportDocument:
    """Snapshot the store into a versioned bundle."""
    options = options or ExportOptions()
    wanted = set(options.notebook_ids) if options.notebook_ids is not None else None

    notebooks = {
        notebook_id: notebook.model_copy(deep=True)
        for notebook_id, notebook in store.tree.notebooks.items()
        if wanted is None or notebook_id in wanted
    }
    root_notebooks = [
        notebook_id
        for notebook_id in store.tree.root_notebooks
        if wanted is None or notebook_id in wanted
    ]

    snippets = {}
    for snippet in store.snippets:
        if wanted is not None and snippet.notebook_id not in wanted:
            continue
        if options.favorites_only and not snippet.is_favorite:
            continue
        copy = snippet.model_copy(deep=True)
        if not options.include_content:
            copy.content = ""
        snippets[copy.id] = copy

    return ExportDocument(
        version=__version__,
        notebooks=notebooks,
        snippets=snippets,
        root_notebooks=root_notebooks,
        tags=store.tags.export_map(snippets.keys()),
        include_content=options.include_content,
    )


def export_to_text(bundle: ExportDocument) -> str:
    return json.dumps(bundle.model_dump(mode="json"), indent=2, ensure_ascii=False)


def export_to_file(
    store: "Store", path: Union[str, Path], options: Optional[ExportOptions] = None
) -> ExportDocument:
    """Write a bundle to path (atomically) and return it.

    Raises:
        StorageError: If the file cannot be written.
    """
    path = Path(path).expanduser()
    with timed_operation("export", path=path.name) as op:
        bundle = build_export(store, options)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(export_to_text(bundle))
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise StorageError(
                "Failed to write export file",
                operation="export",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        op["notebooks"] = len(bundle.notebooks)
        op["snippets"] = len(bundle.snippets)
    logger.info(
        f"Exported {len(bundle.notebooks)} notebooks and "
        f"{len(bundle.snippets)} snippets to {path}"
    )
    return bundle


def parse_import_text(text: str, source: str = "text") -> ExportDocument:
    """Parse a bundle from JSON, falling back to YAML.

    Raises:
        SerializationError: If the text is neither, or does not describe a bundle.
    """
    if not text or not text.strip():
        raise SerializationError(
            "Import data is empty", source=source, code=ErrorCode.IMPORT_MALFORMED
        )

    try:
        raw = json.loads(text)
    except ValueError as json_error:
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SerializationError(
                "Import data is neither JSON nor YAML",
                source=source,
                code=ErrorCode.IMPORT_MALFORMED,
                original_error=json_error,
            ) from e

    if not isinstance(raw, dict):
        raise SerializationError(
            "Import data is not an export bundle",
            source=source,
            code=ErrorCode.IMPORT_MALFORMED,
        )

    try:
        return ExportDocument.model_validate(raw)
    except PydanticValidationError as e:
        raise SerializationError(
            "Import data does not match the export format",
            source=source,
            code=ErrorCode.IMPORT_MALFORMED,
            original_error=e,
        ) from e


def load_import_file(path: Union[str, Path]) -> ExportDocument:
    """Read and parse a bundle from a file.

    Raises:
        StorageError: If the file cannot be read.
        SerializationError: If its content is not a bundle.
    """
    path = Path(path).expanduser()
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise StorageError(
            "Failed to read import file",
            operation="import",
            path=str(path),
            code=ErrorCode.STORAGE_READ_FAILED,
            original_error=e,
        ) from e
    return parse_import_text(text, source=path.name)


def export_to_clipboard(
    store: "Store", clipboard: Clipboard, options: Optional[ExportOptions] = None
) -> ExportDocument:
    bundle = build_export(store, options)
    clipboard.write_text(export_to_text(bundle))
    logger.info(f"Copied {len(bundle.snippets)} snippets to the clipboard")
    return bundle


def import_from_clipboard(clipboard: Clipboard) -> Optional[ExportDocument]:
    """Parse a bundle from the clipboard; None when the clipboard is empty."""
    text = clipboard.read_text()
    if not text.strip():
        return None
    return parse_import_text(text, source="clipboard")
