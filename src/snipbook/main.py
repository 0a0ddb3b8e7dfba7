#!/usr/bin/env python
"""Command-line entry point for snipbook."""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from snipbook import __version__
from snipbook.backup import BackupManager
from snipbook.config import config
from snipbook.exceptions import ErrorCode, NotFoundError, SnipbookError
from snipbook.models.schema import Notebook
from snipbook.observability import configure_logging
from snipbook.services.collaborators import CommandEditorLauncher
from snipbook.services.export_service import ExportOptions, export_to_file, load_import_file
from snipbook.services.merge_service import MergePolicy
from snipbook.services.search_service import SearchEngine
from snipbook.services.store import Store
from snipbook.storage.persistence import PersistenceLayer

logger = logging.getLogger(__name__)

POLICY_CHOICES = [p.value for p in MergePolicy]


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="snipbook", description="Notebook-organized snippet manager"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        help="Directory holding the store, content files and backups",
        type=str,
        default=os.environ.get("SNIPBOOK_DATA_DIR"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="Show the notebook tree with snippets")
    p.add_argument("notebook", nargs="?", help="Only this notebook (name or id)")

    sub.add_parser("notebooks", help="List notebooks with their paths")

    p = sub.add_parser("show", help="Print a snippet")
    p.add_argument("snippet", help="Snippet title or id")

    p = sub.add_parser("search", help="Search notebooks and snippets ('#tag' for tags)")
    p.add_argument("query")

    sub.add_parser("favorites", help="List favorite snippets")
    sub.add_parser("tags", help="List tags with usage counts")

    p = sub.add_parser("new-notebook", help="Create a notebook")
    p.add_argument("name")
    p.add_argument("--parent", help="Parent notebook (name or id)")
    p.add_argument("--description")

    p = sub.add_parser("new-snippet", help="Create a snippet")
    p.add_argument("title")
    p.add_argument("--notebook", required=True, help="Notebook name or id")
    p.add_argument("--language", default="text")
    p.add_argument("--file", help="Read content from this file")
    p.add_argument("--description")
    p.add_argument("--tag", action="append", default=[], dest="tags")

    p = sub.add_parser("edit", help="Edit a snippet in $EDITOR")
    p.add_argument("snippet", help="Snippet title or id")

    p = sub.add_parser("tag", help="Tag a snippet")
    p.add_argument("snippet", help="Snippet title or id")
    p.add_argument("tag")

    p = sub.add_parser("export", help="Export notebooks and snippets to a file")
    p.add_argument("path")
    p.add_argument("--notebook", action="append", dest="notebooks", help="Limit to notebook")
    p.add_argument("--no-content", action="store_true", help="Leave snippet content out")
    p.add_argument("--favorites-only", action="store_true")

    p = sub.add_parser("import", help="Merge an export file into the store")
    p.add_argument("path")
    p.add_argument("--policy", choices=POLICY_CHOICES, default="skip_existing")

    p = sub.add_parser("backup", help="Create a backup")
    p.add_argument("--label")

    sub.add_parser("backups", help="List backups")

    p = sub.add_parser("restore", help="Merge a backup into the store")
    p.add_argument("path")
    p.add_argument("--policy", choices=POLICY_CHOICES, default="overwrite_all")
    return parser


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    if args.log_level:
        config.log_level = args.log_level


def _notebook_id(store: Store, name_or_id: str) -> str:
    notebook_id = store.resolve_notebook(name_or_id)
    if notebook_id is None:
        raise NotFoundError(
            "notebook",
            name_or_id,
            code=ErrorCode.NOTEBOOK_NOT_FOUND,
            message=f"No notebook matches '{name_or_id}'",
        )
    return notebook_id


def _snippet_id(store: Store, title_or_id: str) -> str:
    snippet_id = store.resolve_snippet(title_or_id)
    if snippet_id is None:
        raise NotFoundError(
            "snippet", title_or_id, message=f"No snippet matches '{title_or_id}'"
        )
    return snippet_id


def cmd_list(store: Store, args: argparse.Namespace) -> None:
    root_id = _notebook_id(store, args.notebook) if args.notebook else None
    rows = store.flatten(root_id)
    if not rows:
        print("No notebooks yet. Create one with 'snipbook new-notebook NAME'.")
        return
    for entity, depth in rows:
        indent = "  " * depth
        if isinstance(entity, Notebook):
            print(f"{indent}{entity.name}/ ({entity.snippet_count})")
        else:
            star = " *" if entity.is_favorite else ""
            print(f"{indent}- {entity.title} [{entity.language}]{star}")


def cmd_notebooks(store: Store, args: argparse.Namespace) -> None:
    for entity, _ in store.flatten():
        if isinstance(entity, Notebook):
            path = store.notebook_path(entity.id)
            print(f"{entity.id}  {path}  ({entity.snippet_count} snippets)")


def cmd_show(store: Store, args: argparse.Namespace) -> None:
    snippet_id = _snippet_id(store, args.snippet)
    store.mark_accessed(snippet_id)
    snippet = store.get_snippet(snippet_id)
    print(f"{snippet.title} [{snippet.language}]  ({store.notebook_path(snippet.notebook_id)})")
    if snippet.description:
        print(snippet.description)
    if snippet.tags:
        print(" ".join(f"#{name}" for name in snippet.tags))
    print("-" * 60)
    print(snippet.content)


def cmd_search(store: Store, args: argparse.Namespace) -> None:
    engine = SearchEngine(store)
    results = engine.search(args.query)
    if not results:
        print(f"No matches for '{args.query}'")
        return
    for result in results:
        location = engine.parent_path(result.parent_notebook_id)
        suffix = f"  ({location})" if location else ""
        context = f": {result.match_context}" if result.match_context else ""
        print(f"[{result.result_type.name}] {result.display_name}{context}{suffix}")


def cmd_favorites(store: Store, args: argparse.Namespace) -> None:
    favorites = store.favorites()
    if not favorites:
        print("No favorite snippets")
    for snippet in favorites:
        print(f"* {snippet.title} [{snippet.language}]  ({store.notebook_path(snippet.notebook_id)})")


def cmd_tags(store: Store, args: argparse.Namespace) -> None:
    for name, count in store.tag_counts().items():
        print(f"#{name} ({count})")


def cmd_new_notebook(store: Store, args: argparse.Namespace) -> None:
    parent_id = _notebook_id(store, args.parent) if args.parent else None
    notebook_id = store.create_notebook(args.name, parent_id, args.description)
    print(notebook_id)


def cmd_new_snippet(store: Store, args: argparse.Namespace) -> None:
    notebook_id = _notebook_id(store, args.notebook)
    content = ""
    if args.file:
        content = Path(args.file).expanduser().read_text(encoding="utf-8")
    snippet_id = store.create_snippet(
        args.title,
        args.language,
        notebook_id,
        description=args.description,
        content=content,
        tags=args.tags,
    )
    print(snippet_id)


def cmd_edit(store: Store, args: argparse.Namespace) -> None:
    snippet_id = _snippet_id(store, args.snippet)
    changed = store.edit_in_editor(snippet_id, CommandEditorLauncher(config.editor))
    print("Saved changes" if changed else "No changes")


def cmd_tag(store: Store, args: argparse.Namespace) -> None:
    snippet_id = _snippet_id(store, args.snippet)
    store.add_tag(snippet_id, args.tag)
    print(" ".join(f"#{t.name}" for t in store.tags_for_snippet(snippet_id)))


def cmd_export(store: Store, args: argparse.Namespace) -> None:
    notebook_ids = None
    if args.notebooks:
        notebook_ids = [_notebook_id(store, name) for name in args.notebooks]
    options = ExportOptions(
        notebook_ids=notebook_ids,
        include_content=not args.no_content,
        favorites_only=args.favorites_only,
    )
    bundle = export_to_file(store, args.path, options)
    print(
        f"Exported {len(bundle.notebooks)} notebooks and "
        f"{len(bundle.snippets)} snippets to {args.path}"
    )


def cmd_import(store: Store, args: argparse.Namespace) -> None:
    bundle = load_import_file(args.path)
    result = store.merge_bundle(bundle, MergePolicy(args.policy))
    print(result.summary())


def cmd_backup(store: Store, args: argparse.Namespace) -> None:
    path = BackupManager().create_backup(store, label=args.label)
    print(f"Backup created: {path}")


def cmd_backups(store: Store, args: argparse.Namespace) -> None:
    backups = BackupManager().list_backups()
    if not backups:
        print("No backups")
    for info in backups:
        note = "" if info["readable"] else "  (unreadable)"
        print(
            f"{info['name']}  notebooks={info['notebooks']} "
            f"snippets={info['snippets']} roots={info['root_notebooks']}{note}"
        )


def cmd_restore(store: Store, args: argparse.Namespace) -> None:
    result = BackupManager().restore_backup(store, args.path, MergePolicy(args.policy))
    print(result.summary())


COMMANDS = {
    "list": cmd_list,
    "notebooks": cmd_notebooks,
    "show": cmd_show,
    "search": cmd_search,
    "favorites": cmd_favorites,
    "tags": cmd_tags,
    "new-notebook": cmd_new_notebook,
    "new-snippet": cmd_new_snippet,
    "edit": cmd_edit,
    "tag": cmd_tag,
    "export": cmd_export,
    "import": cmd_import,
    "backup": cmd_backup,
    "backups": cmd_backups,
    "restore": cmd_restore,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Run one snipbook command; returns the process exit status."""
    args = build_parser().parse_args(argv)
    update_config(args)

    # Configure logging (persistent file logging with rotation, quiet console)
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    try:
        configure_logging(config.get_log_path(), level=log_level, console=True)
    except OSError as e:
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        store = Store.open(PersistenceLayer())
        COMMANDS[args.command](store, args)
    except SnipbookError as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
