"""
snipbook - a notebook-organized snippet manager.
This package keeps reusable text snippets in a hierarchy of notebooks, with
tagging, cross-entity search, and a backup/export/import pipeline that
reconciles two independently-evolved stores.

All operations are synchronous and assume a single mutating caller.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("snipbook")
except PackageNotFoundError:
    __version__ = "0.3.0"
