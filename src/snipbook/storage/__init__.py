"""Storage layer for snipbook."""
from snipbook.storage.notebook_tree import NotebookTree
from snipbook.storage.persistence import PersistenceLayer, StoreDocument
from snipbook.storage.snippet_store import SnippetStore
from snipbook.storage.tag_index import TagIndex

__all__ = [
    "NotebookTree",
    "PersistenceLayer",
    "SnippetStore",
    "StoreDocument",
    "TagIndex",
]
