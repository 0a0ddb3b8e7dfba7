"""Services operating on the snippet store."""
from snipbook.services.merge_service import MergeEngine, MergePolicy, MergeResult
from snipbook.services.search_service import SearchEngine, SearchResult, SearchResultType
from snipbook.services.store import Store

__all__ = [
    "MergeEngine",
    "MergePolicy",
    "MergeResult",
    "SearchEngine",
    "SearchResult",
    "SearchResultType",
    "Store",
]
