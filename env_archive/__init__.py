"""
env-archive — Archive and restore .env files

Keeps every archived copy of an environment file in one SQLite
database, tagged with the file's original path and the time it was
archived, and writes any copy back to disk on request.
"""

__version__ = "0.1.0"

__all__ = [
    # Store
    "ArchiveStore",
    "ArchiveRecord",
    "ArchiveSummary",
    # Engine
    "archive_file",
    "crawl",
    "CrawlResult",
    "search",
    "list_archives",
    "list_all",
    "show",
    "recover",
    "RecoveryResult",
    # Errors
    "ArchiveError",
    "AlreadyInitialized",
    "NotInitialized",
    "NotFound",
    "TagCollision",
    "DestinationExists",
    "IoFailure",
    "StorageCorrupt",
    "ValidationError",
]

_LOCATIONS = {
    "ArchiveStore": "store",
    "ArchiveRecord": "store",
    "ArchiveSummary": "store",
    "archive_file": "tagging",
    "crawl": "crawler",
    "CrawlResult": "crawler",
    "search": "query",
    "list_archives": "query",
    "list_all": "query",
    "show": "query",
    "recover": "recovery",
    "RecoveryResult": "recovery",
}


# Lazy imports — only resolve when accessed
def __getattr__(name):
    if name in _LOCATIONS:
        from importlib import import_module

        module = import_module(f".{_LOCATIONS[name]}", __name__)
        return getattr(module, name)
    if name in __all__:
        from . import errors

        return getattr(errors, name)
    raise AttributeError(f"module 'env_archive' has no attribute {name!r}")
