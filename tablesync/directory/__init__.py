# tablesync/directory/__init__.py
from __future__ import annotations

from .cache import DirectoryObject, DirectoryObjectCache, build_object
from .client import PagedSearchClient, connect
from .groups import GroupResolver

"""
Directory package

  - `client`: bind to the first reachable LDAP server; paged searches.
  - `cache`: per-run DirectoryObject cache.
  - `groups`: cycle-safe recursive group expansion into host names.
"""

__all__ = [
    "DirectoryObject",
    "DirectoryObjectCache",
    "build_object",
    "PagedSearchClient",
    "connect",
    "GroupResolver",
]
