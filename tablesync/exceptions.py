# tablesync/exceptions.py
"""
Shared exception classes used across the codebase.

Fatal errors (ConfigError, DirectoryError) abort the whole run. Per-group
errors (NameResolutionError, PersistError) are caught by the reconciler and
turned into an outcome for that group only.
"""

from __future__ import annotations


class TableSyncError(Exception):
    """Base class for every error raised by tablesync."""

    pass


class ConfigError(TableSyncError):
    """
    Raised when required configuration cannot be derived.

    Examples:
        - No LDAP servers configured and SRV discovery returned nothing
        - No DNS domain configured and none derivable from the host name
    """

    pass


class DirectoryError(TableSyncError):
    """
    Raised when the directory cannot be used at all.

    Examples:
        - Bind failed on every candidate server
        - A search returned a protocol-level error code
    """

    pass


class NameResolutionError(TableSyncError):
    """
    Raised when a DNS lookup fails at the transport level.

    Missing records (NXDOMAIN, empty answers) are not errors; timeouts and
    unreachable nameservers are.
    """

    pass


class PersistError(TableSyncError):
    """Raised when a table file cannot be written or renamed into place."""

    pass


__all__ = [
    "TableSyncError",
    "ConfigError",
    "DirectoryError",
    "NameResolutionError",
    "PersistError",
]
