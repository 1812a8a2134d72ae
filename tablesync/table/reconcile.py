"""Table reconciliation.

One pass per group:

    resolve -> build address list -> flush guard -> persist (if a store
    directory is configured) -> enforce

- Flush avoidance: with never_flush on, an empty list is treated as a
  probable lookup failure and nothing is touched (FLUSH_SKIPPED).
- Unchanged: identical file content skips the write, but the table action
  still runs; the live table is not assumed to mirror the file.
- Persist failures are scoped to the group (PERSIST_FAILED). The table
  action is skipped so the live table does not move past a failed commit.
- Append only: "add" for a non-empty list, nothing at all for an empty one.
- Dry run: every decision is made and logged, nothing is written or run.

DirectoryError is not caught here; it aborts the run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from tablesync.config import Settings
from tablesync.directory.groups import GroupResolver
from tablesync.exceptions import NameResolutionError, PersistError
from tablesync.resolve.addresses import build_address_set, serialize
from tablesync.resolve.dns import NameResolver
from tablesync.table.enforce import TableAction
from tablesync.table.persist import read_previous, table_path, write_atomic

log = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    COMMITTED = "committed"
    FLUSH_SKIPPED = "flush_skipped"
    UNCHANGED = "unchanged"
    RESOLUTION_FAILED = "resolution_failed"
    PERSIST_FAILED = "persist_failed"


FAILED_STATUSES = frozenset({SyncStatus.RESOLUTION_FAILED, SyncStatus.PERSIST_FAILED})


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    group: str
    table: str
    status: SyncStatus
    addresses: tuple[str, ...] = ()
    action: TableAction | None = None  # taken, or would be taken in a dry run
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status not in FAILED_STATUSES


class Enforcer(Protocol):
    def apply(self, action: TableAction, table: str, addresses: Sequence[str]) -> bool: ...


def plan_action(addresses: Sequence[str], *, append_only: bool) -> TableAction | None:
    """
    Table action for a resolved list; None means leave the table alone.
    """
    if append_only:
        return TableAction.ADD if addresses else None
    return TableAction.REPLACE if addresses else TableAction.FLUSH


class TableReconciler:
    """Synchronize tables with directory groups.

    Args:
        groups: Group resolver (shared across groups for its caches)
        names: Name resolver (shared across groups for its cache)
        enforcer: Applies table actions (pfctl in production)
        settings: Policies, store directory, families, dry run
    """

    def __init__(
        self,
        groups: GroupResolver,
        names: NameResolver,
        enforcer: Enforcer | None,
        settings: Settings,
    ):
        self.groups = groups
        self.names = names
        self.enforcer = enforcer
        self.settings = settings

    def table_for(self, group: str) -> str:
        return self.settings.table or group

    def resolve_addresses(self, group: str) -> list[str]:
        hosts = self.groups.resolve_group(group)
        addrs = self.names.resolve_hosts(hosts)
        return build_address_set(addrs, ipv4=self.settings.ipv4, ipv6=self.settings.ipv6)

    def synchronize_group(self, group: str) -> SyncOutcome:
        s = self.settings
        table = self.table_for(group)
        prefix = "[dry run] " if s.dry_run else ""

        try:
            addresses = self.resolve_addresses(group)
        except NameResolutionError as e:
            log.warning("%s: resolution failed: %s", group, e)
            return SyncOutcome(group, table, SyncStatus.RESOLUTION_FAILED, reason=str(e))

        log.info("%s: %d addresses", group, len(addresses))
        for a in addresses:
            log.debug("%s: %s", group, a)

        if s.never_flush and not addresses:
            log.info("%s: no addresses, not flushing table %s", group, table)
            return SyncOutcome(group, table, SyncStatus.FLUSH_SKIPPED)

        status = SyncStatus.COMMITTED
        if s.store_dir:
            try:
                path = table_path(s.store_dir, group)
            except PersistError as e:
                log.warning("%s: %s", group, e)
                return SyncOutcome(
                    group, table, SyncStatus.PERSIST_FAILED, tuple(addresses), reason=str(e)
                )

            content = serialize(addresses)
            if read_previous(path) == content:
                log.info("%s: %s unchanged", group, path)
                status = SyncStatus.UNCHANGED
            elif s.dry_run:
                log.info("%swould write %s", prefix, path)
            else:
                try:
                    write_atomic(path, content)
                except PersistError as e:
                    log.warning("%s: %s", group, e)
                    return SyncOutcome(
                        group, table, SyncStatus.PERSIST_FAILED, tuple(addresses), reason=str(e)
                    )
                log.info("%s: wrote %s", group, path)

        action = plan_action(addresses, append_only=s.append_only) if s.enforce else None
        if action is None:
            if s.enforce:
                log.info("%s: append only and no addresses, leaving table %s alone", group, table)
        elif s.dry_run:
            log.info("%swould %s table %s (%d addresses)", prefix, action.value, table, len(addresses))
        elif self.enforcer is not None:
            log.info("%s: %s table %s (%d addresses)", group, action.value, table, len(addresses))
            self.enforcer.apply(action, table, addresses)

        return SyncOutcome(group, table, status, tuple(addresses), action)


__all__ = [
    "SyncStatus",
    "SyncOutcome",
    "Enforcer",
    "TableReconciler",
    "plan_action",
]
