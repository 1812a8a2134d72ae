# tablesync/table/enforce.py
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from enum import Enum

from tablesync.config import DEFAULT_PFCTL_PATH
from tablesync.resolve.addresses import serialize

log = logging.getLogger(__name__)


class TableAction(str, Enum):
    REPLACE = "replace"
    ADD = "add"
    FLUSH = "flush"


class PfctlEnforcer:
    """
    Apply a table action with pfctl.

    Addresses go in on stdin (-f -) so large tables do not hit argv limits.
    Failures are reported, never raised: the run carries on with the next
    group.
    """

    def __init__(self, pfctl: str = DEFAULT_PFCTL_PATH) -> None:
        self.pfctl = pfctl

    def command(self, action: TableAction, table: str) -> list[str]:
        cmd = [self.pfctl, "-q", "-t", table, "-T", action.value]
        if action is not TableAction.FLUSH:
            cmd += ["-f", "-"]
        return cmd

    def apply(self, action: TableAction, table: str, addresses: Sequence[str]) -> bool:
        cmd = self.command(action, table)
        stdin = None if action is TableAction.FLUSH else serialize(addresses)
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            log.warning("Cannot run %s: %s", self.pfctl, e)
            return False

        if proc.returncode != 0:
            log.warning(
                "pfctl %s on table %s exited with status %d: %s",
                action.value,
                table,
                proc.returncode,
                (proc.stderr or "").strip() or "(no output)",
            )
            return False

        log.debug("pfctl %s on table %s: %d addresses", action.value, table, len(addresses))
        return True


__all__ = ["TableAction", "PfctlEnforcer"]
