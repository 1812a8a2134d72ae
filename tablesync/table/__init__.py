# tablesync/table/__init__.py
from __future__ import annotations

from .enforce import PfctlEnforcer, TableAction
from .persist import read_previous, table_path, write_atomic
from .reconcile import SyncOutcome, SyncStatus, TableReconciler, plan_action

"""
Table package

  - `reconcile`: per-group state machine (flush guard, unchanged check,
    persist, enforce, dry run).
  - `persist`: crash-safe table files (pid-qualified temp + rename).
  - `enforce`: pfctl replace/add/flush.
"""

__all__ = [
    "PfctlEnforcer",
    "TableAction",
    "read_previous",
    "table_path",
    "write_atomic",
    "SyncOutcome",
    "SyncStatus",
    "TableReconciler",
    "plan_action",
]
