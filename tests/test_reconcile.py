# tests/test_reconcile.py
from __future__ import annotations

import logging
from dataclasses import replace

import pytest
from fakes import FakeDnsTransport, FakeLdapConnection, group, host

import tablesync.table.reconcile as reconcile
from tablesync.directory import DirectoryObjectCache, GroupResolver, PagedSearchClient
from tablesync.exceptions import PersistError
from tablesync.resolve import NameResolver
from tablesync.table import SyncStatus, TableAction, TableReconciler, plan_action

BASE_DN = "dc=example,dc=org"

ENTRIES = {
    f"cn=web,ou=groups,{BASE_DN}": group(
        "web", f"cn=web1,ou=hosts,{BASE_DN}", f"cn=app,ou=groups,{BASE_DN}"
    ),
    f"cn=app,ou=groups,{BASE_DN}": group("app", hosts=("app1.example.org",)),
    f"cn=db,ou=groups,{BASE_DN}": group("db", hosts=("db1.example.org",)),
    f"cn=empty,ou=groups,{BASE_DN}": group("empty"),
    f"cn=web1,ou=hosts,{BASE_DN}": host("web1.example.org"),
}

ZONE = {
    "web1.example.org": {"A": ["192.0.2.11"], "AAAA": ["2001:db8::11"]},
    "app1.example.org": {"CNAME": ["web1.example.org"], "A": ["192.0.2.5"]},
    "db1.example.org": {"A": ["198.51.100.20"]},
}


def _reconciler(settings, enforcer, *, fail=None, entries=None):
    conn = FakeLdapConnection(ENTRIES if entries is None else entries)
    groups = GroupResolver(
        PagedSearchClient(conn, BASE_DN, settings.ldap_page_size),
        DirectoryObjectCache(),
        settings,
    )
    names = NameResolver(
        FakeDnsTransport(ZONE, fail=fail), ipv4=settings.ipv4, ipv6=settings.ipv6
    )
    return TableReconciler(groups, names, enforcer, settings)


def test_plan_action():
    assert plan_action(["192.0.2.1"], append_only=False) is TableAction.REPLACE
    assert plan_action([], append_only=False) is TableAction.FLUSH
    assert plan_action(["192.0.2.1"], append_only=True) is TableAction.ADD
    assert plan_action([], append_only=True) is None


def test_nested_group_is_resolved_and_replaced(settings, enforcer):
    out = _reconciler(settings, enforcer).synchronize_group("web")

    assert out.ok
    assert out.status is SyncStatus.COMMITTED
    assert out.table == "web"
    assert out.action is TableAction.REPLACE
    assert out.addresses == ("192.0.2.11", "192.0.2.5", "2001:db8::11")
    assert enforcer.calls == [("replace", "web", out.addresses)]


def test_file_format_and_unchanged_second_run(settings, enforcer, tmp_path):
    s = replace(settings, store_dir=str(tmp_path))

    first = _reconciler(s, enforcer).synchronize_group("db")
    second = _reconciler(s, enforcer).synchronize_group("db")

    assert first.status is SyncStatus.COMMITTED
    assert (tmp_path / "db").read_text(encoding="utf-8") == "198.51.100.20\n"
    assert second.status is SyncStatus.UNCHANGED
    assert second.ok
    # The live table is still enforced when the file did not change
    assert [c[0] for c in enforcer.calls] == ["replace", "replace"]


def test_never_flush_leaves_everything_alone(settings, enforcer, tmp_path):
    s = replace(settings, store_dir=str(tmp_path), never_flush=True)

    out = _reconciler(s, enforcer).synchronize_group("empty")

    assert out.status is SyncStatus.FLUSH_SKIPPED
    assert out.ok
    assert list(tmp_path.iterdir()) == []
    assert enforcer.calls == []


def test_empty_result_flushes_by_default(settings, enforcer, tmp_path):
    s = replace(settings, store_dir=str(tmp_path))

    out = _reconciler(s, enforcer).synchronize_group("empty")

    assert out.status is SyncStatus.COMMITTED
    assert out.action is TableAction.FLUSH
    assert (tmp_path / "empty").read_text(encoding="utf-8") == ""
    assert enforcer.calls == [("flush", "empty", ())]


def test_unknown_group_behaves_like_empty(settings, enforcer, caplog):
    s = replace(settings, never_flush=True)

    with caplog.at_level(logging.WARNING):
        out = _reconciler(s, enforcer).synchronize_group("nope")

    assert out.status is SyncStatus.FLUSH_SKIPPED
    assert "Group not found: nope" in caplog.text


def test_append_only(settings, enforcer):
    s = replace(settings, append_only=True)
    rec = _reconciler(s, enforcer)

    added = rec.synchronize_group("db")
    empty = rec.synchronize_group("empty")

    assert added.action is TableAction.ADD
    assert empty.action is None
    assert empty.ok
    assert enforcer.calls == [("add", "db", ("198.51.100.20",))]


def test_family_restriction(settings, enforcer):
    s = replace(settings, ipv6=False)

    out = _reconciler(s, enforcer).synchronize_group("web")

    assert out.addresses == ("192.0.2.11", "192.0.2.5")


def test_dry_run_writes_and_runs_nothing(settings, enforcer, tmp_path, caplog):
    s = replace(settings, store_dir=str(tmp_path), dry_run=True)

    with caplog.at_level(logging.INFO):
        out = _reconciler(s, enforcer).synchronize_group("db")

    assert out.action is TableAction.REPLACE
    assert list(tmp_path.iterdir()) == []
    assert enforcer.calls == []
    assert "[dry run] would write" in caplog.text
    assert "[dry run] would replace table db" in caplog.text


def test_persist_failure_is_scoped_to_the_group(settings, enforcer, tmp_path, monkeypatch):
    s = replace(settings, store_dir=str(tmp_path))
    real_write = reconcile.write_atomic

    def flaky_write(path, content):
        if path.name == "web":
            raise PersistError(f"failed to write {path}: disk full")
        real_write(path, content)

    monkeypatch.setattr(reconcile, "write_atomic", flaky_write)
    rec = _reconciler(s, enforcer)

    web = rec.synchronize_group("web")
    db = rec.synchronize_group("db")

    assert web.status is SyncStatus.PERSIST_FAILED
    assert not web.ok
    assert "disk full" in web.reason
    assert db.status is SyncStatus.COMMITTED
    assert (tmp_path / "db").exists()
    # No table action for the group whose file could not be committed
    assert [c[1] for c in enforcer.calls] == ["db"]


def test_resolution_failure(settings, enforcer):
    rec = _reconciler(settings, enforcer, fail={"web1.example.org"})

    web = rec.synchronize_group("web")
    db = rec.synchronize_group("db")

    assert web.status is SyncStatus.RESOLUTION_FAILED
    assert not web.ok
    assert db.ok
    assert [c[1] for c in enforcer.calls] == ["db"]


def test_table_override(settings, enforcer, tmp_path):
    s = replace(settings, store_dir=str(tmp_path), table="allowed")

    out = _reconciler(s, enforcer).synchronize_group("db")

    assert out.table == "allowed"
    # The file is still named after the group
    assert (tmp_path / "db").exists()
    assert enforcer.calls == [("replace", "allowed", ("198.51.100.20",))]


@pytest.mark.parametrize("enforcer_obj", [None, "recording"])
def test_enforcement_disabled(settings, enforcer, enforcer_obj):
    s = replace(settings, enforce=False)
    rec = _reconciler(s, enforcer if enforcer_obj else None)

    out = rec.synchronize_group("db")

    assert out.ok
    assert out.action is None
    assert enforcer.calls == []
