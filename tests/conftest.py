# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import RecordingEnforcer  # noqa: E402

from tablesync.config import Settings  # noqa: E402

_ENV_VARS = (
    "LDAP_SERVERS",
    "LDAP_DOMAIN",
    "LDAP_BASE",
    "LDAP_BIND_DN",
    "LDAP_BIND_PASSWORD",
    "LDAP_SASL",
    "LDAP_STARTTLS",
    "LDAP_CONNECT_TIMEOUT_SEC",
    "LDAP_PAGE_SIZE",
    "LDAP_GROUP_FILTER",
    "LDAP_GROUP_CLASSES",
    "LDAP_MEMBER_ATTRIBUTE",
    "LDAP_HOST_ATTRIBUTES",
    "DNS_TIMEOUT_SEC",
    "TABLE_IPV4",
    "TABLE_IPV6",
    "TABLE_STORE_DIR",
    "TABLE_NEVER_FLUSH",
    "TABLE_APPEND_ONLY",
    "TABLE_ENFORCE",
    "PFCTL_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Autouse: tests never see the developer's LDAP/table settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings() -> Settings:
    # Small pages so the fakes exercise paging
    return Settings(ldap_page_size=2)


@pytest.fixture()
def enforcer() -> RecordingEnforcer:
    return RecordingEnforcer()
