"""LDAP connectivity and paged searches.

This module provides the two directory primitives the resolver needs:
- connect(): bind to the first reachable server out of a candidate list
- PagedSearchClient: run a filtered search and follow the simple paged
  results control until the server stops returning a cookie

Any protocol-level error code aborts the run (DirectoryError). Partial group
membership is worse than no table update, so no partial result is returned.
The one exception is noSuchObject on a base-scoped lookup: a member DN that
no longer exists is a soft miss and yields an empty result.
"""

from __future__ import annotations

import importlib.util
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from ldap3 import ANONYMOUS, BASE, KERBEROS, SASL, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException

from tablesync.config import Settings
from tablesync.exceptions import ConfigError, DirectoryError

log = logging.getLogger(__name__)

# LDAP control OID for simple paged results (RFC 2696)
PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"

RESULT_SUCCESS = 0
RESULT_NO_SUCH_OBJECT = 32


def _server_label(server: str) -> str:
    return server.strip().rstrip("/")


def kerberos_available() -> bool:
    return importlib.util.find_spec("gssapi") is not None


def _open_one(server_uri: str, settings: Settings) -> Connection:
    server = Server(server_uri, connect_timeout=settings.ldap_connect_timeout_sec)
    if settings.ldap_bind_dn:
        conn = Connection(
            server,
            user=settings.ldap_bind_dn,
            password=settings.ldap_bind_password,
            authentication=SIMPLE,
            raise_exceptions=False,
        )
    elif settings.ldap_sasl:
        conn = Connection(
            server,
            authentication=SASL,
            sasl_mechanism=KERBEROS,
            raise_exceptions=False,
        )
    else:
        conn = Connection(server, authentication=ANONYMOUS, raise_exceptions=False)

    conn.open()
    if settings.ldap_starttls and not server.ssl:
        if not conn.start_tls():
            raise DirectoryError(f"StartTLS failed: {conn.result.get('description')}")
    if not conn.bind():
        raise DirectoryError(f"bind failed: {conn.result.get('description')}")
    return conn


def connect(servers: Sequence[str], settings: Settings) -> Connection:
    """Bind to the first server that accepts us.

    Args:
        servers: Candidate LDAP URIs or host names, tried in order
        settings: Run settings (credentials, TLS, timeouts)

    Returns:
        Bound ldap3 Connection

    Raises:
        ConfigError: If SASL is requested but Kerberos support is not installed
        DirectoryError: If no server could be bound
    """
    if not servers:
        raise DirectoryError("no LDAP servers to connect to")
    if settings.ldap_sasl and not settings.ldap_bind_dn and not kerberos_available():
        raise ConfigError("LDAP_SASL needs the gssapi package (install tablesync[kerberos])")

    last_error: str | None = None
    for uri in servers:
        label = _server_label(uri)
        try:
            conn = _open_one(label, settings)
        except (LDAPException, DirectoryError, OSError) as e:
            last_error = f"{label}: {e}"
            log.warning("LDAP connect to %s failed: %s", label, e)
            continue
        log.info("Connected to %s", label)
        return conn

    raise DirectoryError(f"unable to bind to any LDAP server ({last_error})")


def _paged_cookie(result: dict[str, Any]) -> bytes | None:
    controls = result.get("controls") or {}
    paged = controls.get(PAGED_RESULTS_OID) or {}
    value = paged.get("value") or {}
    cookie = value.get("cookie")
    return cookie or None


class PagedSearchClient:
    """Run complete (all pages) searches against a bound connection.

    Args:
        connection: Bound ldap3 Connection (or anything with the same
            search/result/response surface)
        base: Default search base
        page_size: Entries per page requested from the server
    """

    def __init__(self, connection: Any, base: str, page_size: int = 500):
        self.connection = connection
        self.base = base
        self.page_size = page_size
        self.queries = 0
        self.pages = 0

    def search(
        self,
        search_filter: str,
        attributes: Iterable[str],
        *,
        base: str | None = None,
        scope: Any = SUBTREE,
    ) -> dict[str, dict[str, Any]]:
        """Return every matching entry as {dn: attributes}.

        Later pages overwrite earlier entries for the same DN.

        Raises:
            DirectoryError: On any LDAP error code (noSuchObject on a
                base-scoped search excepted) or a transport failure
        """
        search_base = base or self.base
        attrs = list(attributes)
        results: dict[str, dict[str, Any]] = {}
        cookie: bytes | None = None
        self.queries += 1

        while True:
            try:
                self.connection.search(
                    search_base,
                    search_filter,
                    search_scope=scope,
                    attributes=attrs,
                    paged_size=self.page_size,
                    paged_cookie=cookie,
                )
            except LDAPException as e:
                raise DirectoryError(
                    f"LDAP search {search_filter!r} under {search_base!r} failed: {e}"
                ) from e
            self.pages += 1

            result = self.connection.result or {}
            code = int(result.get("result", RESULT_SUCCESS) or 0)
            if code == RESULT_NO_SUCH_OBJECT and scope == BASE:
                log.debug("No such object: %s", search_base)
                return results
            if code != RESULT_SUCCESS:
                raise DirectoryError(
                    f"LDAP search {search_filter!r} under {search_base!r} failed: "
                    f"{result.get('description') or code} {result.get('message') or ''}".rstrip()
                )

            for entry in self.connection.response or []:
                if entry.get("type") != "searchResEntry":
                    continue
                results[str(entry["dn"])] = dict(entry.get("attributes") or {})

            cookie = _paged_cookie(result)
            if not cookie:
                break

        return results

    def lookup(self, identity: str, attributes: Iterable[str]) -> dict[str, Any] | None:
        """Fetch a single entry by DN; None when the directory has no such entry."""
        found = self.search("(objectClass=*)", attributes, base=identity, scope=BASE)
        if identity in found:
            return found[identity]
        # Servers may return the DN in a different case or spacing
        if found:
            return next(iter(found.values()))
        return None


__all__ = [
    "PAGED_RESULTS_OID",
    "PagedSearchClient",
    "connect",
]
