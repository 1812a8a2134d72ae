# tablesync/resolve/dns.py
from __future__ import annotations

import ipaddress
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import dns.exception
import dns.rdatatype
import dns.resolver

from tablesync.exceptions import NameResolutionError

log = logging.getLogger(__name__)

DEFAULT_DNS_TIMEOUT = 5.0

KIND_ALIAS = "CNAME"
KIND_IPV4 = "A"
KIND_IPV6 = "AAAA"
KIND_SRV = "SRV"

LDAP_PORT = 389
LDAPS_PORT = 636
GC_LDAPS_PORT = 3269


@dataclass(frozen=True, slots=True)
class DnsRecord:
    kind: str  # rdatatype text, e.g. "A", "CNAME", "SRV"
    value: str  # address literal or target name (no trailing dot)
    priority: int = 0  # SRV only
    weight: int = 0  # SRV only
    port: int = 0  # SRV only


def is_ip_literal(name: str) -> bool:
    try:
        ipaddress.ip_address(name.strip())
        return True
    except ValueError:
        return False


def is_single_label(name: str) -> bool:
    return "." not in name.strip().rstrip(".")


def server_address(target: str, port: int) -> str:
    """
    dc1.example.org, 389 -> dc1.example.org
    dc1.example.org, 636 -> ldaps://dc1.example.org:636
    gc1.example.org, 3268 -> ldap://gc1.example.org:3268
    """
    if port in (0, LDAP_PORT):
        return target
    scheme = "ldaps" if port in (LDAPS_PORT, GC_LDAPS_PORT) else "ldap"
    return f"{scheme}://{target}:{port}"


def _norm_name(name: str) -> str:
    return str(name).strip().rstrip(".").lower()


def _to_record(rdata) -> DnsRecord | None:
    kind = dns.rdatatype.to_text(rdata.rdtype)
    if kind in (KIND_IPV4, KIND_IPV6):
        return DnsRecord(kind=kind, value=str(rdata.address))
    if kind == KIND_ALIAS:
        return DnsRecord(kind=kind, value=_norm_name(rdata.target.to_text(omit_final_dot=True)))
    if kind == KIND_SRV:
        target = rdata.target.to_text()
        return DnsRecord(
            kind=kind,
            value="." if target == "." else _norm_name(rdata.target.to_text(omit_final_dot=True)),
            priority=int(rdata.priority),
            weight=int(rdata.weight),
            port=int(rdata.port),
        )
    return DnsRecord(kind=kind, value=rdata.to_text())


# -----------------------------
# DNS transport (patch point)
# -----------------------------


class DnsTransport:
    """
    Thin wrapper around dns.resolver.Resolver.

    lookup() returns every record in the answer section (so an A query for an
    alias yields the CNAME and the final A records). A name that does not
    exist or has no records of the kind yields []. Timeouts and unreachable
    nameservers raise NameResolutionError.

    Single-label names (e.g. "web1") are qualified with the resolver's
    search list or default domain; names with a dot are queried as given.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        resolver: dns.resolver.Resolver | None = None,
    ) -> None:
        self.resolver = resolver or dns.resolver.Resolver(configure=True)
        self.resolver.lifetime = timeout
        self.resolver.timeout = timeout
        self.queries = 0

    def lookup(self, name: str, kind: str) -> list[DnsRecord]:
        self.queries += 1
        try:
            answer = self.resolver.resolve(
                name, kind, raise_on_no_answer=False, search=is_single_label(name)
            )
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as e:
            raise NameResolutionError(
                f"{kind} lookup for {name} failed: {type(e).__name__}: {e}"
            ) from e

        out: list[DnsRecord] = []
        for rrset in answer.response.answer:
            for rdata in rrset:
                rec = _to_record(rdata)
                if rec is not None:
                    out.append(rec)
        return out


# -----------------------------
# Name resolution with per-name cache
# -----------------------------


class NameResolver:
    """
    Resolve host names to address literals, following alias chains.

    The cache is per instance (one instance per run) and guarded by a lock.
    """

    def __init__(self, transport: DnsTransport, *, ipv4: bool = True, ipv6: bool = True):
        self.transport = transport
        self.ipv4 = ipv4
        self.ipv6 = ipv6
        self._cache: dict[str, frozenset[str]] = {}
        self._lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    @property
    def record_kinds(self) -> tuple[str, ...]:
        kinds = [KIND_ALIAS]
        if self.ipv4:
            kinds.append(KIND_IPV4)
        if self.ipv6:
            kinds.append(KIND_IPV6)
        return tuple(kinds)

    def cached(self, name: str) -> frozenset[str] | None:
        with self._lock:
            return self._cache.get(_norm_name(name))

    def resolve_host(self, name: str) -> frozenset[str]:
        """
        Return the addresses of `name`.

        Literal IPv4/IPv6 addresses are returned unchanged without a lookup.
        Raises NameResolutionError on transport failures.
        """
        if is_ip_literal(name):
            return frozenset({name.strip()})
        return frozenset(self._resolve(_norm_name(name)))

    def resolve_hosts(self, names: Iterable[str]) -> frozenset[str]:
        out: set[str] = set()
        for name in sorted(set(names)):
            out |= self.resolve_host(name)
        return frozenset(out)

    def _cache_lookup(self, name: str) -> frozenset[str] | None:
        with self._lock:
            hit = self._cache.get(name)
            if hit is not None:
                self.cache_hits += 1
            else:
                self.cache_misses += 1
            return hit

    def _open(self, name: str) -> tuple[str, Iterator[str], set[str]]:
        addrs: set[str] = set()
        targets: list[str] = []
        for kind in self.record_kinds:
            for rec in self.transport.lookup(name, kind):
                if rec.kind == KIND_ALIAS:
                    targets.append(rec.value)
                elif rec.kind in (KIND_IPV4, KIND_IPV6):
                    addrs.add(rec.value)
        return name, iter(targets), addrs

    def _resolve(self, name: str) -> set[str]:
        if is_ip_literal(name):
            return {name}
        hit = self._cache_lookup(name)
        if hit is not None:
            return set(hit)
        if not name:
            return set()

        # Alias chains are walked with an explicit stack; names on it are
        # skipped when reached again so a loop terminates.
        active = {name}
        frames = [self._open(name)]
        while True:
            current, targets, addrs = frames[-1]
            target = next(targets, None)
            if target is not None:
                if is_ip_literal(target):
                    addrs.add(target)
                    continue
                hit = self._cache_lookup(target)
                if hit is not None:
                    addrs |= hit
                elif target in active:
                    log.debug("Alias loop through %s", target)
                elif target:
                    active.add(target)
                    frames.append(self._open(target))
                continue

            frames.pop()
            active.discard(current)
            if not addrs:
                log.debug("No addresses for %s", current)
            with self._lock:
                self._cache[current] = frozenset(addrs)
            if not frames:
                return addrs
            frames[-1][2].update(addrs)

    def discover_servers(self, domain: str, service: str = "ldap", transport: str = "tcp") -> list[str]:
        """
        Return SRV targets for _service._transport.domain.

        Ordered by priority (lowest first) then weight (highest first),
        de-duplicated. Targets on a port other than the standard one for the
        service come back as an ldap:// or ldaps:// URI carrying the port.
        Empty when the record does not exist.
        """
        qname = f"_{service}._{transport}.{_norm_name(domain)}"
        records = [r for r in self.transport.lookup(qname, KIND_SRV) if r.kind == KIND_SRV]
        records.sort(key=lambda r: (r.priority, -r.weight))
        servers: list[str] = []
        for r in records:
            # "." means the service is decidedly not available (RFC 2782)
            if r.value in (".", ""):
                continue
            server = server_address(r.value, r.port)
            if server not in servers:
                servers.append(server)
        log.debug("SRV %s: %s", qname, ", ".join(servers) or "(none)")
        return servers

    def get_cache_stats(self) -> dict[str, int]:
        return {
            "dns_queries": getattr(self.transport, "queries", 0),
            "dns_cache_size": len(self._cache),
            "dns_cache_hits": self.cache_hits,
            "dns_cache_misses": self.cache_misses,
        }


__all__ = [
    "DnsRecord",
    "DnsTransport",
    "NameResolver",
    "is_ip_literal",
    "is_single_label",
    "server_address",
]
