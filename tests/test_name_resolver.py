# tests/test_name_resolver.py
from __future__ import annotations

import types

import dns.exception
import dns.resolver
import dns.rrset
import pytest
from fakes import FakeDnsTransport

from tablesync.exceptions import NameResolutionError
from tablesync.resolve.dns import DnsTransport, NameResolver

# ---------------------------------------------------------------------------
# NameResolver
# ---------------------------------------------------------------------------


def test_literal_address_short_circuits():
    transport = FakeDnsTransport()
    names = NameResolver(transport)

    assert names.resolve_host("198.51.100.7") == {"198.51.100.7"}
    assert names.resolve_host("2001:db8::7") == {"2001:db8::7"}
    assert transport.calls == []
    assert names.cached("198.51.100.7") is None


def test_alias_chains_are_flattened():
    zone = {
        "www.example.org": {"CNAME": ["lb.example.org"]},
        "lb.example.org": {"CNAME": ["lb1.example.net"]},
        "lb1.example.net": {"A": ["192.0.2.10"]},
        "api.example.org": {"CNAME": ["lb1.example.net"]},
    }
    transport = FakeDnsTransport(zone)
    names = NameResolver(transport, ipv6=False)

    assert names.resolve_host("www.example.org") == {"192.0.2.10"}
    # A second chain converging on the same target: same address, no duplicate
    assert names.resolve_hosts(["www.example.org", "api.example.org"]) == {"192.0.2.10"}
    # The shared target was only looked up once per record kind
    assert transport.calls_for("lb1.example.net") == ["CNAME", "A"]


def test_both_families_and_mixed_answers():
    zone = {
        "web1.example.org": {"A": ["192.0.2.1"], "AAAA": ["2001:db8::1"], "MX": ["ignored"]},
    }
    names = NameResolver(FakeDnsTransport(zone))

    assert names.resolve_host("web1.example.org") == {"192.0.2.1", "2001:db8::1"}


def test_disabled_family_is_not_queried():
    zone = {"web1.example.org": {"A": ["192.0.2.1"], "AAAA": ["2001:db8::1"]}}
    transport = FakeDnsTransport(zone)
    names = NameResolver(transport, ipv4=False)

    assert names.resolve_host("web1.example.org") == {"2001:db8::1"}
    assert "A" not in transport.calls_for("web1.example.org")


def test_no_records_is_empty_and_cached():
    transport = FakeDnsTransport()
    names = NameResolver(transport)

    assert names.resolve_host("ghost.example.org") == frozenset()
    calls = len(transport.calls)
    assert names.resolve_host("GHOST.example.org.") == frozenset()
    assert len(transport.calls) == calls
    assert names.get_cache_stats()["dns_cache_hits"] == 1


def test_alias_loop_terminates():
    zone = {
        "a.example.org": {"CNAME": ["b.example.org"]},
        "b.example.org": {"CNAME": ["a.example.org"]},
    }
    names = NameResolver(FakeDnsTransport(zone))

    assert names.resolve_host("a.example.org") == frozenset()


def test_transport_failure_propagates():
    names = NameResolver(FakeDnsTransport(fail={"slow.example.org"}))

    with pytest.raises(NameResolutionError):
        names.resolve_host("slow.example.org")


def test_long_alias_chain_does_not_exhaust_the_stack():
    depth = 2000
    zone = {f"c{i}.example.org": {"CNAME": [f"c{i + 1}.example.org"]} for i in range(depth)}
    zone[f"c{depth}.example.org"] = {"A": ["192.0.2.99"]}
    names = NameResolver(FakeDnsTransport(zone), ipv6=False)

    assert names.resolve_host("c0.example.org") == {"192.0.2.99"}
    # Every link of the chain was cached with the final address
    assert names.cached("c1000.example.org") == {"192.0.2.99"}


# ---------------------------------------------------------------------------
# SRV discovery
# ---------------------------------------------------------------------------


def test_discover_servers_orders_and_dedupes():
    zone = {
        "_ldap._tcp.example.org": {
            "SRV": [
                (10, 0, "dc3.example.org"),
                (0, 10, "dc2.example.org"),
                (0, 50, "dc1.example.org"),
                (10, 0, "dc2.example.org"),
            ]
        }
    }
    transport = FakeDnsTransport(zone)
    names = NameResolver(transport)

    assert names.discover_servers("Example.ORG.") == [
        "dc1.example.org",
        "dc2.example.org",
        "dc3.example.org",
    ]
    assert transport.calls == [("_ldap._tcp.example.org", "SRV")]


def test_discover_servers_keeps_nonstandard_ports():
    zone = {
        "_ldap._tcp.example.org": {
            "SRV": [
                (0, 0, "dc1.example.org", 389),
                (5, 0, "gc1.example.org", 3268),
                (10, 0, "dc2.example.org", 636),
            ]
        }
    }
    names = NameResolver(FakeDnsTransport(zone))

    assert names.discover_servers("example.org") == [
        "dc1.example.org",
        "ldap://gc1.example.org:3268",
        "ldaps://dc2.example.org:636",
    ]


def test_discover_servers_none():
    names = NameResolver(FakeDnsTransport({"_ldap._tcp.example.org": {"SRV": [(0, 0, ".")]}}))

    assert names.discover_servers("example.org") == []
    assert names.discover_servers("other.example") == []


# ---------------------------------------------------------------------------
# DnsTransport (dnspython wrapper)
# ---------------------------------------------------------------------------


class _FakeDnsPythonResolver:
    def __init__(self, outcome):
        self.outcome = outcome
        self.lifetime = None
        self.timeout = None
        self.calls = []

    def resolve(self, name, kind, raise_on_no_answer=True, search=None):
        self.calls.append((name, kind, raise_on_no_answer, search))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return types.SimpleNamespace(response=types.SimpleNamespace(answer=self.outcome))


def test_transport_parses_answer_section():
    rrsets = [
        dns.rrset.from_text("www.example.org.", 300, "IN", "CNAME", "web1.example.org."),
        dns.rrset.from_text("web1.example.org.", 300, "IN", "A", "192.0.2.1", "192.0.2.2"),
    ]
    fake = _FakeDnsPythonResolver(rrsets)
    transport = DnsTransport(timeout=1.5, resolver=fake)

    records = transport.lookup("www.example.org", "A")

    assert fake.lifetime == 1.5
    assert fake.calls == [("www.example.org", "A", False, False)]
    assert [(r.kind, r.value) for r in records] == [
        ("CNAME", "web1.example.org"),
        ("A", "192.0.2.1"),
        ("A", "192.0.2.2"),
    ]


def test_transport_parses_srv():
    rrsets = [
        dns.rrset.from_text(
            "_ldap._tcp.example.org.", 300, "IN", "SRV", "0 100 389 dc1.example.org."
        )
    ]
    transport = DnsTransport(resolver=_FakeDnsPythonResolver(rrsets))

    (rec,) = transport.lookup("_ldap._tcp.example.org", "SRV")

    assert (rec.kind, rec.value, rec.priority, rec.weight, rec.port) == (
        "SRV",
        "dc1.example.org",
        0,
        100,
        389,
    )


def test_transport_nxdomain_is_empty():
    transport = DnsTransport(resolver=_FakeDnsPythonResolver(dns.resolver.NXDOMAIN()))

    assert transport.lookup("ghost.example.org", "A") == []


def test_transport_timeout_raises():
    transport = DnsTransport(resolver=_FakeDnsPythonResolver(dns.exception.Timeout()))

    with pytest.raises(NameResolutionError, match="Timeout"):
        transport.lookup("slow.example.org", "A")


def test_transport_qualifies_single_label_names():
    fake = _FakeDnsPythonResolver([])
    transport = DnsTransport(resolver=fake)

    transport.lookup("web1", "A")
    transport.lookup("web1.example.org", "A")

    assert [(name, search) for name, _kind, _raise, search in fake.calls] == [
        ("web1", True),
        ("web1.example.org", False),
    ]
