# tablesync/resolve/addresses.py
from __future__ import annotations

import ipaddress
from collections.abc import Iterable


def build_address_set(
    addresses: Iterable[str],
    *,
    ipv4: bool = True,
    ipv6: bool = True,
) -> list[str]:
    """
    Deduplicate and order addresses for one table.

    IPv4 first, then IPv6, each sorted as strings so the persisted file and
    the diff stay stable across runs. Entries that are not addresses and
    families that are disabled are dropped. Addresses are canonicalized
    (e.g. 2001:DB8::1 -> 2001:db8::1) before de-duplication.
    """
    v4: set[str] = set()
    v6: set[str] = set()
    for raw in addresses:
        try:
            ip = ipaddress.ip_address(str(raw).strip())
        except ValueError:
            continue
        if ip.version == 4:
            if ipv4:
                v4.add(str(ip))
        elif ipv6:
            v6.add(str(ip))
    return sorted(v4) + sorted(v6)


def serialize(addresses: Iterable[str]) -> str:
    """
    One address per line with a trailing newline; "" for an empty table.
    """
    return "".join(f"{a}\n" for a in addresses)


__all__ = ["build_address_set", "serialize"]
