# tablesync/resolve/__init__.py
from __future__ import annotations

from .addresses import build_address_set, serialize
from .dns import DnsRecord, DnsTransport, NameResolver, is_ip_literal

"""
Resolve package

  - `dns`: host name -> addresses (alias chains, per-name cache) and SRV
    discovery of directory servers.
  - `addresses`: deterministic, de-duplicated address lists per family.
"""

__all__ = [
    "DnsRecord",
    "DnsTransport",
    "NameResolver",
    "is_ip_literal",
    "build_address_set",
    "serialize",
]
