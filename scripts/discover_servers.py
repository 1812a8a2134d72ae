# scripts/discover_servers.py
from __future__ import annotations

import argparse
import json
import sys

from tablesync.config import base_from_domain, default_domain, load_settings
from tablesync.exceptions import NameResolutionError
from tablesync.resolve import DnsTransport, NameResolver


def _print_human(*, domain: str, base: str, service: str, servers: list[str]) -> None:
    print(f"Domain:        {domain}")
    print(f"Search base:   {base}")
    print(f"Service:       {service}")
    print("Servers:")
    if servers:
        for s in servers:
            print(f"  - {s}")
    else:
        print("  - (none)")


def main() -> int:
    ap = argparse.ArgumentParser(
        description="Show the LDAP servers tablesync would use for a domain (SRV lookup)."
    )
    ap.add_argument("--domain", help="DNS domain (default: LDAP_DOMAIN or this host's domain)")
    ap.add_argument("--service", default="ldap", help="SRV service label (default: ldap)")
    ap.add_argument("--transport", default="tcp", help="SRV transport label (default: tcp)")
    ap.add_argument("--json", action="store_true", help="Output JSON instead of human text")
    args = ap.parse_args()

    settings = load_settings()
    domain = (args.domain or settings.ldap_domain or default_domain()).strip().lower().rstrip(".")
    if not domain:
        print("unable to determine DNS domain; pass --domain", file=sys.stderr)
        return 2

    names = NameResolver(DnsTransport(timeout=settings.dns_timeout_sec))
    try:
        servers = names.discover_servers(domain, args.service, args.transport)
    except NameResolutionError as e:
        print(str(e), file=sys.stderr)
        return 2

    service = f"_{args.service}._{args.transport}.{domain}"
    base = settings.ldap_base or base_from_domain(domain)
    if args.json:
        out = {"domain": domain, "base": base, "service": service, "servers": servers}
        print(json.dumps(out, ensure_ascii=False))
    else:
        _print_human(domain=domain, base=base, service=service, servers=servers)

    return 0 if servers else 1


if __name__ == "__main__":
    raise SystemExit(main())
