# tablesync/cli.py
from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from dataclasses import replace

from ldap3.core.exceptions import LDAPException

from tablesync import __version__
from tablesync.config import Settings, base_from_domain, default_domain, load_settings
from tablesync.directory import DirectoryObjectCache, GroupResolver, PagedSearchClient, connect
from tablesync.exceptions import ConfigError, DirectoryError, NameResolutionError
from tablesync.resolve import DnsTransport, NameResolver
from tablesync.table import PfctlEnforcer, SyncOutcome, TableReconciler

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_GROUP_FAILED = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="tablesync",
        description="Create and update pf tables from LDAP groups.",
    )
    fam = ap.add_mutually_exclusive_group()
    fam.add_argument("-4", dest="only_ipv4", action="store_true", help="IPv4 addresses only")
    fam.add_argument("-6", dest="only_ipv6", action="store_true", help="IPv6 addresses only")
    ap.add_argument(
        "-a", dest="append_only", action="store_true", help="Only add addresses, never remove"
    )
    ap.add_argument(
        "-F", dest="never_flush", action="store_true", help="Never flush a table (skip empty results)"
    )
    ap.add_argument("-n", dest="dry_run", action="store_true", help="Dry run: change nothing")
    ap.add_argument("-P", dest="no_pf", action="store_true", help="Do not update pf tables")
    ap.add_argument("-v", dest="verbose", action="store_true", help="Verbose output")
    ap.add_argument("-b", dest="base", help="LDAP search base (default: derived from domain)")
    ap.add_argument("-d", dest="domain", help="DNS domain (default: domain of this host)")
    ap.add_argument(
        "-s",
        dest="servers",
        action="append",
        metavar="SERVER",
        help="LDAP server URI or host; repeatable (default: SRV lookup)",
    )
    ap.add_argument("-p", dest="store_dir", metavar="DIR", help="Write table files to DIR")
    ap.add_argument("-t", dest="table", help="Table name (single group only; default: group name)")
    ap.add_argument("--pfctl", dest="pfctl_path", metavar="PATH", help="pfctl binary")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("groups", nargs="+", metavar="group", help="LDAP group name")
    return ap


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """
    Command-line flags win over environment settings.
    """
    changes: dict[str, object] = {}
    if args.only_ipv4:
        changes.update(ipv4=True, ipv6=False)
    if args.only_ipv6:
        changes.update(ipv4=False, ipv6=True)
    if args.append_only:
        changes["append_only"] = True
    if args.never_flush:
        changes["never_flush"] = True
    if args.dry_run:
        changes["dry_run"] = True
    if args.no_pf:
        changes["enforce"] = False
    if args.base:
        changes["ldap_base"] = args.base.strip()
    if args.domain:
        changes["ldap_domain"] = args.domain.strip().lower().rstrip(".")
    if args.servers:
        changes["ldap_servers"] = tuple(s.strip() for s in args.servers if s.strip())
    if args.store_dir:
        changes["store_dir"] = args.store_dir
    if args.table:
        changes["table"] = args.table.strip()
    if args.pfctl_path:
        changes["pfctl_path"] = args.pfctl_path
    return replace(settings, **changes)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(levelname)s %(message)s")
    logging.getLogger().setLevel(level)


def resolve_servers(settings: Settings, names: NameResolver, domain: str) -> list[str]:
    """
    Configured servers, or the _ldap._tcp SRV targets of `domain`.

    Raises ConfigError when neither yields anything.
    """
    if settings.ldap_servers:
        return list(settings.ldap_servers)
    if not domain:
        raise ConfigError("no LDAP servers configured and no domain to look them up in")
    servers = names.discover_servers(domain, "ldap", "tcp")
    if not servers:
        raise ConfigError(f"unable to retrieve servers for {domain}")
    log.info("Servers for %s: %s", domain, ", ".join(servers))
    return servers


def run(settings: Settings, group_names: Sequence[str]) -> list[SyncOutcome]:
    """
    Connect, synchronize every group, unbind.

    ConfigError, DirectoryError and NameResolutionError raised before or
    between groups are fatal and propagate to the caller.
    """
    names = NameResolver(
        DnsTransport(timeout=settings.dns_timeout_sec),
        ipv4=settings.ipv4,
        ipv6=settings.ipv6,
    )

    domain = settings.ldap_domain
    if not domain and not (settings.ldap_servers and settings.ldap_base):
        domain = default_domain()
    servers = resolve_servers(settings, names, domain)
    base = settings.ldap_base or base_from_domain(domain)
    if not base:
        raise ConfigError("no LDAP search base configured and none derivable from the domain")

    conn = connect(servers, settings)
    try:
        groups = GroupResolver(
            PagedSearchClient(conn, base, settings.ldap_page_size),
            DirectoryObjectCache(),
            settings,
        )
        enforcer = PfctlEnforcer(settings.pfctl_path) if settings.enforce else None
        reconciler = TableReconciler(groups, names, enforcer, settings)

        outcomes = [reconciler.synchronize_group(g) for g in group_names]

        groups.log_cache_stats()
        dns_stats = names.get_cache_stats()
        log.info(
            "DNS stats: %d queries, %d/%d cache hits",
            dns_stats["dns_queries"],
            dns_stats["dns_cache_hits"],
            dns_stats["dns_cache_hits"] + dns_stats["dns_cache_misses"],
        )
        return outcomes
    finally:
        try:
            conn.unbind()
        except LDAPException as e:
            log.debug("LDAP unbind failed: %s", e)


def main(argv: Sequence[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if args.table and len(args.groups) > 1:
        ap.error("-t can only be used with a single group")

    _setup_logging(args.verbose)

    try:
        settings = apply_args(load_settings(), args)
    except ValueError as e:
        log.error("%s", e)
        return EXIT_FATAL

    try:
        outcomes = run(settings, args.groups)
    except (ConfigError, DirectoryError, NameResolutionError) as e:
        log.error("%s", e)
        return EXIT_FATAL

    for o in outcomes:
        if o.reason:
            log.info("%s: %s (%s)", o.group, o.status.value, o.reason)
        else:
            log.info("%s: %s", o.group, o.status.value)

    return EXIT_OK if all(o.ok for o in outcomes) else EXIT_GROUP_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
