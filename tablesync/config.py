from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_list_str(name: str, default_csv: str) -> list[str]:
    raw = os.getenv(name, default_csv).strip()
    out: list[str] = []
    for tok in (t.strip() for t in raw.split(",")):
        if tok:
            out.append(tok)
    return out


def _getenv_bool(name: str, default: bool) -> bool:
    """
    Read a loosely-typed boolean from the environment.

    Treats "1", "true", "yes", "on" (case-insensitive) as True;
    "0", "false", "no", "off", "" as False. If unset, returns default.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off", ""}:
        return False
    # Fallback: any other non-empty value -> True
    return True


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

DEFAULT_GROUP_FILTER = "(&(|(objectClass=group)(objectClass=groupOfNames))(cn={group}))"
DEFAULT_GROUP_CLASSES = "group,groupOfNames,groupOfUniqueNames,posixGroup"
DEFAULT_HOST_ATTRIBUTES = "dNSHostName,host"
DEFAULT_PFCTL_PATH = "/sbin/pfctl"


@dataclass(frozen=True)
class Settings:
    # Directory
    ldap_servers: tuple[str, ...] = ()
    ldap_domain: str = ""
    ldap_base: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: str = ""
    ldap_sasl: bool = False
    ldap_starttls: bool = False
    ldap_connect_timeout_sec: float = 10.0
    ldap_page_size: int = 500
    ldap_group_filter: str = DEFAULT_GROUP_FILTER
    ldap_group_classes: tuple[str, ...] = tuple(DEFAULT_GROUP_CLASSES.split(","))
    ldap_member_attribute: str = "member"
    ldap_host_attributes: tuple[str, ...] = tuple(DEFAULT_HOST_ATTRIBUTES.split(","))

    # DNS
    dns_timeout_sec: float = 5.0

    # Table policy
    ipv4: bool = True
    ipv6: bool = True
    store_dir: str = ""
    never_flush: bool = False
    append_only: bool = False
    enforce: bool = True
    pfctl_path: str = DEFAULT_PFCTL_PATH
    table: str = ""
    dry_run: bool = False


def load_settings() -> Settings:
    """
    Build Settings from the environment (and .env, loaded at import).

    Raises ValueError naming the offending variable on malformed input.
    """
    page_size = _getenv_int("LDAP_PAGE_SIZE", 500)
    if page_size <= 0:
        raise ValueError(f"Environment variable LDAP_PAGE_SIZE must be positive; got {page_size}")

    group_filter = _getenv_str("LDAP_GROUP_FILTER", DEFAULT_GROUP_FILTER)
    if "{group}" not in group_filter:
        raise ValueError(
            f"Environment variable LDAP_GROUP_FILTER must contain '{{group}}'; got {group_filter!r}"
        )

    ipv4 = _getenv_bool("TABLE_IPV4", True)
    ipv6 = _getenv_bool("TABLE_IPV6", True)
    if not (ipv4 or ipv6):
        raise ValueError("TABLE_IPV4 and TABLE_IPV6 cannot both be disabled")

    return Settings(
        ldap_servers=tuple(_getenv_list_str("LDAP_SERVERS", "")),
        ldap_domain=_getenv_str("LDAP_DOMAIN", "").lower().rstrip("."),
        ldap_base=_getenv_str("LDAP_BASE", ""),
        ldap_bind_dn=_getenv_str("LDAP_BIND_DN", ""),
        ldap_bind_password=os.getenv("LDAP_BIND_PASSWORD", ""),
        ldap_sasl=_getenv_bool("LDAP_SASL", False),
        ldap_starttls=_getenv_bool("LDAP_STARTTLS", False),
        ldap_connect_timeout_sec=_getenv_float("LDAP_CONNECT_TIMEOUT_SEC", 10.0),
        ldap_page_size=page_size,
        ldap_group_filter=group_filter,
        ldap_group_classes=tuple(_getenv_list_str("LDAP_GROUP_CLASSES", DEFAULT_GROUP_CLASSES)),
        ldap_member_attribute=_getenv_str("LDAP_MEMBER_ATTRIBUTE", "member"),
        ldap_host_attributes=tuple(
            _getenv_list_str("LDAP_HOST_ATTRIBUTES", DEFAULT_HOST_ATTRIBUTES)
        ),
        dns_timeout_sec=_getenv_float("DNS_TIMEOUT_SEC", 5.0),
        ipv4=ipv4,
        ipv6=ipv6,
        store_dir=_getenv_str("TABLE_STORE_DIR", ""),
        never_flush=_getenv_bool("TABLE_NEVER_FLUSH", False),
        append_only=_getenv_bool("TABLE_APPEND_ONLY", False),
        enforce=_getenv_bool("TABLE_ENFORCE", True),
        pfctl_path=_getenv_str("PFCTL_PATH", DEFAULT_PFCTL_PATH),
    )


def default_domain() -> str:
    """
    Domain part of the local FQDN ("" when the host name has no dot).
    """
    fqdn = socket.getfqdn().strip().lower().rstrip(".")
    if "." not in fqdn:
        return ""
    return fqdn.split(".", 1)[1]


def base_from_domain(domain: str) -> str:
    """
    example.org -> dc=example,dc=org
    """
    labels = [p for p in domain.strip().rstrip(".").split(".") if p]
    return ",".join(f"dc={p}" for p in labels)


__all__ = [
    "Settings",
    "load_settings",
    "default_domain",
    "base_from_domain",
    "DEFAULT_GROUP_FILTER",
    "DEFAULT_GROUP_CLASSES",
    "DEFAULT_HOST_ATTRIBUTES",
    "DEFAULT_PFCTL_PATH",
]
