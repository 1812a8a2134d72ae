# tablesync/directory/cache.py
from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

KIND_GROUP = "group"
KIND_HOST = "host"


@dataclass(frozen=True, slots=True)
class DirectoryObject:
    identity: str  # distinguished name
    kind: str  # KIND_GROUP or KIND_HOST
    member_identities: tuple[str, ...] = ()
    host_names: frozenset[str] = frozenset()

    @property
    def is_group(self) -> bool:
        return self.kind == KIND_GROUP


def attribute_values(attrs: Mapping[str, Any], name: str) -> list[str]:
    """
    Return the values of `name` as a list of strings.

    Attribute names are matched case-insensitively; single values, lists,
    bytes and missing attributes are all tolerated.
    """
    raw: Any = None
    if name in attrs:
        raw = attrs[name]
    else:
        lname = name.lower()
        for k, v in attrs.items():
            if str(k).lower() == lname:
                raw = v
                break
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        raw = [raw]
    out: list[str] = []
    for v in raw:
        if isinstance(v, bytes):
            v = v.decode("utf-8", "replace")
        s = str(v).strip()
        if s:
            out.append(s)
    return out


def _norm_host(name: str) -> str:
    return name.strip().rstrip(".").lower()


def build_object(
    identity: str,
    attrs: Mapping[str, Any],
    *,
    group_classes: Iterable[str],
    member_attribute: str,
    host_attributes: Iterable[str],
) -> DirectoryObject:
    """
    Turn one search entry into a DirectoryObject.
    """
    classes = {c.lower() for c in attribute_values(attrs, "objectClass")}
    is_group = any(gc.lower() in classes for gc in group_classes)

    members: list[str] = []
    if is_group:
        # dict.fromkeys: de-duplicate, keep directory order
        members = list(dict.fromkeys(attribute_values(attrs, member_attribute)))

    hosts: set[str] = set()
    for attr in host_attributes:
        for v in attribute_values(attrs, attr):
            h = _norm_host(v)
            if h:
                hosts.add(h)

    return DirectoryObject(
        identity=identity,
        kind=KIND_GROUP if is_group else KIND_HOST,
        member_identities=tuple(members),
        host_names=frozenset(hosts),
    )


class DirectoryObjectCache:
    """
    identity -> DirectoryObject for one run.

    A stored None records a miss (the directory returned nothing for that
    identity) so it is not fetched again.
    """

    def __init__(self) -> None:
        self._objects: dict[str, DirectoryObject | None] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, identity: str) -> bool:
        return identity in self._objects

    def get(self, identity: str) -> DirectoryObject | None:
        with self._lock:
            return self._objects.get(identity)

    def put(self, identity: str, obj: DirectoryObject | None) -> None:
        with self._lock:
            self._objects[identity] = obj

    def lookup(self, identity: str) -> tuple[bool, DirectoryObject | None]:
        """
        Return (found, obj) and count the hit or miss.
        """
        with self._lock:
            if identity in self._objects:
                self.hits += 1
                return True, self._objects[identity]
            self.misses += 1
            return False, None

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()
            self.hits = 0
            self.misses = 0
