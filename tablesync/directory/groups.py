"""Recursive group membership resolution.

Expands a directory group into the set of host names reachable through its
member attribute, following nested groups to any depth.

The membership graph comes from the directory and may contain cycles. The
expansion is a Tarjan-style depth-first walk: identities still on the walk
stack contribute a back-edge instead of being re-entered, and closures are
memoized per strongly connected component, so every identity is expanded at
most once per run and every memoized closure is complete.

The walk keeps its own frame stack instead of recursing, so nesting depth is
bounded by memory, not by the interpreter's recursion limit.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from ldap3.utils.conv import escape_filter_chars

from tablesync.config import Settings
from tablesync.directory.cache import DirectoryObject, DirectoryObjectCache, build_object
from tablesync.directory.client import PagedSearchClient

log = logging.getLogger(__name__)

_NO_BACK_EDGE = math.inf


@dataclass
class _Frame:
    identity: str
    index: int
    members: Iterator[str]
    hosts: set[str]
    low: float


@dataclass
class _Walk:
    counter: int = 0
    index: dict[str, int] = field(default_factory=dict)  # identities on the stack
    stack: list[str] = field(default_factory=list)
    frames: list[_Frame] = field(default_factory=list)


class GroupResolver:
    """Resolve group names to lower-cased host names.

    Args:
        search: Paged search client bound to the directory
        objects: Per-run directory object cache
        settings: Filter template and attribute names
    """

    def __init__(
        self,
        search: PagedSearchClient,
        objects: DirectoryObjectCache,
        settings: Settings,
    ):
        self.search = search
        self.objects = objects
        self.settings = settings
        self._groups: dict[str, frozenset[str]] = {}
        self._expanded: dict[str, frozenset[str]] = {}
        self._lock = threading.RLock()
        self._stats = {
            "group_cache_hits": 0,
            "group_cache_misses": 0,
            "identities_expanded": 0,
        }

    @property
    def attributes(self) -> list[str]:
        return [
            "objectClass",
            self.settings.ldap_member_attribute,
            *self.settings.ldap_host_attributes,
        ]

    def group_filter(self, group_name: str) -> str:
        return self.settings.ldap_group_filter.replace(
            "{group}", escape_filter_chars(group_name)
        )

    def _build(self, identity: str, attrs: dict[str, Any]) -> DirectoryObject:
        return build_object(
            identity,
            attrs,
            group_classes=self.settings.ldap_group_classes,
            member_attribute=self.settings.ldap_member_attribute,
            host_attributes=self.settings.ldap_host_attributes,
        )

    def resolve_group(self, group_name: str) -> frozenset[str]:
        """Return every host name reachable from the group(s) named `group_name`.

        An unknown group resolves to the empty set (with a warning); the
        caller's flush policy decides what an empty result means.
        """
        key = group_name.strip().lower()
        with self._lock:
            cached = self._groups.get(key)
            if cached is not None:
                self._stats["group_cache_hits"] += 1
                log.debug("Group cache hit: %s (%d hosts)", group_name, len(cached))
                return cached
            self._stats["group_cache_misses"] += 1

            matches = self.search.search(self.group_filter(group_name.strip()), self.attributes)
            if not matches:
                log.warning("Group not found: %s", group_name)

            hosts: set[str] = set()
            for dn in sorted(matches):
                obj = self._build(dn, matches[dn])
                self.objects.put(dn, obj)
                hosts |= self.resolve_members(dn, obj)

            result = frozenset(h.lower() for h in hosts)
            self._groups[key] = result
            log.info("Group %s: %d host names", group_name, len(result))
            return result

    def resolve_members(self, identity: str, obj: DirectoryObject | None = None) -> frozenset[str]:
        """Expand one directory object (fetched if not given) into host names."""
        with self._lock:
            return frozenset(self._expand(identity, obj, _Walk()))

    def _fetch(self, identity: str) -> DirectoryObject | None:
        found, obj = self.objects.lookup(identity)
        if found:
            return obj
        attrs = self.search.lookup(identity, self.attributes)
        obj = self._build(identity, attrs) if attrs is not None else None
        self.objects.put(identity, obj)
        if obj is None:
            log.debug("Member not found in directory: %s", identity)
        return obj

    def _enter(self, identity: str, obj: DirectoryObject, walk: _Walk) -> None:
        self._stats["identities_expanded"] += 1
        idx = walk.counter
        walk.counter += 1
        walk.index[identity] = idx
        walk.stack.append(identity)
        walk.frames.append(
            _Frame(identity, idx, iter(obj.member_identities), set(obj.host_names), idx)
        )

    def _expand(self, identity: str, obj: DirectoryObject | None, walk: _Walk) -> set[str]:
        done = self._expanded.get(identity)
        if done is not None:
            return set(done)
        if obj is None:
            obj = self._fetch(identity)
        if obj is None:
            self._expanded[identity] = frozenset()
            return set()

        self._enter(identity, obj, walk)
        while True:
            frame = walk.frames[-1]
            member = next(frame.members, None)
            if member is not None:
                done = self._expanded.get(member)
                if done is not None:
                    frame.hosts |= done
                    continue

                # Already on the stack: a cycle. Its hosts reach the component
                # root through the path that first entered it.
                on_stack = walk.index.get(member)
                if on_stack is not None:
                    log.debug("Membership cycle through %s", member)
                    frame.low = min(frame.low, on_stack)
                    continue

                member_obj = self._fetch(member)
                if member_obj is None:
                    self._expanded[member] = frozenset()
                    continue
                self._enter(member, member_obj, walk)
                continue

            # Every member visited
            walk.frames.pop()
            low = frame.low
            if low >= frame.index:
                # Component root: every identity above it on the stack shares its closure
                closure = frozenset(frame.hosts)
                while True:
                    top = walk.stack.pop()
                    del walk.index[top]
                    self._expanded[top] = closure
                    if top == frame.identity:
                        break
                low = _NO_BACK_EDGE

            if not walk.frames:
                return frame.hosts
            parent = walk.frames[-1]
            parent.hosts |= frame.hosts
            parent.low = min(parent.low, low)

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "group_cache_size": len(self._groups),
            "expansion_cache_size": len(self._expanded),
            "object_cache_size": len(self.objects),
            "object_cache_hits": self.objects.hits,
            "object_cache_misses": self.objects.misses,
            "ldap_queries": self.search.queries,
            "ldap_pages": self.search.pages,
        }

    def log_cache_stats(self) -> None:
        stats = self.get_cache_stats()
        log.info(
            "LDAP stats: %d queries (%d pages), objects %d/%d cache hits, "
            "groups %d/%d cache hits, %d identities expanded",
            stats["ldap_queries"],
            stats["ldap_pages"],
            stats["object_cache_hits"],
            stats["object_cache_hits"] + stats["object_cache_misses"],
            stats["group_cache_hits"],
            stats["group_cache_hits"] + stats["group_cache_misses"],
            stats["identities_expanded"],
        )


__all__ = ["GroupResolver"]
