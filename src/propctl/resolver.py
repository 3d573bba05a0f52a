"""Identity resolution for property lookup keys.

A lookup key may be a canonical property id (``prp_…``), a property name or a
hostname bound to the property. Resolution consults three in-memory indexes
before falling back to the remote search API:

1. the by-id index;
2. the by-name index (names are normalised before indexing and lookup);
3. the by-hostname index, picking the staging or production binding;
4. canonical ids that miss locally are reported as not found immediately;
5. otherwise a remote search by property name, then hostname, then edge
   hostname, stopping at the first non-empty result.

All indexes point at one record per property held by :class:`PropertyStore`,
so a version bump made through any path is visible through every key. The
store is advisory: :meth:`IdentityResolver.reset` may drop it at any time.
"""
from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from .errors import NotFoundError, ProtocolError
from .models import HostnameBinding, Network, PropertyRecord
from .papi import PapiClient
from .pool import fan_out
from .transport import RequestContext

LOGGER = logging.getLogger(__name__)

PROPERTY_ID_PREFIX = "prp_"
SEARCH_FIELDS = ("propertyName", "hostname", "edgeHostname")

_DISALLOWED_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")
_VERSION_FIELDS = ("latest_version", "staging_version", "production_version")


def normalize_name(value: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_.-]`` with ``_``."""
    return _DISALLOWED_NAME_CHARS.sub("_", value)


def looks_like_property_id(value: str) -> bool:
    """Return ``True`` when *value* has the canonical property id shape."""
    return value.startswith(PROPERTY_ID_PREFIX)


class PropertyStore:
    """Single owner of property records plus three key -> handle indexes."""

    def __init__(self) -> None:
        """Create an empty store."""
        self._lock = threading.RLock()
        self._records: dict[int, PropertyRecord] = {}
        self._next_handle = 1
        self._by_id: dict[str, int] = {}
        self._by_name: dict[str, int] = {}
        self._by_host: dict[str, dict[Network, int]] = {}

    def __len__(self) -> int:
        """Return the number of distinct records held."""
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    def upsert(self, record: PropertyRecord) -> PropertyRecord:
        """Insert *record* or merge it into the existing one with the same id.

        Returns the stored instance, which is the one callers must keep.
        """
        with self._lock:
            handle = self._by_id.get(record.property_id)
            if handle is None:
                handle = self._next_handle
                self._next_handle += 1
                self._records[handle] = record
                self._by_id[record.property_id] = handle
                stored = record
            else:
                stored = self._records[handle]
                _merge_record(stored, record)
            self._by_name[normalize_name(stored.property_name)] = handle
            return stored

    def alias(self, name: str, record: PropertyRecord) -> None:
        """Index *record* under an additional name."""
        with self._lock:
            handle = self._handle_for(record)
            self._by_name[normalize_name(name)] = handle

    def bind_hostname(self, hostname: str, network: Network, record: PropertyRecord) -> None:
        """Record that *hostname* is served by *record* on *network*."""
        with self._lock:
            handle = self._handle_for(record)
            self._by_host.setdefault(hostname, {})[network] = handle

    def update(self, record: PropertyRecord, **changes: Any) -> PropertyRecord:
        """Apply attribute *changes* to the stored record under the lock."""
        allowed = {item.name for item in fields(PropertyRecord)}
        unknown = set(changes) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise AttributeError(f"Unknown property record fields: {joined}")
        with self._lock:
            handle = self._by_id.get(record.property_id)
            target = self._records[handle] if handle is not None else record
            for key, value in changes.items():
                setattr(target, key, value)
            if target is not record:
                for key, value in changes.items():
                    setattr(record, key, value)
            return target

    # ------------------------------------------------------------------
    def by_id(self, key: str) -> PropertyRecord | None:
        """Return the record indexed under property id *key*."""
        with self._lock:
            handle = self._by_id.get(key)
            return self._records[handle] if handle is not None else None

    def by_name(self, key: str) -> PropertyRecord | None:
        """Return the record indexed under the normalised name *key*."""
        with self._lock:
            handle = self._by_name.get(normalize_name(key))
            return self._records[handle] if handle is not None else None

    def by_hostname(self, key: str, network: Network) -> PropertyRecord | None:
        """Return the record serving hostname *key* on *network*."""
        with self._lock:
            bindings = self._by_host.get(key)
            if not bindings:
                return None
            handle = bindings.get(network)
            return self._records[handle] if handle is not None else None

    def records(self) -> list[PropertyRecord]:
        """Return a snapshot list of every stored record."""
        with self._lock:
            return list(self._records.values())

    def clear(self) -> None:
        """Drop every record and index."""
        with self._lock:
            self._records.clear()
            self._by_id.clear()
            self._by_name.clear()
            self._by_host.clear()

    def _handle_for(self, record: PropertyRecord) -> int:
        handle = self._by_id.get(record.property_id)
        if handle is None:
            stored = self.upsert(record)
            handle = self._by_id[stored.property_id]
        return handle


class _KeyLock:
    """Lock for one lookup key, dropped from its table once nobody holds or awaits it."""

    def __init__(self, table: dict[str, _KeyLock], guard: threading.Lock, key: str) -> None:
        self._table = table
        self._guard = guard
        self._key = key
        self._lock = threading.Lock()
        self.users = 0

    def __enter__(self) -> _KeyLock:
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()
        with self._guard:
            self.users -= 1
            if not self.users:
                self._table.pop(self._key, None)


@dataclass
class IdentityResolver:
    """Resolve lookup keys to canonical :class:`PropertyRecord` instances."""

    client: PapiClient
    store: PropertyStore = field(default_factory=PropertyStore)
    max_workers: int = 10
    warm_on_miss: bool = False
    _warmed: bool = field(default=False, init=False, repr=False)
    _warm_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _key_guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _key_locks: dict[str, _KeyLock] = field(default_factory=dict, init=False, repr=False)

    def resolve(
        self,
        ctx: RequestContext,
        lookup: str | PropertyRecord,
        environment: Network = Network.STAGING,
    ) -> PropertyRecord:
        """Return the record for *lookup* or raise :class:`NotFoundError`."""
        if isinstance(lookup, PropertyRecord):
            return lookup
        raw = str(lookup).strip()
        if not raw:
            raise NotFoundError(raw)
        key = normalize_name(raw)

        cached = self._cached(raw, key, environment)
        if cached is not None:
            return cached

        # Serialise remote work per key so concurrent misses share one search.
        with self._lock_for(key):
            cached = self._cached(raw, key, environment)
            if cached is not None:
                return cached

            if self.warm_on_miss:
                self.warm(ctx)
                cached = self._cached(raw, key, environment)
                if cached is not None:
                    return cached

            if looks_like_property_id(key):
                raise NotFoundError(key)

            record = self._search(ctx, raw, key)
            if record is None:
                raise NotFoundError(key)
            return record

    def register(self, item: Mapping[str, Any] | PropertyRecord) -> PropertyRecord:
        """Add a property (raw API item or record) to the store."""
        record = item if isinstance(item, PropertyRecord) else PropertyRecord.from_api(item)
        return self.store.upsert(record)

    def index_hostnames(
        self,
        record: PropertyRecord,
        network: Network,
        bindings: Iterable[HostnameBinding],
    ) -> None:
        """Bind every hostname in *bindings* to *record* for *network*."""
        for binding in bindings:
            self.store.bind_hostname(binding.cname_from, network, record)

    def warm(self, ctx: RequestContext, *, force: bool = False) -> int:
        """Populate the store from every accessible group/contract pair.

        Runs at most once per resolver unless *force* is given, and is skipped
        when the store already holds a record. Returns the number of property
        items indexed.
        """
        with self._warm_lock:
            if self._warmed and not force:
                return 0
            if len(self.store) and not force:
                self._warmed = True
                return 0

            LOGGER.info("Init PropertyManager cache (hostnames and property list)")
            pairs = self.group_contract_pairs(ctx)
            LOGGER.info("... retrieving properties from %s groups", len(pairs))
            listings = fan_out(
                lambda pair: self.client.list_properties(
                    ctx, pair[1], pair[0], skip_forbidden=True
                ),
                pairs,
                max_workers=self.max_workers,
            )
            count = 0
            for listing in listings:
                if not listing:
                    continue
                for item in _property_items(listing):
                    self.register(item)
                    count += 1
            self._warmed = True
            return count

    def group_contract_pairs(
        self,
        ctx: RequestContext,
        *,
        group_id: str | None = None,
        contract_id: str | None = None,
    ) -> list[tuple[str, str]]:
        """Return every accessible ``(group_id, contract_id)`` pair, optionally filtered."""
        listing = self.client.list_groups(ctx)
        groups = listing.get("groups", {}) if isinstance(listing, Mapping) else {}
        items = groups.get("items", []) if isinstance(groups, Mapping) else []
        pairs: list[tuple[str, str]] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            item_group = str(item.get("groupId", ""))
            if group_id and item_group != group_id:
                continue
            for item_contract in item.get("contractIds") or []:
                if contract_id and item_contract != contract_id:
                    continue
                pairs.append((item_group, str(item_contract)))
        return pairs

    def reset(self) -> None:
        """Discard every cached record; the next lookups rebuild from remote."""
        with self._warm_lock:
            self.store.clear()
            self._warmed = False

    # ------------------------------------------------------------------
    def _cached(self, raw: str, key: str, environment: Network) -> PropertyRecord | None:
        return (
            self.store.by_id(key)
            or self.store.by_name(key)
            or self.store.by_hostname(raw, environment)
        )

    def _lock_for(self, key: str) -> _KeyLock:
        with self._key_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = _KeyLock(self._key_locks, self._key_guard, key)
                self._key_locks[key] = lock
            lock.users += 1
            return lock

    def _search(self, ctx: RequestContext, raw: str, key: str) -> PropertyRecord | None:
        queries = {"propertyName": key, "hostname": raw, "edgeHostname": raw}
        hits: list[dict[str, Any]] = []
        for field_name in SEARCH_FIELDS:
            hits = self.client.search(ctx, field_name, queries[field_name])
            if hits:
                break
        if not hits:
            return None
        first = hits[0]
        try:
            property_id = str(first["propertyId"])
            contract_id = str(first["contractId"])
            group_id = str(first["groupId"])
        except (KeyError, TypeError) as exc:
            raise ProtocolError("Search result is missing property identifiers.") from exc
        item = self.client.get_property(ctx, property_id, contract_id, group_id)
        return self.register(item)


def _property_items(listing: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    properties = listing.get("properties")
    if not isinstance(properties, Mapping):
        return []
    items = properties.get("items")
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, Mapping)]


def _merge_record(target: PropertyRecord, incoming: PropertyRecord) -> None:
    for item in fields(PropertyRecord):
        value = getattr(incoming, item.name)
        if item.name in _VERSION_FIELDS or value is not None:
            setattr(target, item.name, value)


__all__ = [
    "IdentityResolver",
    "PROPERTY_ID_PREFIX",
    "PropertyStore",
    "looks_like_property_id",
    "normalize_name",
]
