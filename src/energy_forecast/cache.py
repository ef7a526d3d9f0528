"""
Persistent response cache for EnergyForecast.

PURPOSE: Time-bounded key/value store for provider responses, persisted to
a single JSON slot so a restarted dashboard starts warm.
AI CONTEXT: The fetch orchestrator is the only writer; it reads here before
every network request.

STORAGE STRUCTURE:
    .energy_forecast/
    └── energy_forecast_cache.json   # {key: {"data": ..., "timestamp": "...Z"}}

EXPIRY AND EVICTION:
- An entry is stale once now - timestamp > TTL (3 hours); get() deletes it
- The cache has no size bound of its own; callers cap a key family with
  prune(prefix, keep)

ERROR HANDLING STRATEGY:
- Slot missing: empty cache
- Slot unparsable or not a mapping: CacheCorruptionError logged, empty cache,
  overwritten on the next write
- Malformed entry: skipped
- Write failure: logged, in-memory state kept

CODEC:
datetimes are written as UTC ISO-8601 ("2024-03-09T15:00:00Z"). On load,
every string matching that shape is turned back into an aware datetime,
at any depth of the payload.

USAGE:
    cache = PersistentCache()
    cache.set(window.cache_key(account), [r.to_dict() for r in readings])
    data = cache.get(window.cache_key(account))  # None if absent or stale
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .config import Config
from .errors import CacheCorruptionError, InvalidDate
from .filesystem import RealFileSystem
from .timezone import parse_instant, to_utc_iso, utc_now

if TYPE_CHECKING:
    from .filesystem import FileSystem

__all__ = ["CacheEntry", "PersistentCache", "encode_payload", "decode_payload"]

logger = logging.getLogger(__name__)

ISO_INSTANT_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})$"
)


def encode_payload(value: Any) -> Any:
    """Recursively replace datetimes with UTC ISO-8601 strings."""
    if isinstance(value, datetime):
        return to_utc_iso(value)
    if isinstance(value, dict):
        return {str(k): encode_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_payload(v) for v in value]
    return value


def decode_payload(value: Any) -> Any:
    """
    Recursively restore ISO-8601 instant strings as aware datetimes.

    Example:
        >>> decode_payload({"startAt": "2024-03-09T15:00:00Z", "value": 0.3})
        {'startAt': datetime.datetime(2024, 3, 9, 15, 0, tzinfo=datetime.timezone.utc), 'value': 0.3}
    """
    if isinstance(value, str) and ISO_INSTANT_PATTERN.match(value):
        try:
            return parse_instant(value)
        except InvalidDate:
            return value
    if isinstance(value, dict):
        return {k: decode_payload(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_payload(v) for v in value]
    return value


@dataclass
class CacheEntry:
    """Stored payload and the instant it was written."""

    data: Any
    timestamp: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.timestamp


class PersistentCache:
    """
    TTL cache with a single durable JSON slot.

    DESIGN PRINCIPLES:
    1. Fail-safe: Corrupt or missing storage is an empty cache, never fatal
    2. Exclusive ownership: get() hands out deep copies of stored data
    3. Durable: The full map is written after every mutation
    4. Testable: FileSystem and clock are injected

    THREAD SAFETY:
    Not thread-safe. Designed for one event loop; writes are last-write-wins.
    """

    def __init__(
        self,
        storage_dir: str | None = None,
        filesystem: FileSystem | None = None,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize cache and load the persisted slot.

        Args:
            storage_dir: Directory of the slot. Default: Config.get_storage_dir()
            filesystem: FileSystem implementation. Default: RealFileSystem
            ttl: Entry lifetime. Default: Config.CACHE_TTL (3 hours)
            clock: Callable returning aware "now". Default: UTC wall clock

        Example:
            >>> cache = PersistentCache(storage_dir="/tmp/ef", filesystem=mock_fs)
            >>> cache.list_keys()
            []
        """
        self.storage_dir = storage_dir or Config.get_storage_dir()
        self._fs: FileSystem = filesystem or RealFileSystem()
        self.ttl = ttl if ttl is not None else Config.CACHE_TTL
        self._clock = clock or utc_now
        self.cache_file = os.path.join(self.storage_dir, Config.CACHE_FILE)
        self._entries: dict[str, CacheEntry] = {}
        self._load()

    # =========================================================================
    # DURABLE STORAGE
    # =========================================================================

    def _load(self) -> None:
        """Read the slot into memory; corruption leaves the cache empty."""
        try:
            content = self._fs.read_text(self.cache_file)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Error reading cache slot {self.cache_file}: {e}")
            return

        try:
            self._entries = self._parse(content)
        except CacheCorruptionError as e:
            logger.warning(f"Discarding corrupt cache slot {self.cache_file}: {e}")
            self._entries = {}
            return
        logger.info(f"Cache loaded: {len(self._entries)} entries from {self.cache_file}")

    def _parse(self, content: str) -> dict[str, CacheEntry]:
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise CacheCorruptionError(f"invalid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise CacheCorruptionError(f"expected object, got {type(raw).__name__}")

        entries: dict[str, CacheEntry] = {}
        for key, value in raw.items():
            if not isinstance(value, dict) or "data" not in value or "timestamp" not in value:
                logger.debug(f"Skipping malformed cache entry {key!r}")
                continue
            try:
                timestamp = parse_instant(value["timestamp"])
            except InvalidDate:
                logger.debug(f"Skipping cache entry {key!r} with bad timestamp")
                continue
            entries[key] = CacheEntry(data=decode_payload(value["data"]), timestamp=timestamp)
        return entries

    def _persist(self) -> bool:
        """
        Write the whole map to the slot.

        Returns:
            True on success. Failures are logged; memory stays authoritative.
        """
        serialized = {
            key: {"data": encode_payload(entry.data), "timestamp": to_utc_iso(entry.timestamp)}
            for key, entry in self._entries.items()
        }
        try:
            self._fs.makedirs(self.storage_dir, exist_ok=True)
            self._fs.write_text(self.cache_file, json.dumps(serialized))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error writing cache slot {self.cache_file}: {e}")
            return False

    # =========================================================================
    # KEY/VALUE OPERATIONS
    # =========================================================================

    def get(self, key: str) -> Any | None:
        """
        Return a copy of the cached data, or None when absent or stale.

        A stale entry is removed (and the slot rewritten) as a side effect.

        Args:
            key: Cache key.

        Returns:
            Deep copy of the stored data, or None.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.age(self._clock()) > self.ttl:
            logger.debug(f"Cache entry expired: {self._short_key(key)}")
            del self._entries[key]
            self._persist()
            return None
        return copy.deepcopy(entry.data)

    def set(self, key: str, data: Any) -> None:
        """
        Insert or replace an entry stamped with the current time.

        The stored value is a deep copy, so later mutation of data by the
        caller does not leak into the cache.
        """
        self._entries[key] = CacheEntry(data=copy.deepcopy(data), timestamp=self._clock())
        self._persist()

    def remove(self, key: str) -> None:
        """Delete an entry if present and rewrite the slot."""
        if self._entries.pop(key, None) is not None:
            self._persist()

    def clear(self) -> None:
        """Drop every entry and the slot's contents."""
        self._entries.clear()
        self._persist()
        logger.info("Cache cleared")

    def list_keys(self) -> list[str]:
        """All stored keys, including not-yet-evicted stale ones."""
        return list(self._entries)

    def prune(self, prefix: str, keep: int) -> list[str]:
        """
        Keep only the most recent entries of a key family.

        Business context: Every navigated period adds a cache entry; capping
        the usage family bounds the slot size while keeping the periods a
        user is most likely to revisit.

        Args:
            prefix: Key prefix selecting the family (e.g. "electricity_usage:").
            keep: Number of newest entries to retain.

        Returns:
            Keys that were evicted.
        """
        family = [key for key in self._entries if key.startswith(prefix)]
        if len(family) <= keep:
            return []
        family.sort(key=lambda k: self._entries[k].timestamp, reverse=True)
        evicted = family[keep:]
        for key in evicted:
            del self._entries[key]
        self._persist()
        logger.debug(f"Evicted {len(evicted)} cache entries with prefix {prefix!r}")
        return evicted

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def status(self) -> list[dict[str, Any]]:
        """
        Describe every entry for diagnostics.

        Returns:
            List of dicts with "key" (shortened), "age" (e.g. "1h 05m"),
            "size" (serialized bytes) and "expired" flags.
        """
        now = self._clock()
        rows = []
        for key, entry in self._entries.items():
            age = entry.age(now)
            rows.append(
                {
                    "key": self._short_key(key),
                    "age": self._format_age(age),
                    "size": len(json.dumps(encode_payload(entry.data))),
                    "expired": age > self.ttl,
                }
            )
        return rows

    @staticmethod
    def _format_age(age: timedelta) -> str:
        minutes = max(int(age.total_seconds() // 60), 0)
        hours, minutes = divmod(minutes, 60)
        if hours:
            return f"{hours}h {minutes:02d}m"
        return f"{minutes}m"

    @staticmethod
    def _short_key(key: str) -> str:
        if len(key) > 30:
            return f"{key[:15]}...{key[-15:]}"
        return key
