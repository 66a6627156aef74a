"""Authority record cache.

The cache is shared by every record processed in a warm Lambda container or
worker process. Records are immutable once built, so concurrent readers and
writers need no lock: a race between a lookup and an insert for the same key
ends with the last writer's record, which is equivalent.

Entries older than the TTL are dropped when read. There is no eviction
beyond that; once the entry count passes the warning threshold every insert
logs a warning.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable

from aws_lambda_powertools import Logger

try:
    from nodes.metadata_transform.authority.base import AuthorityRecord
except ImportError:
    from authority.base import AuthorityRecord

logger = Logger()

SECONDS_PER_HOUR = 3600


class AuthorityCache(ABC):
    """Keyed store of AuthorityRecords with read-time staleness checks."""

    @abstractmethod
    def get(self, key: str) -> AuthorityRecord | None:
        """Return the record for key, or None if absent or stale."""

    @abstractmethod
    def put(self, key: str, record: AuthorityRecord) -> None:
        """Store a record under key."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Drop the record stored under key, if any."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every record."""

    @abstractmethod
    def __len__(self) -> int: ...


class InMemoryAuthorityCache(AuthorityCache):
    """Process-wide dictionary cache.

    Args:
        ttl_hours: Maximum record age; older records count as misses
        size_warning_threshold: Entry count above which inserts log a warning
        clock: Time source returning epoch seconds (replaceable in tests)
    """

    def __init__(
        self,
        ttl_hours: float = 24,
        size_warning_threshold: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_hours is None or ttl_hours < 0:
            raise ValueError(f"ttl_hours must be a non-negative number: {ttl_hours}")
        self.ttl_hours = ttl_hours
        self.size_warning_threshold = size_warning_threshold
        self.clock = clock
        self._records: dict[str, AuthorityRecord] = {}

    def get(self, key: str) -> AuthorityRecord | None:
        record = self._records.get(key)
        if record is None:
            return None

        age_hours = (self.clock() - record.created_at) / SECONDS_PER_HOUR
        if age_hours >= self.ttl_hours:
            logger.debug(
                "Discarding stale authority record",
                extra={"uri": key, "age_hours": age_hours},
            )
            self._records.pop(key, None)
            return None

        logger.debug("Authority record served from cache", extra={"uri": key})
        return record

    def put(self, key: str, record: AuthorityRecord) -> None:
        self._records[key] = record
        size = len(self._records)
        if size > self.size_warning_threshold:
            logger.warning(
                f"Authority data cache size: {size}, restart to clear",
                extra={"cache_size": size, "threshold": self.size_warning_threshold},
            )

    def remove(self, key: str) -> None:
        self._records.pop(key, None)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
