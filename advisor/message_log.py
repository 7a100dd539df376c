"""In-memory message catalogs keyed by structural fingerprint.

Two policies over the same key:
- MessageCatalog keeps the first frame seen per fingerprint, giving a
  catalog of distinct message shapes.
- LatestByType overwrites per fingerprint, giving the most recent content
  per message type.

Negligible frames (empty, bare counters, heartbeats) never enter either.
Nothing is written to disk.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from advisor import config
from advisor.classifier import fingerprint, is_negligible

logger = logging.getLogger(__name__)


@dataclass
class LoggedMessage:
    fingerprint: str
    value: Any
    direction: str = "incoming"
    ts: float = field(default_factory=time.time)
    count: int = 1


def record_value(record: Any) -> Any:
    """Unwrap an interceptor record {direction, type, data} to its decoded value."""
    if isinstance(record, dict) and "direction" in record and "data" in record:
        return record["data"]
    return record


class MessageCatalog:
    """Keep-first catalog of distinct message shapes."""

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit if limit is not None else config.CATALOG_LIMIT
        self._entries: Dict[str, LoggedMessage] = {}
        self._full_warned = False
        self.skipped = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LoggedMessage]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[LoggedMessage]:
        return self._entries.get(key)

    def fingerprints(self) -> List[str]:
        return list(self._entries)

    def values(self) -> List[Any]:
        return [entry.value for entry in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()
        self._full_warned = False
        self.skipped = 0

    def add(self, value: Any, direction: str = "incoming") -> bool:
        """Record a frame. Returns True if it was stored."""
        if is_negligible(value):
            self.skipped += 1
            return False
        key = fingerprint(value)
        existing = self._entries.get(key)
        if existing is not None:
            return self._on_duplicate(existing, value, direction)
        if len(self._entries) >= self.limit:
            if not self._full_warned:
                logger.warning(f"Message catalog full ({self.limit} entries), dropping new shapes")
                self._full_warned = True
            return False
        self._entries[key] = LoggedMessage(fingerprint=key, value=value, direction=direction)
        logger.debug(f"New message shape: {key[:120]}")
        return True

    def _on_duplicate(self, existing: LoggedMessage, value: Any, direction: str) -> bool:
        existing.count += 1
        return False


class LatestByType(MessageCatalog):
    """Most recent frame per fingerprint."""

    def _on_duplicate(self, existing: LoggedMessage, value: Any, direction: str) -> bool:
        existing.count += 1
        existing.value = value
        existing.direction = direction
        existing.ts = time.time()
        return True


def deduplicate(messages: List[Any]) -> List[Any]:
    """Drop negligible messages and keep the first of each fingerprint.

    Accepts decoded values or interceptor records; records are returned as
    given, keyed on their decoded data.
    """
    seen = set()
    kept = []
    for msg in messages:
        value = record_value(msg)
        if is_negligible(value):
            continue
        key = fingerprint(value)
        if key in seen:
            continue
        seen.add(key)
        kept.append(msg)
    removed = len(messages) - len(kept)
    logger.info(f"Deduplicated {len(messages)} messages -> {len(kept)} ({removed} removed)")
    return kept
