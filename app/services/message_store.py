# services/message_store.py
"""
In-memory correlation store for submitted messages and worker responses.

This service handles:
1. Registering a submission under its message ID (pending state)
2. Attaching the worker response delivered by the webhook
3. Read-only lookups for the polling endpoint and the debug listing
4. Eviction by age (TTL) and by size (max entries)

Storage Structure:
- messageId → StoredEntry (insertion ordered)

Entries are immutable; a mutation swaps in a new StoredEntry under the lock,
so concurrent readers see the entry either before or after a callback,
never half-written. Nothing is persisted across restarts.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional

from core.config import settings
from core.errors import MessageNotFoundError
from core.ids import utc_now_iso
from core.logger import logger
from schemas.message_models import ResponsePayload, StoredEntry, Submission


class MessageStore:
    """
    Thread-safe map of message ID to StoredEntry.

    Per-key operations are atomic with respect to each other; there is
    no transaction spanning several entries.
    """

    def __init__(
        self,
        ttl_seconds: int = 0,
        max_entries: int = 0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            ttl_seconds: Entry lifetime; 0 keeps entries forever
            max_entries: Size cap, oldest evicted first; 0 means unbounded
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, StoredEntry]" = OrderedDict()
        self._lock = threading.Lock()

        logger.info(
            f"MessageStore initialized: ttl_seconds={ttl_seconds}, max_entries={max_entries}"
        )

    # ========================================================================
    # WRITES
    # ========================================================================

    def add(self, submission: Submission) -> Optional[StoredEntry]:
        """
        Register a submission with no response yet.

        Returns:
            The new StoredEntry, or None if the message ID is already taken
            (the caller should mint another ID instead of overwriting).
        """
        entry = StoredEntry(
            submission=submission,
            timestamp=utc_now_iso(),
            stored_at=self._clock(),
        )

        with self._lock:
            self._evict_expired_locked()
            if submission.message_id in self._entries:
                logger.warning(f"Message ID collision: {submission.message_id}")
                return None

            self._entries[submission.message_id] = entry
            self._evict_overflow_locked()

        return entry

    def attach_response(self, message_id: str, response: ResponsePayload) -> StoredEntry:
        """
        Store the worker response for a known message.
        A later callback for the same ID replaces the earlier response.

        Raises:
            MessageNotFoundError: If the ID was never issued or was evicted
        """
        with self._lock:
            current = self._entries.get(message_id)
            if current is None or self._is_expired(current):
                raise MessageNotFoundError(message_id)

            if current.response is not None:
                logger.info(f"Overwriting existing response for message: {message_id}")

            updated = current.model_copy(
                update={
                    "response": response,
                    "response_timestamp": utc_now_iso(),
                }
            )
            self._entries[message_id] = updated

        return updated

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, message_id: str) -> StoredEntry:
        """
        Raises:
            MessageNotFoundError: If the ID is unknown or expired
        """
        with self._lock:
            entry = self._entries.get(message_id)

        if entry is None or self._is_expired(entry):
            raise MessageNotFoundError(message_id)
        return entry

    def contains(self, message_id: str) -> bool:
        try:
            self.get(message_id)
        except MessageNotFoundError:
            return False
        return True

    def list_entries(self) -> List[StoredEntry]:
        """Snapshot of all live entries in insertion order."""
        with self._lock:
            entries = list(self._entries.values())
        return [entry for entry in entries if not self._is_expired(entry)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ========================================================================
    # EVICTION
    # ========================================================================

    def purge_expired(self) -> int:
        """Drop every entry older than the TTL. Returns how many were removed."""
        with self._lock:
            return self._evict_expired_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _is_expired(self, entry: StoredEntry) -> bool:
        if not self.ttl_seconds:
            return False
        return self._clock() - entry.stored_at >= self.ttl_seconds

    def _evict_expired_locked(self) -> int:
        if not self.ttl_seconds:
            return 0

        # Insertion order equals age order, so stop at the first live entry
        removed = 0
        while self._entries:
            oldest_id, oldest = next(iter(self._entries.items()))
            if not self._is_expired(oldest):
                break
            del self._entries[oldest_id]
            removed += 1

        if removed:
            logger.debug(f"Evicted {removed} expired message(s)")
        return removed

    def _evict_overflow_locked(self) -> None:
        if not self.max_entries:
            return

        while len(self._entries) > self.max_entries:
            evicted_id, _ = self._entries.popitem(last=False)
            logger.warning(f"Message store full, evicted oldest message: {evicted_id}")


"""
Global message store instance (singleton)
"""
message_store = MessageStore(
    ttl_seconds=settings.MESSAGE_STORE_TTL_SECS,
    max_entries=settings.MESSAGE_STORE_MAX_ENTRIES,
)


def get_message_store() -> MessageStore:
    """
    Get the message store for dependency injection.

    Usage in FastAPI:
        store: MessageStore = Depends(get_message_store)
    """
    return message_store
