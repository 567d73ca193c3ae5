"""
Polling pool.

In-memory map of invoice token to the payment address being watched for
it. The invoice store is the source of truth; the pool only saves the
poller from rescanning the store every cycle.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Mapping, Optional

import structlog

from cmspay.payments.models import PollEntry

logger = structlog.get_logger()


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock for asyncio tasks.

    Any number of readers may hold the lock together; a writer holds it
    alone. Once a writer is waiting, new readers queue behind it.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class PollingPool:
    """
    Token -> PollEntry map shared between the poller and request handlers.

    Every access goes through one reader/writer lock. No lock is held
    across I/O: callers take a snapshot, do their slow work on the copy,
    then apply removals in a second short write.
    """

    def __init__(self):
        self._entries: Dict[str, PollEntry] = {}
        self._lock = ReadWriteLock()

    def write_lock(self):
        """Exclusive access for multi-step updates (use with insert_locked)."""
        return self._lock.write()

    def insert_locked(self, token: str, entry: PollEntry) -> None:
        """
        Add or overwrite the entry for ``token``.

        Must be called WITH the write lock held.
        """
        self._entries[token] = entry

    async def insert(self, token: str, entry: PollEntry) -> None:
        """
        Add or overwrite the entry for ``token``.

        Must be called WITHOUT the write lock held.
        """
        async with self._lock.write():
            self.insert_locked(token, entry)
        logger.debug("pool.inserted", token=token, address=entry.address)

    async def snapshot(self) -> Dict[str, PollEntry]:
        """Return a copy of the current mapping taken under the read lock."""
        async with self._lock.read():
            return dict(self._entries)

    async def remove(
        self,
        tokens: Iterable[str],
        expected: Optional[Mapping[str, PollEntry]] = None,
    ) -> int:
        """
        Delete tokens from the pool. Unknown tokens are ignored.

        Args:
            tokens: Tokens to delete
            expected: Entries the caller decided on (usually its snapshot).
                A token is only deleted while its entry still equals the
                expected one, so an entry replaced in the meantime survives.

        Returns:
            Number of entries actually removed
        """
        removed = 0
        async with self._lock.write():
            for token in tokens:
                current = self._entries.get(token)
                if current is None:
                    continue
                if expected is not None and expected.get(token) != current:
                    logger.debug("pool.remove_skipped", token=token, address=current.address)
                    continue
                del self._entries[token]
                removed += 1
        return removed

    async def merge(self, entries: Mapping[str, PollEntry]) -> int:
        """
        Add or replace every entry that differs from the pooled one.

        Returns:
            Number of entries added or replaced
        """
        changed = 0
        async with self._lock.write():
            for token, entry in entries.items():
                if self._entries.get(token) != entry:
                    self.insert_locked(token, entry)
                    changed += 1
        return changed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return token in self._entries
