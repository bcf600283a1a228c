"""Serialization of writers per target spec.

Clustering and mutations assume a single writer per target spec. Callers
that may run operations concurrently (the HTTP app) take the spec's lock
around each operation.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager


class SpecLockRegistry:
    """One ``asyncio.Lock`` per target spec id, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, spec_id: str) -> asyncio.Lock:
        lock = self._locks.get(spec_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[spec_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, spec_id: str) -> AsyncIterator[None]:
        async with self.lock_for(spec_id):
            yield

    @asynccontextmanager
    async def hold_many(self, spec_ids: Iterable[str]) -> AsyncIterator[None]:
        """Hold the locks of several specs.

        Locks are taken in sorted order so two callers naming the same specs
        cannot deadlock. An empty selection holds nothing.
        """
        async with AsyncExitStack() as stack:
            for spec_id in sorted(set(spec_ids)):
                await stack.enter_async_context(self.lock_for(spec_id))
            yield
