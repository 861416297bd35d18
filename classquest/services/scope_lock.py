"""
classquest.services.scope_lock — Per-Scope Serialization
=========================================================

Async callers (request handlers, socket events) funnel every mutation of a
(user, classroom) record through :meth:`ScopeLockRegistry.run_serialized`.
Writes to the same scope run one at a time; different scopes run in
parallel on the ``run_db`` thread pool.  Row locks (``SELECT … FOR UPDATE``
in :mod:`classquest.services.stat_store`) cover writers in other processes.

Usage::

    locks = ScopeLockRegistry()
    outcome = await locks.run_serialized(
        (user_id, classroom_id),
        reward_service.award_bits, engine, user_id=user_id, ...
    )
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from typing import ParamSpec, TypeVar

from classquest.database.engine import run_db

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

ScopeKey = tuple[int, int | None]


def _sort_key(key: ScopeKey) -> tuple[int, int]:
    user_id, classroom_id = key
    return user_id, -1 if classroom_id is None else classroom_id


class ScopeLockRegistry:
    """One :class:`asyncio.Lock` per (user_id, classroom_id).

    Locks are held weakly and disappear once no coroutine references them.
    A registry must only be used from a single event loop.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[ScopeKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, user_id: int, classroom_id: int | None) -> asyncio.Lock:
        key = (user_id, classroom_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def run_serialized(
        self,
        key: ScopeKey,
        func: Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run the synchronous *func* on a worker thread while holding *key*."""
        lock = self.lock_for(*key)
        if lock.locked():
            logger.debug("Waiting for scope lock %s", key)
        async with lock:
            return await run_db(func, *args, **kwargs)

    async def run_serialized_many(
        self,
        keys: Iterable[ScopeKey],
        func: Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Like :meth:`run_serialized` for multi-member writes (group adjustments).

        Locks are always taken in sorted key order so two overlapping batches
        cannot deadlock.
        """
        ordered = sorted(set(keys), key=_sort_key)
        locks = [self.lock_for(*key) for key in ordered]
        async with AsyncExitStack() as stack:
            for lock in locks:
                await stack.enter_async_context(lock)
            return await run_db(func, *args, **kwargs)
