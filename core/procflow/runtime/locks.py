"""Per-run locks serializing every transition of one run."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class RunLockManager:
    """
    Hands out one asyncio.Lock per run id.

    Triggers racing on the same run (two branch arrivals at one join, a
    decision against a cancellation) take turns; triggers on different runs
    never wait for each other. A run's lock is dropped as soon as nobody holds
    or waits on it, so only runs with a trigger in flight keep an entry.

    Example:
        locks = RunLockManager()
        async with locks.hold(run.id):
            ...  # load, mutate, save the run
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def tracked_run_ids(self) -> list[str]:
        """Runs with a holder or waiter."""
        return list(self._locks)

    @asynccontextmanager
    async def hold(self, run_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(run_id, asyncio.Lock())
        self._users[run_id] = self._users.get(run_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[run_id] -= 1
            if not self._users[run_id]:
                del self._users[run_id]
                del self._locks[run_id]
