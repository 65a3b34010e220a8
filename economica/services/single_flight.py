"""Single-flight group: one execution per key for concurrent callers."""

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Tuple, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run ``fn`` once per key while a call for that key is in flight.

    Late callers await the same task through ``asyncio.shield`` so that
    cancelling one waiter leaves the shared execution running. The key is
    released by the task itself, once, whatever the outcome.
    """

    def __init__(self):
        self._calls: Dict[str, "asyncio.Task[T]"] = {}
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> int:
        return len(self._calls)

    def is_in_flight(self, key: str) -> bool:
        return key in self._calls

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> Tuple[T, bool]:
        """Run or join the call for ``key``.

        Returns:
            The result and whether it was shared with an earlier caller.
        """
        async with self._lock:
            task = self._calls.get(key)
            shared = task is not None
            if task is None:
                task = asyncio.ensure_future(self._run(key, fn))
                self._calls[key] = task

        result = await asyncio.shield(task)
        return result, shared

    async def _run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            if self._calls.get(key) is asyncio.current_task():
                del self._calls[key]
