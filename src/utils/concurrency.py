import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class ConcurrencyCoordinator:
    """Cap in-flight work and serialize access per logical key.

    - A semaphore bounds how many sources (or storage calls) run at once.
    - An asyncio.Lock per key keeps two operations on the same source id or
      cache key from overlapping.
    """

    def __init__(self, max_concurrency: int = 4):
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be greater than zero")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def guard(self, key: Optional[str] = None) -> AsyncIterator[None]:
        async with self._semaphore:
            if not key:
                yield
                return
            async with self._lock_for(key):
                yield

    async def run(self, func: Callable[..., Awaitable[T]], *args, key: Optional[str] = None, **kwargs) -> T:
        async with self.guard(key):
            return await func(*args, **kwargs)

    async def run_all(
        self,
        calls: Iterable[Tuple[Optional[str], Callable[[], Awaitable[T]]]],
    ) -> List[T]:
        """Dispatch every call concurrently under the guard, results in input order.

        Callers are expected to turn their own failures into values; an exception
        escaping a call propagates after the others finish.
        """
        tasks = [self.run(factory, key=key) for key, factory in calls]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)


class AsyncToThreadRunner:
    """Run blocking storage I/O in a worker thread with bounded concurrency."""

    def __init__(self, max_concurrency: int = 4):
        self._coordinator = ConcurrencyCoordinator(max_concurrency=max_concurrency)

    async def run(
        self,
        func: Callable[..., T],
        *args,
        key: Optional[str] = None,
        **kwargs,
    ) -> T:
        async with self._coordinator.guard(key):
            return await asyncio.to_thread(func, *args, **kwargs)
