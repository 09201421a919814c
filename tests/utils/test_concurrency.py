import asyncio

import pytest

from src.utils.concurrency import AsyncToThreadRunner, ConcurrencyCoordinator


class TestConcurrencyCoordinator:
    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            ConcurrencyCoordinator(max_concurrency=0)

    @pytest.mark.asyncio
    async def test_run_all_bounds_in_flight_calls(self):
        coordinator = ConcurrencyCoordinator(max_concurrency=2)
        in_flight = 0
        peak = 0

        def make(value):
            async def call():
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return value
            return call

        results = await coordinator.run_all([(f"k{i}", make(i)) for i in range(5)])

        assert results == [0, 1, 2, 3, 4]
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_run_all_reraises_escaped_errors(self):
        coordinator = ConcurrencyCoordinator()

        async def boom():
            raise RuntimeError("boom")

        async def fine():
            return 1

        with pytest.raises(RuntimeError):
            await coordinator.run_all([("a", fine), ("b", boom)])


@pytest.mark.asyncio
async def test_thread_runner_returns_result():
    runner = AsyncToThreadRunner()

    assert await runner.run(sum, [1, 2, 3], key="sum") == 6
