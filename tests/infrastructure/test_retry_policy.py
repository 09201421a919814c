import pytest

from src.domain.exceptions import (
    AuthenticationError,
    RateLimitError,
    RequestTimeoutError,
    ResourceError,
    TransportError,
)
from src.infrastructure.clickup.retry_policy import RetryDecision, RetryPolicy


def _policy(sleeps, **kwargs) -> RetryPolicy:
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(sleep=fake_sleep, **kwargs)


class TestRetryPolicy:
    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_rate_limit_retries=-1)
        with pytest.raises(ValueError):
            RetryPolicy(multiplier=0.5)

    def test_calculate_delay(self):
        policy = RetryPolicy()

        assert [policy.calculate_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]
        assert policy.calculate_delay(2, retry_after=7.0) == 7.0

    def test_classify(self):
        assert RetryPolicy.classify(AuthenticationError("x")) == RetryDecision.FATAL
        assert RetryPolicy.classify(ResourceError("x")) == RetryDecision.FATAL
        assert RetryPolicy.classify(RateLimitError("x")) == RetryDecision.RETRY_SAME_ENDPOINT
        assert RetryPolicy.classify(RequestTimeoutError("x")) == RetryDecision.NEXT_ENDPOINT

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_then_next_endpoint(self):
        sleeps = []
        calls = []
        policy = _policy(sleeps)

        async def request(endpoint):
            calls.append(endpoint)
            if endpoint == "direct":
                raise RateLimitError("slow down")
            return "ok"

        assert await policy.execute(["direct", "proxy"], request) == "ok"
        assert sleeps == [1.0, 2.0, 4.0]
        assert calls == ["direct"] * 4 + ["proxy"]

    @pytest.mark.asyncio
    async def test_fatal_error_stops_immediately(self):
        calls = []
        policy = _policy([])

        async def request(endpoint):
            calls.append(endpoint)
            raise AuthenticationError("bad token", status_code=401)

        with pytest.raises(AuthenticationError):
            await policy.execute(["direct", "proxy"], request)
        assert calls == ["direct"]

    @pytest.mark.asyncio
    async def test_all_endpoints_exhausted(self):
        policy = _policy([])

        async def request(endpoint):
            raise RequestTimeoutError(f"timeout at {endpoint}")

        with pytest.raises(TransportError) as exc_info:
            await policy.execute(["a", "b", "c"], request)
        assert "All 3 endpoint(s) failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RequestTimeoutError)
