from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from src.domain.exceptions import (
    AuthenticationError,
    FetchError,
    RateLimitError,
    ResourceError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryDecision(str, Enum):
    RETRY_SAME_ENDPOINT = "retry_same_endpoint"
    NEXT_ENDPOINT = "next_endpoint"
    FATAL = "fatal"


class RetryPolicy:
    """エンドポイントのフォールバックとバックオフをまとめたリトライ方針

    - 401 / 403 / 404 は致命的エラーとして即座に送出する
    - 429 は同じエンドポイントで指数バックオフ（既定 1s, 2s, 4s）後に再試行
    - タイムアウト・通信エラー・5xx は次の候補エンドポイントへ進む
    - 全候補で失敗した場合のみ TransportError を送出する
    """

    def __init__(
        self,
        max_rate_limit_retries: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_rate_limit_retries < 0:
            raise ValueError("max_rate_limit_retries must be non-negative")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        self.max_rate_limit_retries = max_rate_limit_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self._sleep = sleep or asyncio.sleep

    def calculate_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None and retry_after >= 0:
            return retry_after
        return self.base_delay * (self.multiplier ** attempt)

    @staticmethod
    def classify(error: Exception) -> RetryDecision:
        if isinstance(error, (AuthenticationError, ResourceError)):
            return RetryDecision.FATAL
        if isinstance(error, RateLimitError):
            return RetryDecision.RETRY_SAME_ENDPOINT
        if isinstance(error, TransportError):
            return RetryDecision.NEXT_ENDPOINT
        return RetryDecision.FATAL

    async def execute(
        self,
        endpoints: Sequence[str],
        request: Callable[[str], Awaitable[T]],
    ) -> T:
        if not endpoints:
            raise TransportError("No endpoint candidates available")

        last_error: Optional[FetchError] = None
        for endpoint in endpoints:
            attempt = 0
            while True:
                try:
                    return await request(endpoint)
                except FetchError as exc:
                    decision = self.classify(exc)
                    if decision == RetryDecision.FATAL:
                        raise
                    last_error = exc
                    if decision == RetryDecision.RETRY_SAME_ENDPOINT and attempt < self.max_rate_limit_retries:
                        delay = self.calculate_delay(attempt, getattr(exc, "retry_after", None))
                        attempt += 1
                        logger.warning(
                            f"⏳ レート制限のため {delay:.1f}秒待機して再試行 "
                            f"({attempt}/{self.max_rate_limit_retries})"
                        )
                        await self._sleep(delay)
                        continue
                    logger.warning(f"⚠️ エンドポイント失敗、次の候補へ: {exc}")
                    break

        raise TransportError(
            f"All {len(endpoints)} endpoint(s) failed: {last_error}",
            status_code=last_error.status_code if last_error else None,
        ) from last_error
