from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

import httpx

from src.domain.entities.raw_task import RawPayload
from src.domain.entities.sync_report import SourceOutcome, SyncReport
from src.domain.exceptions import (
    AuthenticationError,
    FetchError,
    RateLimitError,
    RequestTimeoutError,
    ResourceError,
    TransportError,
)
from src.domain.value_objects.source_spec import SourceKind, SourceSpec
from src.infrastructure.clickup.retry_policy import RetryPolicy
from src.utils.concurrency import ConcurrencyCoordinator

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.clickup.com/api/v2"
DEFAULT_FALLBACK_PROXIES: Tuple[str, ...] = (
    "https://corsproxy.io/?",
    "https://api.codetabs.com/v1/proxy?quest=",
    "https://cors-anywhere.herokuapp.com/",
    "https://thingproxy.freeboard.io/fetch/",
)
DEFAULT_TIMEOUT_SECONDS = 25.0
DEFAULT_MAX_PAGES = 50
DEFAULT_PAGE_DELAY_SECONDS = 0.2

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class FetchOptions:
    """取得オプション

    updated_after: 差分取得の基準時刻（date_updated_gt として送信）
    tags: ワークスペース取得時のタグ絞り込み（tags[]）
    assignees: 取得後にユーザー名/メールで絞り込む
    """
    updated_after: Optional[datetime] = None
    tags: Tuple[str, ...] = ()
    include_archived: bool = False
    assignees: Tuple[str, ...] = ()


def _to_epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class ClickUpTaskFetcher:
    """タスク管理APIからタスクをページ単位で取得するクライアント

    ソースごとに並行取得し、各ソースの成否は SourceOutcome として個別に決着させる。
    1ソースの失敗が他のソースを止めることはない。
    """

    def __init__(
        self,
        token: str,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        fallback_endpoints: Sequence[str] = (),
        use_default_fallbacks: bool = True,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
        max_concurrent_sources: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_pages < 0:
            raise ValueError("max_pages must be non-negative")
        self.token = token
        self.api_base_url = api_base_url.rstrip("/")
        proxies = list(fallback_endpoints)
        if use_default_fallbacks:
            proxies.extend(DEFAULT_FALLBACK_PROXIES)
        self.fallback_endpoints: Tuple[str, ...] = tuple(
            dict.fromkeys(p.strip() for p in proxies if p and p.strip())
        )
        self.timeout_seconds = timeout_seconds
        self.max_pages = max_pages
        self.page_delay_seconds = page_delay_seconds
        self.max_concurrent_sources = max_concurrent_sources
        self._sleep = sleep or asyncio.sleep
        self.retry_policy = retry_policy or RetryPolicy(sleep=self._sleep)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_all(
        self,
        source: SourceSpec,
        options: Optional[FetchOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncReport:
        """全ソースを並行取得し、ソースごとの結果をレポートにまとめる"""
        options = options or FetchOptions()
        report = SyncReport(started_at=datetime.now(timezone.utc))
        total = len(source.ids)
        completed = 0
        # 上限未指定なら全ソースを同時に取得する
        coordinator = ConcurrencyCoordinator(max_concurrency=self.max_concurrent_sources or max(1, total))

        def make_call(source_id: str, source_key: str):
            async def call() -> SourceOutcome:
                nonlocal completed
                outcome = await self._settle_source(source.kind, source_id, source_key, options)
                completed += 1
                if progress_callback:
                    progress_callback(completed, total)
                return outcome
            return call

        calls = [
            (key, make_call(source_id, key))
            for source_id, key in zip(source.ids, source.source_keys())
        ]
        report.outcomes = await coordinator.run_all(calls)
        report.finished_at = datetime.now(timezone.utc)

        for outcome in report.outcomes:
            if outcome.succeeded:
                logger.info(outcome.summary())
            else:
                logger.warning(outcome.summary())
        return report

    async def _settle_source(
        self,
        kind: SourceKind,
        source_id: str,
        source_key: str,
        options: FetchOptions,
    ) -> SourceOutcome:
        outcome = SourceOutcome(source_key=source_key)
        try:
            await self._fetch_source(kind, source_id, options, outcome)
        except FetchError as exc:
            outcome.error = exc
            outcome.records = []
        except Exception as exc:
            logger.exception(f"❌ {source_key} の取得中に予期しないエラー")
            outcome.error = exc
            outcome.records = []
        return outcome

    async def _fetch_source(
        self,
        kind: SourceKind,
        source_id: str,
        options: FetchOptions,
        outcome: SourceOutcome,
    ) -> None:
        seen: set[str] = set()
        records: List[RawPayload] = []
        reached_end = False

        for page in range(self.max_pages + 1):
            if page > 0 and self.page_delay_seconds > 0:
                await self._sleep(self.page_delay_seconds)

            url = self.build_url(kind, source_id, page, options)
            page_records = await self.retry_policy.execute(
                self.endpoint_candidates(url), self._request_page
            )
            outcome.pages_fetched += 1

            if not page_records:
                reached_end = True
                break

            fresh = []
            malformed = 0
            for record in page_records:
                if not isinstance(record, dict):
                    malformed += 1
                    continue
                record_id = record.get("id")
                if record_id is not None:
                    if str(record_id) in seen:
                        continue
                    seen.add(str(record_id))
                fresh.append(record)
            if malformed:
                logger.warning(
                    f"⚠️ {kind.value}:{source_id} ページ{page}のオブジェクトでないレコードを{malformed}件スキップ"
                )

            if not fresh and malformed < len(page_records):
                logger.warning(f"⚠️ {kind.value}:{source_id} ページ{page}は既出のタスクのみ。取得を終了します")
                reached_end = True
                break
            records.extend(fresh)

        if not reached_end:
            outcome.truncated = True
            logger.warning(
                f"⚠️ {kind.value}:{source_id} ページ上限({self.max_pages})に到達したため取得を打ち切りました"
            )

        if options.assignees:
            records = [r for r in records if self._has_assignee(r, options.assignees)]
        outcome.records = records

    def build_url(self, kind: SourceKind, source_id: str, page: int, options: FetchOptions) -> str:
        params: List[Tuple[str, Any]] = [("subtasks", "true")]
        if kind == SourceKind.VIEW:
            path = f"/view/{source_id}/task"
        elif kind == SourceKind.LIST:
            path = f"/list/{source_id}/task"
            params.append(("include_closed", "true"))
            params.append(("archived", "true" if options.include_archived else "false"))
        else:
            path = f"/team/{source_id}/task"
            params.append(("include_closed", "true"))
            for tag in options.tags:
                params.append(("tags[]", tag))
        if options.updated_after is not None and kind != SourceKind.VIEW:
            params.append(("date_updated_gt", _to_epoch_millis(options.updated_after)))
        params.append(("page", page))
        return f"{self.api_base_url}{path}?{urlencode(params)}"

    def endpoint_candidates(self, url: str) -> List[str]:
        """直接接続 → 設定済みフォールバック → 既定プロキシの順"""
        encoded = quote(url, safe="")
        return [url] + [f"{prefix}{encoded}" for prefix in self.fallback_endpoints]

    async def _request_page(self, endpoint: str) -> List[RawPayload]:
        headers = {"Authorization": self.token, "Content-Type": "application/json"}
        try:
            response = await self._get_client().get(
                endpoint, headers=headers, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                f"Request timed out after {self.timeout_seconds}s", endpoint=endpoint
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Transport error: {exc}", endpoint=endpoint) from exc

        status = response.status_code
        if status == 401:
            raise AuthenticationError("Authentication failed", status_code=status, endpoint=endpoint)
        if status in (403, 404):
            raise ResourceError(
                "Resource not found or access denied", status_code=status, endpoint=endpoint
            )
        if status == 429:
            raise RateLimitError(
                "Rate limited",
                retry_after=self._parse_retry_after(response.headers.get("Retry-After")),
                status_code=status,
                endpoint=endpoint,
            )
        if status >= 400:
            raise TransportError(f"HTTP {status}", status_code=status, endpoint=endpoint)

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError("Invalid JSON response", status_code=status, endpoint=endpoint) from exc

        tasks = body.get("tasks") if isinstance(body, dict) else None
        if not isinstance(tasks, list):
            raise TransportError("Unexpected response shape", status_code=status, endpoint=endpoint)
        return tasks

    @staticmethod
    def _parse_retry_after(value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @staticmethod
    def _has_assignee(record: Dict[str, Any], wanted: Sequence[str]) -> bool:
        wanted_lower = {w.strip().lower() for w in wanted if w.strip()}
        for assignee in record.get("assignees") or []:
            if not isinstance(assignee, dict):
                continue
            for key in ("username", "email"):
                value = assignee.get(key)
                if value and value.lower() in wanted_lower:
                    return True
        return False
