from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, List, Optional

from src.application.services.workload_pipeline import WorkloadPipeline, WorkloadSnapshot
from src.domain.entities.cache_record import CacheRecord
from src.domain.entities.filter_metadata import FilterConfig, FilterMetadata
from src.domain.entities.sync_report import SyncReport
from src.domain.entities.sync_state import SyncState, SyncStatus
from src.domain.entities.task import GroupedData, Task
from src.domain.entities.team_member import TeamMemberAggregate
from src.domain.exceptions import ConfigurationError, SyncInProgressError
from src.domain.services.workload_aggregation_domain_service import is_assigned_to_member
from src.domain.value_objects.source_spec import SourceSpec
from src.domain.value_objects.sync_config import WorkloadSyncConfig
from src.infrastructure.clickup.task_fetcher import ClickUpTaskFetcher, FetchOptions
from src.infrastructure.storage.sync_store import SyncStore

logger = logging.getLogger(__name__)

SYNC_LOG_LIMIT = 200


class SyncOrchestrator:
    """同期処理の状態機械（idle → syncing → success / error）

    同期中に別の同期・キャッシュ読込が要求された場合は SyncInProgressError で拒否する。
    全ソースが失敗した場合やパイプラインが失敗した場合、キャッシュは書き換えない。
    """

    def __init__(
        self,
        fetcher: ClickUpTaskFetcher,
        store: SyncStore,
        config: WorkloadSyncConfig,
        pipeline: Optional[WorkloadPipeline] = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.config = config
        self.pipeline = pipeline or WorkloadPipeline(config)
        self._lock = asyncio.Lock()
        self._state = SyncState()
        self._snapshot = WorkloadSnapshot()
        self._sync_log: deque[str] = deque(maxlen=SYNC_LOG_LIMIT)

    # ---- ライフサイクル ----

    async def start(self) -> bool:
        """ストアを初期化し、キャッシュから状態を復元する（起動時の既定経路）"""
        await self.store.init(self.config)
        return await self.load_from_cache()

    async def close(self) -> None:
        await self.store.dispose()
        await self.fetcher.aclose()

    # ---- 公開状態 ----

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def snapshot(self) -> WorkloadSnapshot:
        return self._snapshot

    @property
    def tasks(self) -> List[Task]:
        return self._snapshot.tasks

    @property
    def grouped_data(self) -> List[GroupedData]:
        return self._snapshot.grouped

    @property
    def team_members(self) -> List[TeamMemberAggregate]:
        return self._snapshot.members

    @property
    def filter_metadata(self) -> FilterMetadata:
        return self._snapshot.filter_metadata

    @property
    def sync_log(self) -> List[str]:
        return list(self._sync_log)

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # ---- アクション ----

    async def sync_full(self) -> SyncReport:
        async with self._exclusive("sync_full"):
            source = self._validated_source()
            return await self._run_full(source)

    async def sync_incremental(self) -> SyncReport:
        async with self._exclusive("sync_incremental"):
            source = self._validated_source()
            cache = await self.store.load_cache()
            cursor = cache.cursor if cache else None
            if cache is None or cursor is None:
                logger.info("ℹ️ 差分同期の基準時刻がないためフル同期を実行します")
                return await self._run_full(source)
            return await self._run_incremental(source, cursor)

    async def load_from_cache(self) -> bool:
        async with self._exclusive("load_from_cache"):
            record = await self.store.load_cache()
            if record is None:
                logger.info("ℹ️ 利用可能なキャッシュがありません")
                return False

            self._snapshot = self.pipeline.run(record.raw_tasks)
            self._state = SyncState(
                status=SyncStatus.SUCCESS,
                last_sync=record.cursor,
                last_full_sync=record.last_full_sync,
                task_count=self._snapshot.task_count,
                progress=1.0,
                warnings=list(self._snapshot.warnings),
            )
            self._log(f"📦 キャッシュから{self._state.task_count}件のタスクを復元")
            return True

    async def clear_cache(self) -> None:
        async with self._exclusive("clear_cache"):
            await self.store.clear()
            self._snapshot = WorkloadSnapshot()
            self._state = SyncState()
            self._log("🗑️ キャッシュをクリア")

    # ---- 参照 ----

    def get_task_by_id(self, task_id: str) -> Optional[Task]:
        for root in self._snapshot.tasks:
            found = root.find(task_id)
            if found is not None:
                return found
        return None

    def get_tasks_by_assignee(self, name: str) -> List[Task]:
        lowered = name.strip().lower()
        for group in self._snapshot.grouped:
            if group.assignee.lower() == lowered:
                return list(group.iter_tasks())
        return [
            task
            for task in self._snapshot.tasks
            if any(is_assigned_to_member(candidate, name) for candidate in task.walk())
        ]

    def get_tasks_by_project(self, name: str) -> List[Task]:
        lowered = name.strip().lower()
        return [task for task in self._snapshot.tasks if task.project.lower() == lowered]

    def filter_tasks(self, filter_config: FilterConfig) -> List[Task]:
        return self.pipeline.filters.apply(self._snapshot.tasks, filter_config)

    def get_completed_tasks(self) -> List[Task]:
        """サブタスクを含めて全て完了しているルートタスク"""
        return [task for task in self._snapshot.tasks if task.is_fully_completed()]

    # ---- 内部処理 ----

    @asynccontextmanager
    async def _exclusive(self, operation: str) -> AsyncIterator[None]:
        if self._lock.locked():
            logger.warning(f"⚠️ 同期実行中のため {operation} を拒否しました")
            raise SyncInProgressError(f"A sync is already running; {operation} rejected")
        async with self._lock:
            yield

    def _validated_source(self) -> SourceSpec:
        try:
            return self.config.validate()
        except ConfigurationError as exc:
            self._state = replace(self._state, status=SyncStatus.ERROR, error=str(exc), progress=0.0)
            logger.error(f"❌ 同期設定エラー: {exc}")
            raise

    def _fetch_options(self) -> FetchOptions:
        return FetchOptions(
            tags=tuple(self.config.api_tag_filters),
            include_archived=self.config.include_archived,
            assignees=tuple(self.config.assignee_filters),
        )

    def _begin(self, mode: str) -> None:
        self._state = replace(self._state, status=SyncStatus.SYNCING, progress=0.0, error=None)
        self._log(f"🔄 {mode}同期を開始")

    def _on_progress(self, completed: int, total: int) -> None:
        if total:
            # 取得完了後の集計・保存分を残して 0.9 までを取得進捗に割り当てる
            self._state.progress = round(0.9 * completed / total, 3)

    async def _run_full(self, source: SourceSpec) -> SyncReport:
        self._begin("フル")
        report: Optional[SyncReport] = None
        try:
            report = await self.fetcher.fetch_all(source, self._fetch_options(), self._on_progress)
            self._record_outcomes(report)
            if report.all_failed:
                return self._fail(report, "All sources failed")

            snapshot = self.pipeline.run(report.records)
            grouped, metadata = snapshot.cache_payload()
            metadata["last_full_sync"] = report.started_at.isoformat()
            metadata["source"] = str(source)
            await self.store.save_full(
                CacheRecord(
                    raw_tasks=report.records,
                    grouped_data=grouped,
                    metadata=metadata,
                    cursor=report.started_at,
                )
            )
        except Exception as exc:
            self._fail(report, str(exc))
            raise
        except asyncio.CancelledError:
            self._fail(report, "Sync cancelled")
            raise

        self._succeed(report, snapshot, last_full_sync=report.started_at)
        return report

    async def _run_incremental(self, source: SourceSpec, cursor: datetime) -> SyncReport:
        self._begin("差分")
        report: Optional[SyncReport] = None
        snapshots: List[WorkloadSnapshot] = []

        def process(records):
            snapshot = self.pipeline.run(records)
            snapshots.append(snapshot)
            return snapshot.cache_payload()

        try:
            options = replace(self._fetch_options(), updated_after=cursor)
            report = await self.fetcher.fetch_all(source, options, self._on_progress)
            self._record_outcomes(report)
            if report.all_failed:
                return self._fail(report, "All sources failed")

            record = await self.store.merge_incremental(report.records, report.started_at, process)
        except Exception as exc:
            self._fail(report, str(exc))
            raise
        except asyncio.CancelledError:
            self._fail(report, "Sync cancelled")
            raise

        self._succeed(report, snapshots[-1], last_full_sync=record.last_full_sync)
        return report

    def _record_outcomes(self, report: SyncReport) -> None:
        for outcome in report.outcomes:
            self._log(outcome.summary())

    def _fail(self, report: Optional[SyncReport], message: str) -> Optional[SyncReport]:
        detail = report.error_message() if report else None
        error = f"{message}: {detail}" if detail and detail not in message else message
        self._state = replace(
            self._state,
            status=SyncStatus.ERROR,
            error=error,
            warnings=report.warnings if report else [],
            last_report=report,
        )
        logger.error(f"❌ 同期失敗: {error}")
        self._log(f"❌ 同期失敗: {error}")
        return report

    def _succeed(
        self,
        report: SyncReport,
        snapshot: WorkloadSnapshot,
        last_full_sync: Optional[datetime],
    ) -> None:
        self._snapshot = snapshot
        self._state = SyncState(
            status=SyncStatus.SUCCESS,
            last_sync=report.started_at,
            last_full_sync=last_full_sync,
            task_count=snapshot.task_count,
            progress=1.0,
            error=None,
            warnings=report.warnings + snapshot.warnings,
            last_report=report,
        )
        if report.is_partial:
            logger.warning(
                f"⚠️ 一部のソースが失敗しました: {', '.join(o.source_key for o in report.failed_sources)}"
            )
        logger.info(f"✅ 同期完了: {snapshot.task_count}件")
        self._log(f"✅ 同期完了: {snapshot.task_count}件 ({report.status.value})")

    def _log(self, line: str) -> None:
        self._sync_log.append(line)
