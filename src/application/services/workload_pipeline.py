from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from src.domain.entities.filter_metadata import FilterMetadata
from src.domain.entities.raw_task import RawPayload
from src.domain.entities.task import GroupedData, Task
from src.domain.entities.team_member import TeamMemberAggregate
from src.domain.services.task_filter_domain_service import TaskFilterDomainService
from src.domain.services.task_normalizer_domain_service import TaskNormalizerDomainService
from src.domain.services.window_distribution_domain_service import WindowDistributionDomainService
from src.domain.services.workload_aggregation_domain_service import WorkloadAggregationDomainService
from src.domain.value_objects.sync_config import WorkloadSyncConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class WorkloadSnapshot:
    """1回の処理結果（正規化タスクとそこから再計算した派生ビュー）"""
    tasks: List[Task] = field(default_factory=list)
    grouped: List[GroupedData] = field(default_factory=list)
    members: List[TeamMemberAggregate] = field(default_factory=list)
    filter_metadata: FilterMetadata = field(default_factory=FilterMetadata)
    window: List[date] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)

    @property
    def task_count(self) -> int:
        return sum(1 for _ in self.iter_all_tasks())

    def iter_all_tasks(self) -> Iterator[Task]:
        for task in self.tasks:
            yield from task.walk()

    def cache_payload(self) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        metadata = {
            "generated_at": self.generated_at.isoformat(),
            "task_count": self.task_count,
            "window": [day.isoformat() for day in self.window],
            "skipped": list(self.skipped),
            "filters": self.filter_metadata.to_dict(),
            "members": [member.to_dict() for member in self.members],
        }
        return [group.to_dict() for group in self.grouped], metadata


class WorkloadPipeline:
    """正規化 → 按分 → 集計 をまとめて実行する純粋な処理パイプライン"""

    def __init__(
        self,
        config: WorkloadSyncConfig,
        normalizer: Optional[TaskNormalizerDomainService] = None,
        distribution: Optional[WindowDistributionDomainService] = None,
        aggregation: Optional[WorkloadAggregationDomainService] = None,
        filters: Optional[TaskFilterDomainService] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.tz = config.tzinfo()
        self.normalizer = normalizer or TaskNormalizerDomainService(self.tz, config.unassigned_label)
        self.distribution = distribution or WindowDistributionDomainService(config.holiday_calendar())
        self.aggregation = aggregation or WorkloadAggregationDomainService(config.unassigned_label)
        self.filters = filters or TaskFilterDomainService()
        self.clock = clock or utc_now

    def run(self, raw_records: Sequence[RawPayload]) -> WorkloadSnapshot:
        now = self.clock()
        today = now.astimezone(self.tz).date()

        batch = self.normalizer.normalize_batch(raw_records, self.config.name_alias_map, now)
        window = self.distribution.build_anchor_window(batch.tasks, today)
        self.distribution.apply(batch.tasks, window)
        grouped, members = self.aggregation.aggregate(
            batch.tasks,
            self.config.team_members,
            self.config.team_member_order,
        )

        snapshot = WorkloadSnapshot(
            tasks=batch.tasks,
            grouped=grouped,
            members=members,
            filter_metadata=self.filters.extract_metadata(batch.tasks),
            window=window,
            skipped=list(batch.skipped),
            warnings=list(batch.warnings),
            generated_at=now,
        )
        logger.info(
            f"📊 集計完了: タスク{snapshot.task_count}件 / 担当者{len(grouped)}名 / スキップ{len(batch.skipped)}件"
        )
        return snapshot
