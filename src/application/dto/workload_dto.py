from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.domain.entities.filter_metadata import FilterMetadata
from src.domain.entities.sync_report import SourceOutcome, SyncReport
from src.domain.entities.sync_state import SyncState
from src.domain.entities.task import GroupedData, ProjectGroup, Task
from src.domain.entities.team_member import BucketTotals, TeamMemberAggregate


class TaskDto(BaseModel):
    """タスクレスポンスDTO"""
    id: str
    name: str
    status: str
    priority: Optional[str] = None
    assignee: str
    raw_assignee: str
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    date_closed: Optional[date] = None
    time_estimate: float
    time_logged: float
    remaining: float
    project: str
    is_subtask: bool
    subtasks: List["TaskDto"] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    weekly_distribution: Dict[str, str] = Field(default_factory=dict)
    is_overdue: bool
    has_negative_budget: bool
    url: Optional[str] = None

    @classmethod
    def from_entity(cls, task: Task) -> "TaskDto":
        return cls(
            id=task.id,
            name=task.name,
            status=task.status,
            priority=task.priority,
            assignee=task.assignee,
            raw_assignee=task.raw_assignee,
            start_date=task.start_date,
            due_date=task.due_date,
            date_closed=task.date_closed,
            time_estimate=round(task.time_estimate, 2),
            time_logged=round(task.time_logged, 2),
            remaining=round(task.remaining, 2),
            project=task.project,
            is_subtask=task.is_subtask,
            subtasks=[cls.from_entity(sub) for sub in task.subtasks],
            tags=list(task.tags),
            weekly_distribution=dict(task.weekly_distribution),
            is_overdue=task.is_overdue,
            has_negative_budget=task.has_negative_budget,
            url=task.url,
        )


TaskDto.model_rebuild()


class ProjectGroupDto(BaseModel):
    name: str
    tasks: List[TaskDto]

    @classmethod
    def from_entity(cls, project: ProjectGroup) -> "ProjectGroupDto":
        return cls(name=project.name, tasks=[TaskDto.from_entity(t) for t in project.tasks])


class GroupedDataDto(BaseModel):
    """担当者別グルーピングDTO"""
    assignee: str
    task_count: int
    projects: List[ProjectGroupDto]

    @classmethod
    def from_entity(cls, group: GroupedData) -> "GroupedDataDto":
        return cls(
            assignee=group.assignee,
            task_count=group.task_count,
            projects=[ProjectGroupDto.from_entity(p) for p in group.projects],
        )


class BucketTotalsDto(BaseModel):
    hours: float
    tasks: int
    logged: float

    @classmethod
    def from_entity(cls, totals: BucketTotals) -> "BucketTotalsDto":
        return cls(hours=round(totals.hours, 2), tasks=totals.tasks, logged=round(totals.logged, 2))


class TeamMemberAggregateDto(BaseModel):
    """担当者別・優先度別集計DTO"""
    name: str
    buckets: Dict[str, BucketTotalsDto]
    total_hours: float
    total_logged: float
    open_tasks: int
    completed_tasks: int
    completed_hours: float

    @classmethod
    def from_entity(cls, aggregate: TeamMemberAggregate) -> "TeamMemberAggregateDto":
        return cls(
            name=aggregate.name,
            buckets={b.value: BucketTotalsDto.from_entity(t) for b, t in aggregate.buckets.items()},
            total_hours=round(aggregate.total_hours, 2),
            total_logged=round(aggregate.total_logged, 2),
            open_tasks=aggregate.open_tasks,
            completed_tasks=aggregate.completed_tasks,
            completed_hours=round(aggregate.completed_hours, 2),
        )


class FilterMetadataDto(BaseModel):
    tags: List[str]
    statuses: List[str]
    projects: List[str]
    assignees: List[str]
    priorities: List[str]

    @classmethod
    def from_entity(cls, metadata: FilterMetadata) -> "FilterMetadataDto":
        return cls(**metadata.to_dict())


class SourceOutcomeDto(BaseModel):
    source: str
    succeeded: bool
    task_count: int
    pages_fetched: int
    truncated: bool
    error_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_entity(cls, outcome: SourceOutcome) -> "SourceOutcomeDto":
        return cls(**outcome.to_dict())


class SyncReportDto(BaseModel):
    """同期レポートDTO（success / partial / failed）"""
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    task_count: int
    sources: List[SourceOutcomeDto]
    failed_sources: List[str]

    @classmethod
    def from_entity(cls, report: SyncReport) -> "SyncReportDto":
        return cls(
            status=report.status.value,
            started_at=report.started_at,
            finished_at=report.finished_at,
            task_count=len(report.records),
            sources=[SourceOutcomeDto.from_entity(o) for o in report.outcomes],
            failed_sources=[o.source_key for o in report.failed_sources],
        )


class SyncStateDto(BaseModel):
    """同期状態DTO"""
    status: str = Field(..., description="idle / syncing / success / error")
    last_sync: Optional[datetime] = None
    last_full_sync: Optional[datetime] = None
    task_count: int = 0
    progress: float = 0.0
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    is_partial: bool = False
    last_report: Optional[SyncReportDto] = None
    sync_log: List[str] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, state: SyncState, sync_log: Optional[List[str]] = None) -> "SyncStateDto":
        return cls(
            status=state.status.value,
            last_sync=state.last_sync,
            last_full_sync=state.last_full_sync,
            task_count=state.task_count,
            progress=state.progress,
            error=state.error,
            warnings=list(state.warnings),
            is_partial=state.is_partial,
            last_report=SyncReportDto.from_entity(state.last_report) if state.last_report else None,
            sync_log=list(sync_log or []),
        )
