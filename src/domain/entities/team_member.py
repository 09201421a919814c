from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class PriorityBucket(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    NONE = "none"


@dataclass(slots=True)
class BucketTotals:
    hours: float = 0.0
    tasks: int = 0
    logged: float = 0.0

    def add(self, hours: float, logged: float) -> None:
        self.hours += hours
        self.tasks += 1
        self.logged += logged

    def to_dict(self) -> Dict[str, Any]:
        return {"hours": round(self.hours, 2), "tasks": self.tasks, "logged": round(self.logged, 2)}


def _empty_buckets() -> Dict[PriorityBucket, BucketTotals]:
    return {bucket: BucketTotals() for bucket in PriorityBucket}


@dataclass(slots=True)
class TeamMemberAggregate:
    """担当者ごとの優先度別集計

    バケットと ``total_hours`` は未完了タスクのみを対象とし、
    完了タスクは ``completed_tasks`` / ``completed_hours`` に計上する。
    """
    name: str
    buckets: Dict[PriorityBucket, BucketTotals] = field(default_factory=_empty_buckets)
    total_hours: float = 0.0
    total_logged: float = 0.0
    open_tasks: int = 0
    completed_tasks: int = 0
    completed_hours: float = 0.0

    def bucket(self, priority: PriorityBucket) -> BucketTotals:
        return self.buckets[priority]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "buckets": {bucket.value: totals.to_dict() for bucket, totals in self.buckets.items()},
            "total_hours": round(self.total_hours, 2),
            "total_logged": round(self.total_logged, 2),
            "open_tasks": self.open_tasks,
            "completed_tasks": self.completed_tasks,
            "completed_hours": round(self.completed_hours, 2),
        }
