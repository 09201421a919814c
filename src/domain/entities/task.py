from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

COMPLETED_STATUSES = frozenset(
    {"COMPLETE", "COMPLETED", "CONCLUÍDO", "CONCLUIDO", "FINALIZADO", "DONE", "CLOSED"}
)
DEFAULT_STATUS = "TO DO"


def is_completed_status(status: Optional[str]) -> bool:
    """完了系ステータスかどうか（大文字小文字は区別しない）"""
    return (status or "").strip().upper() in COMPLETED_STATUSES


def _date_to_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _date_from_str(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@dataclass(slots=True)
class Task:
    """正規化済みタスクエンティティ

    時間は時間単位。親タスクはサブタスクを ``subtasks`` として排他的に所有する。
    """
    id: str
    name: str
    status: str = DEFAULT_STATUS
    priority: Optional[str] = None
    assignee: str = ""
    raw_assignee: str = ""
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    date_closed: Optional[date] = None
    time_estimate: float = 0.0
    time_logged: float = 0.0
    remaining: float = 0.0
    project: str = ""
    folder: Optional[str] = None
    parent_id: Optional[str] = None
    is_subtask: bool = False
    subtasks: List["Task"] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    weekly_distribution: Dict[str, str] = field(default_factory=dict)
    is_overdue: bool = False
    has_negative_budget: bool = False
    order_index: Optional[float] = None
    url: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return is_completed_status(self.status)

    @property
    def has_assignee(self) -> bool:
        return bool(self.raw_assignee.strip())

    def is_fully_completed(self) -> bool:
        """自身とすべてのサブタスクが完了しているか"""
        return self.is_completed and all(sub.is_fully_completed() for sub in self.subtasks)

    def refresh_derived(self, today: date) -> None:
        """残り時間・期限超過・予算超過フラグを再計算"""
        self.remaining = self.time_estimate - self.time_logged
        completed = self.is_completed
        self.is_overdue = bool(self.due_date and self.due_date < today and not completed)
        self.has_negative_budget = self.time_logged > self.time_estimate and not completed

    def walk(self) -> Iterator["Task"]:
        """自身とサブタスク（入れ子含む）を深さ優先で列挙"""
        yield self
        for sub in self.subtasks:
            yield from sub.walk()

    def find(self, task_id: str) -> Optional["Task"]:
        for candidate in self.walk():
            if candidate.id == task_id:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee,
            "raw_assignee": self.raw_assignee,
            "start_date": _date_to_str(self.start_date),
            "due_date": _date_to_str(self.due_date),
            "date_closed": _date_to_str(self.date_closed),
            "time_estimate": self.time_estimate,
            "time_logged": self.time_logged,
            "remaining": self.remaining,
            "project": self.project,
            "folder": self.folder,
            "parent_id": self.parent_id,
            "is_subtask": self.is_subtask,
            "subtasks": [sub.to_dict() for sub in self.subtasks],
            "tags": list(self.tags),
            "weekly_distribution": dict(self.weekly_distribution),
            "is_overdue": self.is_overdue,
            "has_negative_budget": self.has_negative_budget,
            "order_index": self.order_index,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            status=data.get("status") or DEFAULT_STATUS,
            priority=data.get("priority"),
            assignee=data.get("assignee", ""),
            raw_assignee=data.get("raw_assignee", ""),
            start_date=_date_from_str(data.get("start_date")),
            due_date=_date_from_str(data.get("due_date")),
            date_closed=_date_from_str(data.get("date_closed")),
            time_estimate=float(data.get("time_estimate", 0.0)),
            time_logged=float(data.get("time_logged", 0.0)),
            remaining=float(data.get("remaining", 0.0)),
            project=data.get("project", ""),
            folder=data.get("folder"),
            parent_id=data.get("parent_id"),
            is_subtask=bool(data.get("is_subtask", False)),
            subtasks=[cls.from_dict(sub) for sub in data.get("subtasks", [])],
            tags=list(data.get("tags", [])),
            weekly_distribution=dict(data.get("weekly_distribution", {})),
            is_overdue=bool(data.get("is_overdue", False)),
            has_negative_budget=bool(data.get("has_negative_budget", False)),
            order_index=data.get("order_index"),
            url=data.get("url"),
        )


@dataclass(slots=True)
class ProjectGroup:
    name: str
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tasks": [task.to_dict() for task in self.tasks]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectGroup":
        return cls(name=data["name"], tasks=[Task.from_dict(t) for t in data.get("tasks", [])])


@dataclass(slots=True)
class GroupedData:
    """担当者ごとのプロジェクト→タスクツリー"""
    assignee: str
    projects: List[ProjectGroup] = field(default_factory=list)

    @property
    def task_count(self) -> int:
        return sum(len(project.tasks) for project in self.projects)

    def iter_tasks(self) -> Iterator[Task]:
        for project in self.projects:
            yield from project.tasks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignee": self.assignee,
            "projects": [project.to_dict() for project in self.projects],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroupedData":
        return cls(
            assignee=data["assignee"],
            projects=[ProjectGroup.from_dict(p) for p in data.get("projects", [])],
        )
