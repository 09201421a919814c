from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Iterable, List, Optional

from src.domain.entities.filter_metadata import FilterConfig, FilterMetadata
from src.domain.entities.task import Task
from src.domain.services.task_normalizer_domain_service import ASSIGNEE_DISPLAY_SEPARATOR
from src.domain.services.workload_aggregation_domain_service import is_assigned_to_member


class TaskFilterDomainService:
    """フィルタ候補値の抽出とクライアント側フィルタ"""

    def extract_metadata(self, tasks: Iterable[Task]) -> FilterMetadata:
        tags: set[str] = set()
        statuses: set[str] = set()
        projects: set[str] = set()
        assignees: set[str] = set()
        priorities: set[str] = set()

        for root in tasks:
            for task in root.walk():
                tags.update(tag for tag in task.tags if tag)
                if task.status:
                    statuses.add(task.status.upper())
                if task.priority:
                    priorities.add(task.priority.upper())
                if task.project:
                    projects.add(task.project)
                if task.has_assignee:
                    assignees.update(
                        name.strip()
                        for name in task.assignee.split(ASSIGNEE_DISPLAY_SEPARATOR)
                        if name.strip()
                    )

        return FilterMetadata(
            tags=sorted(tags, key=str.lower),
            statuses=sorted(statuses),
            projects=sorted(projects, key=str.lower),
            assignees=sorted(assignees, key=str.lower),
            priorities=sorted(priorities),
        )

    def apply(self, tasks: Iterable[Task], config: FilterConfig) -> List[Task]:
        """条件に合うタスクのコピーを返す

        サブタスクが条件に合う親タスクはツリーを保つため残す。
        入力のタスクは変更しない。
        """
        result: List[Task] = []
        for task in tasks:
            filtered = self._filter_tree(task, config)
            if filtered is None:
                continue
            if not config.show_parent_tasks and task.subtasks:
                result.extend(filtered.subtasks)
                continue
            result.append(filtered)
        return result

    def _filter_tree(self, task: Task, config: FilterConfig) -> Optional[Task]:
        kept_subtasks: List[Task] = []
        if config.show_subtasks:
            for sub in task.subtasks:
                filtered = self._filter_tree(sub, config)
                if filtered is not None:
                    kept_subtasks.append(filtered)

        if not self.matches(task, config) and not kept_subtasks:
            return None
        return replace(task, subtasks=kept_subtasks)

    def matches(self, task: Task, config: FilterConfig) -> bool:
        tags_lower = {tag.lower() for tag in task.tags}

        if config.required_tags:
            if not any(tag.lower() in tags_lower for tag in config.required_tags):
                return False
        if config.excluded_tags:
            if any(tag.lower() in tags_lower for tag in config.excluded_tags):
                return False
        if config.statuses:
            if task.status.upper() not in {status.upper() for status in config.statuses}:
                return False
        if config.priorities:
            if (task.priority or "").upper() not in {p.upper() for p in config.priorities}:
                return False
        if config.exclude_closed and (task.is_completed or task.date_closed is not None):
            return False
        if config.has_date_range and not self._within_range(task, config.date_from, config.date_to):
            return False
        if config.included_projects and task.project not in config.included_projects:
            return False
        if not self._assignee_allowed(task, config):
            return False
        return True

    @staticmethod
    def _within_range(task: Task, date_from: Optional[date], date_to: Optional[date]) -> bool:
        reference = task.due_date or task.start_date or task.date_closed
        if reference is None:
            return False
        if date_from and reference < date_from:
            return False
        if date_to and reference > date_to:
            return False
        return True

    @staticmethod
    def _assignee_allowed(task: Task, config: FilterConfig) -> bool:
        if not task.has_assignee:
            return config.include_unassigned
        if not config.included_assignees:
            return True
        return any(is_assigned_to_member(task, member) for member in config.included_assignees)
