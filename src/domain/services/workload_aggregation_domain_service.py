from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from src.domain.entities.task import GroupedData, ProjectGroup, Task
from src.domain.entities.team_member import PriorityBucket, TeamMemberAggregate
from src.domain.services.task_normalizer_domain_service import ASSIGNEE_DISPLAY_SEPARATOR
from src.domain.value_objects.sync_config import UNASSIGNED_LABEL

MIN_MATCH_LENGTH = 2
NO_PROJECT_LABEL = "No Project"

_PRIORITY_CODES = {
    "0": PriorityBucket.URGENT,
    "1": PriorityBucket.HIGH,
    "2": PriorityBucket.NORMAL,
    "3": PriorityBucket.LOW,
}
_PRIORITY_KEYWORDS: Tuple[Tuple[PriorityBucket, Tuple[str, ...]], ...] = (
    (PriorityBucket.URGENT, ("urgent", "urgente")),
    (PriorityBucket.HIGH, ("high", "alta")),
    (PriorityBucket.NORMAL, ("normal", "média", "media")),
    (PriorityBucket.LOW, ("low", "baixa")),
)


def _name_pieces(task: Task) -> List[str]:
    pieces = task.raw_assignee.split(",")
    if task.has_assignee:
        pieces.extend(task.assignee.split(ASSIGNEE_DISPLAY_SEPARATOR))
    return [piece.strip().lower() for piece in pieces if len(piece.strip()) >= MIN_MATCH_LENGTH]


def is_assigned_to_member(task: Task, member: str) -> bool:
    """担当者名の部分一致判定（双方向・大文字小文字無視・2文字未満は対象外）"""
    member_lower = (member or "").strip().lower()
    if len(member_lower) < MIN_MATCH_LENGTH:
        return False
    return any(member_lower in piece or piece in member_lower for piece in _name_pieces(task))


def classify_priority(priority: Optional[str]) -> PriorityBucket:
    """優先度文字列を5つのバケットのいずれか1つに分類"""
    value = (priority or "").strip().lower()
    if not value:
        return PriorityBucket.NONE
    bucket = _PRIORITY_CODES.get(value[0])
    if bucket is not None:
        return bucket
    for bucket, keywords in _PRIORITY_KEYWORDS:
        if any(keyword in value for keyword in keywords):
            return bucket
    return PriorityBucket.NONE


class WorkloadAggregationDomainService:
    """担当者→プロジェクト→タスクのツリー構築と優先度別集計"""

    def __init__(self, unassigned_label: str = UNASSIGNED_LABEL):
        self.unassigned_label = unassigned_label

    def aggregate(
        self,
        tasks: Sequence[Task],
        team_members: Sequence[str] = (),
        team_member_order: Sequence[str] = (),
    ) -> Tuple[List[GroupedData], List[TeamMemberAggregate]]:
        grouped = self.group_by_assignee(tasks, team_members, team_member_order)
        aggregates = [self.build_member_aggregate(group) for group in grouped]
        return grouped, aggregates

    def group_by_assignee(
        self,
        tasks: Sequence[Task],
        team_members: Sequence[str] = (),
        team_member_order: Sequence[str] = (),
    ) -> List[GroupedData]:
        roster = [m for m in dict.fromkeys(m.strip() for m in team_members) if m]
        if not roster:
            roster = self.detect_members(tasks)

        members: Dict[str, List[Task]] = {}
        for member in roster:
            if member.lower() == self.unassigned_label.lower():
                continue
            matched = [task for task in tasks if self._task_matches(task, member)]
            if matched:
                members[member] = matched

        unassigned = [task for task in tasks if not any(t.has_assignee for t in task.walk())]

        ordered_names = sorted(members, key=str.lower)
        if team_member_order:
            ordered_names = self._apply_member_order(ordered_names, team_member_order)

        grouped: List[GroupedData] = []
        if unassigned:
            grouped.append(GroupedData(self.unassigned_label, self._group_projects(unassigned)))
        for name in ordered_names:
            grouped.append(GroupedData(name, self._group_projects(members[name])))
        return grouped

    def detect_members(self, tasks: Iterable[Task]) -> List[str]:
        names: Dict[str, str] = {}
        for root in tasks:
            for task in root.walk():
                if not task.has_assignee:
                    continue
                for name in task.assignee.split(ASSIGNEE_DISPLAY_SEPARATOR):
                    name = name.strip()
                    if name and name.lower() not in names:
                        names[name.lower()] = name
        return sorted(names.values(), key=str.lower)

    def build_member_aggregate(self, group: GroupedData) -> TeamMemberAggregate:
        aggregate = TeamMemberAggregate(name=group.assignee)
        for task in group.iter_tasks():
            if task.is_completed:
                aggregate.completed_tasks += 1
                aggregate.completed_hours += task.time_logged
                continue
            bucket = classify_priority(task.priority)
            aggregate.bucket(bucket).add(task.time_estimate, task.time_logged)
            aggregate.total_hours += task.time_estimate
            aggregate.total_logged += task.time_logged
            aggregate.open_tasks += 1
        return aggregate

    @staticmethod
    def _task_matches(task: Task, member: str) -> bool:
        return any(is_assigned_to_member(candidate, member) for candidate in task.walk())

    @staticmethod
    def _group_projects(tasks: Sequence[Task]) -> List[ProjectGroup]:
        projects: Dict[str, List[Task]] = defaultdict(list)
        for task in tasks:
            projects[task.project or NO_PROJECT_LABEL].append(task)
        return [
            ProjectGroup(name=name, tasks=projects[name])
            for name in sorted(projects, key=str.lower)
        ]

    @staticmethod
    def _apply_member_order(names: List[str], order: Sequence[str]) -> List[str]:
        lowered_order = [item.strip().lower() for item in order if item.strip()]

        def position(name: str) -> int:
            lowered = name.lower()
            for index, entry in enumerate(lowered_order):
                if entry == lowered:
                    return index
            for index, entry in enumerate(lowered_order):
                if entry in lowered or lowered in entry:
                    return index
            return len(lowered_order)

        return sorted(names, key=lambda name: (position(name), name.lower()))
