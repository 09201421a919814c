from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from src.domain.entities.raw_task import RawTask
from src.domain.entities.task import DEFAULT_STATUS, Task
from src.domain.exceptions import MalformedRecordError
from src.domain.value_objects.sync_config import UNASSIGNED_LABEL

logger = logging.getLogger(__name__)

MILLIS_PER_HOUR = 3_600_000
ASSIGNEE_DISPLAY_SEPARATOR = " / "
RAW_ASSIGNEE_SEPARATOR = ", "


def _normalize_reference_time(reference_time: Optional[datetime]) -> datetime:
    if reference_time is None:
        return datetime.now(timezone.utc)
    if reference_time.tzinfo is None:
        return reference_time.replace(tzinfo=timezone.utc)
    return reference_time


def resolve_alias(name: str, alias_map: Optional[Mapping[str, str]]) -> str:
    """担当者名をエイリアスマップで表示名に解決する

    完全一致（大文字小文字無視）→ キーが入力に含まれる → 入力がキーに含まれる、の順に探す。
    """
    if not name or not alias_map:
        return name
    lowered = name.strip().lower()

    for key, value in alias_map.items():
        if key.strip().lower() == lowered:
            return value
    for key, value in alias_map.items():
        key_lower = key.strip().lower()
        if len(key_lower) >= 2 and key_lower in lowered:
            return value
    if len(lowered) >= 2:
        for key, value in alias_map.items():
            if lowered in key.strip().lower():
                return value
    return name


def task_sort_key(task: Task):
    """orderindex → 期限 → 名前 の順"""
    return (
        task.order_index is None,
        task.order_index if task.order_index is not None else 0.0,
        task.due_date is None,
        task.due_date or date.min,
        task.name.lower(),
    )


@dataclass(slots=True)
class NormalizedBatch:
    tasks: List[Task] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    promoted_orphans: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class TaskNormalizerDomainService:
    """上流レコードを正規化タスクへ変換し、親子リンクと工数の積み上げを行う"""

    def __init__(self, tz: Optional[tzinfo] = None, unassigned_label: str = UNASSIGNED_LABEL):
        self.tz = tz or timezone.utc
        self.unassigned_label = unassigned_label

    def normalize(
        self,
        raw_tasks: Iterable[Union[RawTask, Mapping[str, Any]]],
        alias_map: Optional[Mapping[str, str]] = None,
        reference_time: Optional[datetime] = None,
    ) -> List[Task]:
        return self.normalize_batch(raw_tasks, alias_map, reference_time).tasks

    def normalize_batch(
        self,
        raw_tasks: Iterable[Union[RawTask, Mapping[str, Any]]],
        alias_map: Optional[Mapping[str, str]] = None,
        reference_time: Optional[datetime] = None,
    ) -> NormalizedBatch:
        today = _normalize_reference_time(reference_time).astimezone(self.tz).date()
        batch = NormalizedBatch()

        decoded: Dict[str, RawTask] = {}
        for item in raw_tasks:
            try:
                raw = item if isinstance(item, RawTask) else RawTask.from_payload(item)
            except MalformedRecordError as exc:
                record_id = exc.record_id or "?"
                batch.skipped.append(record_id)
                batch.warnings.append(f"Skipped malformed record {record_id}: {exc}")
                logger.warning(f"⚠️ 不正なレコードをスキップ: {record_id} ({exc})")
                continue
            if raw.id in decoded:
                continue
            decoded[raw.id] = raw

        tasks: Dict[str, Task] = {
            task_id: self._to_task(raw, alias_map, today) for task_id, raw in decoded.items()
        }

        # 親IDごとにサブタスクをバッファし、親が存在しないものは最上位に昇格
        children: Dict[str, List[Task]] = defaultdict(list)
        roots: List[Task] = []
        for task in tasks.values():
            parent_id = task.parent_id
            if parent_id and parent_id != task.id and parent_id in tasks:
                children[parent_id].append(task)
                continue
            if parent_id:
                task.is_subtask = False
                batch.promoted_orphans.append(task.id)
                logger.warning(f"⚠️ 親タスク未取得のため最上位に昇格: {task.id} (parent={parent_id})")
            roots.append(task)

        visited: set[str] = set()
        for root in roots:
            self._rollup(root, children, visited, today)

        # 親子関係が循環しているレコードはどのルートからも到達できない
        for task in tasks.values():
            if task.id in visited:
                continue
            siblings = children.get(task.parent_id or "")
            if siblings:
                siblings[:] = [sibling for sibling in siblings if sibling is not task]
            task.is_subtask = False
            roots.append(task)
            batch.warnings.append(f"Parent cycle detected at {task.id}")
            logger.warning(f"⚠️ 親子関係の循環を検出したため最上位に昇格: {task.id}")
            self._rollup(task, children, visited, today)

        batch.tasks = sorted(roots, key=task_sort_key)
        return batch

    def _rollup(
        self,
        task: Task,
        children: Dict[str, List[Task]],
        visited: set,
        today: date,
    ) -> None:
        visited.add(task.id)
        subtasks = [child for child in children.get(task.id, []) if child.id not in visited]
        for sub in subtasks:
            self._rollup(sub, children, visited, today)
        task.subtasks = sorted(subtasks, key=task_sort_key)

        if task.subtasks:
            estimate_sum = sum(sub.time_estimate for sub in task.subtasks)
            logged_sum = sum(sub.time_logged for sub in task.subtasks)
            if task.time_estimate == 0:
                task.time_estimate = estimate_sum
            task.time_logged = max(task.time_logged, logged_sum)
        task.refresh_derived(today)

    def _to_task(self, raw: RawTask, alias_map: Optional[Mapping[str, str]], today: date) -> Task:
        labels = [assignee.label for assignee in raw.assignees if assignee.label]
        resolved: List[str] = []
        for label in labels:
            display = resolve_alias(label, alias_map)
            if display not in resolved:
                resolved.append(display)

        task = Task(
            id=raw.id,
            name=raw.name,
            status=(raw.status.value or DEFAULT_STATUS).strip().upper(),
            priority=raw.priority,
            assignee=ASSIGNEE_DISPLAY_SEPARATOR.join(resolved) if resolved else self.unassigned_label,
            raw_assignee=RAW_ASSIGNEE_SEPARATOR.join(labels),
            start_date=self._to_date(raw.start_date),
            due_date=self._to_date(raw.due_date),
            date_closed=self._to_date(raw.date_closed),
            time_estimate=self._to_hours(raw.time_estimate),
            time_logged=self._to_hours(raw.time_spent),
            project=raw.list_name or raw.project_name or "",
            folder=raw.folder_name,
            parent_id=raw.parent_id,
            is_subtask=raw.is_subtask,
            tags=list(raw.tags),
            order_index=raw.order_index,
            url=raw.url,
        )
        task.refresh_derived(today)
        return task

    def _to_date(self, millis: Optional[int]) -> Optional[date]:
        if millis is None:
            return None
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).astimezone(self.tz).date()

    @staticmethod
    def _to_hours(millis: Optional[int]) -> float:
        if not millis:
            return 0.0
        return millis / MILLIS_PER_HOUR
