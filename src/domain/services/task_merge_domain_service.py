from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from src.domain.entities.raw_task import RawPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeResult:
    records: List[RawPayload] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    unchanged: int = 0

    def to_dict(self) -> dict:
        return {"added": self.added, "updated": self.updated, "unchanged": self.unchanged}


def _status_value(payload: Mapping[str, Any]) -> Optional[str]:
    status = payload.get("status")
    if isinstance(status, Mapping):
        status = status.get("status")
    return str(status).upper() if status else None


def _tag_names(payload: Mapping[str, Any]) -> Tuple[str, ...]:
    names = []
    for tag in payload.get("tags") or []:
        name = tag.get("name") if isinstance(tag, Mapping) else tag
        if name:
            names.append(str(name))
    return tuple(sorted(names))


def _assignee_keys(payload: Mapping[str, Any]) -> Tuple[str, ...]:
    keys = []
    for assignee in payload.get("assignees") or []:
        if isinstance(assignee, Mapping):
            key = assignee.get("email") or assignee.get("username") or assignee.get("id")
        else:
            key = assignee
        if key:
            keys.append(str(key).lower())
    return tuple(sorted(keys))


def _mappings_only(records: Iterable[Any], origin: str) -> List[RawPayload]:
    kept: List[RawPayload] = []
    dropped = 0
    for record in records:
        if isinstance(record, Mapping):
            kept.append(record)
        else:
            dropped += 1
    if dropped:
        logger.warning(f"⚠️ {origin}内のオブジェクトでないレコードを{dropped}件スキップしました")
    return kept


def _fingerprint(payload: Mapping[str, Any]) -> tuple:
    return (
        payload.get("name"),
        _status_value(payload),
        str(payload.get("time_estimate") or 0),
        str(payload.get("time_spent") or 0),
        str(payload.get("due_date") or ""),
        str(payload.get("date_closed") or ""),
        _tag_names(payload),
        _assignee_keys(payload),
    )


class TaskMergeDomainService:
    """差分取得したレコードをID単位で既存キャッシュへマージする"""

    def has_changed(self, existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> bool:
        return _fingerprint(existing) != _fingerprint(incoming)

    def merge(self, existing: Iterable[RawPayload], delta: Iterable[RawPayload]) -> MergeResult:
        result = MergeResult(records=_mappings_only(existing, "キャッシュ"))
        index = {
            str(record.get("id")): position
            for position, record in enumerate(result.records)
            if record.get("id") is not None
        }

        for record in _mappings_only(delta, "差分"):
            record_id = record.get("id")
            if record_id is None:
                logger.warning("⚠️ IDのない差分レコードをスキップしました")
                continue
            key = str(record_id)
            position = index.get(key)
            if position is None:
                index[key] = len(result.records)
                result.records.append(record)
                result.added += 1
                continue
            if self.has_changed(result.records[position], record):
                result.updated += 1
            else:
                result.unchanged += 1
            result.records[position] = record

        logger.info(
            f"🔀 差分マージ: 追加{result.added}件 / 更新{result.updated}件 / 変更なし{result.unchanged}件"
        )
        return result
