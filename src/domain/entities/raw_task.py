from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from src.domain.exceptions import MalformedRecordError

RawPayload = Dict[str, Any]


class StatusShape(str, Enum):
    TEXT = "text"
    OBJECT = "object"
    MISSING = "missing"


@dataclass(frozen=True)
class RawStatus:
    """上流のステータス値（文字列 / {"status": ...} / 欠損）のタグ付き表現"""
    shape: StatusShape
    value: Optional[str] = None

    @classmethod
    def decode(cls, payload: Any, record_id: Optional[str] = None) -> "RawStatus":
        if payload is None:
            return cls(StatusShape.MISSING)
        if isinstance(payload, str):
            return cls(StatusShape.TEXT, payload) if payload.strip() else cls(StatusShape.MISSING)
        if isinstance(payload, Mapping):
            inner = payload.get("status")
            if inner is None:
                return cls(StatusShape.MISSING)
            if isinstance(inner, str):
                return cls(StatusShape.OBJECT, inner) if inner.strip() else cls(StatusShape.MISSING)
        raise MalformedRecordError(
            f"Unrecognized status shape: {type(payload).__name__}",
            record_id=record_id,
        )


@dataclass(frozen=True)
class RawAssignee:
    username: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def label(self) -> Optional[str]:
        return self.username or self.email

    @classmethod
    def decode(cls, payload: Any, record_id: Optional[str] = None) -> "RawAssignee":
        if isinstance(payload, str):
            return cls(username=payload)
        if isinstance(payload, Mapping):
            user_id = payload.get("id")
            return cls(
                username=payload.get("username") or None,
                email=payload.get("email") or None,
                user_id=str(user_id) if user_id is not None else None,
            )
        raise MalformedRecordError(
            f"Unrecognized assignee shape: {type(payload).__name__}",
            record_id=record_id,
        )


def _decode_priority(payload: Any, record_id: Optional[str]) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload.strip() or None
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return str(int(payload))
    if isinstance(payload, Mapping):
        value = payload.get("priority") or payload.get("name")
        if value is None:
            return None
        return str(value).strip() or None
    raise MalformedRecordError(
        f"Unrecognized priority shape: {type(payload).__name__}",
        record_id=record_id,
    )


def _decode_millis(payload: Any, field_name: str, record_id: Optional[str]) -> Optional[int]:
    if payload is None or payload == "":
        return None
    if isinstance(payload, bool):
        raise MalformedRecordError(f"Invalid {field_name}: {payload!r}", record_id=record_id)
    if isinstance(payload, (int, float)):
        return int(payload)
    if isinstance(payload, str):
        try:
            return int(float(payload.strip()))
        except ValueError as exc:
            raise MalformedRecordError(
                f"Invalid {field_name}: {payload!r}", record_id=record_id
            ) from exc
    raise MalformedRecordError(f"Invalid {field_name}: {payload!r}", record_id=record_id)


def _nested_name(payload: Any) -> Optional[str]:
    if isinstance(payload, Mapping):
        name = payload.get("name")
        return str(name) if name else None
    return None


def _decode_order_index(payload: Any) -> Optional[float]:
    if payload is None or payload == "":
        return None
    try:
        return float(payload)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RawTask:
    """上流APIから受け取ったタスクレコード（検証済み・不変）

    時間はミリ秒、日時はエポックミリ秒のまま保持する。
    元のペイロードはキャッシュ保存用に ``payload`` に残す。
    """
    id: str
    name: str
    status: RawStatus
    priority: Optional[str]
    assignees: Tuple[RawAssignee, ...]
    start_date: Optional[int]
    due_date: Optional[int]
    date_closed: Optional[int]
    date_updated: Optional[int]
    time_estimate: Optional[int]
    time_spent: Optional[int]
    parent_id: Optional[str]
    list_name: Optional[str]
    project_name: Optional[str]
    folder_name: Optional[str]
    tags: Tuple[str, ...]
    order_index: Optional[float] = None
    url: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawTask":
        if not isinstance(payload, Mapping):
            raise MalformedRecordError(f"Task record must be an object, got {type(payload).__name__}")

        raw_id = payload.get("id")
        if raw_id is None or str(raw_id).strip() == "":
            raise MalformedRecordError("Task record has no id")
        record_id = str(raw_id)

        assignees_payload = payload.get("assignees") or []
        if not isinstance(assignees_payload, (list, tuple)):
            raise MalformedRecordError("assignees must be a list", record_id=record_id)

        tags_payload = payload.get("tags") or []
        if not isinstance(tags_payload, (list, tuple)):
            raise MalformedRecordError("tags must be a list", record_id=record_id)
        tags = []
        for tag in tags_payload:
            tag_name = tag.get("name") if isinstance(tag, Mapping) else tag
            if tag_name:
                tags.append(str(tag_name))

        parent = payload.get("parent")
        return cls(
            id=record_id,
            name=str(payload.get("name") or ""),
            status=RawStatus.decode(payload.get("status"), record_id),
            priority=_decode_priority(payload.get("priority"), record_id),
            assignees=tuple(RawAssignee.decode(item, record_id) for item in assignees_payload),
            start_date=_decode_millis(payload.get("start_date"), "start_date", record_id),
            due_date=_decode_millis(payload.get("due_date"), "due_date", record_id),
            date_closed=_decode_millis(payload.get("date_closed"), "date_closed", record_id),
            date_updated=_decode_millis(payload.get("date_updated"), "date_updated", record_id),
            time_estimate=_decode_millis(payload.get("time_estimate"), "time_estimate", record_id),
            time_spent=_decode_millis(payload.get("time_spent"), "time_spent", record_id),
            parent_id=str(parent) if parent else None,
            list_name=_nested_name(payload.get("list")),
            project_name=_nested_name(payload.get("project")),
            folder_name=_nested_name(payload.get("folder")),
            tags=tuple(tags),
            order_index=_decode_order_index(payload.get("orderindex")),
            url=payload.get("url"),
            payload=dict(payload),
        )

    @property
    def is_subtask(self) -> bool:
        return self.parent_id is not None
