from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.domain.entities.raw_task import RawPayload
from src.domain.entities.task import GroupedData
from src.domain.exceptions import CacheSchemaError

CACHE_SCHEMA_VERSION = "1"


@dataclass(slots=True)
class CacheRecord:
    """永続化されるキャッシュ一式（スキーマバージョン付き）

    生レコード・処理済みデータ・メタデータ・カーソルは常に1つの値として保存し、
    一部だけが新しい状態にならないようにする。
    """
    raw_tasks: List[RawPayload] = field(default_factory=list)
    grouped_data: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    cursor: Optional[datetime] = None
    version: str = CACHE_SCHEMA_VERSION

    @property
    def task_count(self) -> int:
        return len(self.raw_tasks)

    @property
    def last_full_sync(self) -> Optional[datetime]:
        value = self.metadata.get("last_full_sync")
        return datetime.fromisoformat(value) if value else None

    def parsed_grouped_data(self) -> List[GroupedData]:
        return [GroupedData.from_dict(item) for item in self.grouped_data]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "raw_tasks": self.raw_tasks,
            "processed": self.grouped_data,
            "metadata": self.metadata,
            "cursor": self.cursor.isoformat() if self.cursor else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CacheRecord":
        """保存形式から復元する。形が合わなければ CacheSchemaError"""
        if not isinstance(data, dict):
            raise CacheSchemaError("Cache record is not an object")

        version = data.get("version")
        if not isinstance(version, str):
            raise CacheSchemaError("Cache record has no schema version")

        raw_tasks = data.get("raw_tasks", [])
        grouped_data = data.get("processed", [])
        metadata = data.get("metadata", {})
        if not isinstance(raw_tasks, list):
            raise CacheSchemaError("Cache entry 'raw_tasks' has unexpected shape")
        if not isinstance(grouped_data, list):
            raise CacheSchemaError("Cache entry 'processed' has unexpected shape")
        if not isinstance(metadata, dict):
            raise CacheSchemaError("Cache entry 'metadata' has unexpected shape")

        cursor_text = data.get("cursor")
        cursor: Optional[datetime] = None
        if cursor_text:
            try:
                cursor = datetime.fromisoformat(cursor_text)
            except (TypeError, ValueError) as exc:
                raise CacheSchemaError(f"Invalid cursor value {cursor_text!r}") from exc

        return cls(
            raw_tasks=raw_tasks,
            grouped_data=grouped_data,
            metadata=metadata,
            cursor=cursor,
            version=version,
        )
