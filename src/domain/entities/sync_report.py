from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from src.domain.entities.raw_task import RawPayload


class SyncReportStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class SourceOutcome:
    """1ソース分の取得結果（成功ならレコード、失敗なら例外）"""
    source_key: str
    records: List[RawPayload] = field(default_factory=list)
    error: Optional[Exception] = None
    pages_fetched: int = 0
    truncated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error else None

    def summary(self) -> str:
        """ソースごとのログ1行"""
        if self.succeeded:
            suffix = "（ページ上限に到達）" if self.truncated else ""
            return f"✅ {self.source_key}: {len(self.records)}件のタスク{suffix}"
        return f"❌ {self.source_key}: {self.error_type}: {self.error}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source_key,
            "succeeded": self.succeeded,
            "task_count": len(self.records),
            "pages_fetched": self.pages_fetched,
            "truncated": self.truncated,
            "error_type": self.error_type,
            "error": str(self.error) if self.error else None,
        }


@dataclass(slots=True)
class SyncReport:
    """全ソースの取得結果をまとめたレポート"""
    outcomes: List[SourceOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def succeeded_sources(self) -> List[SourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.succeeded]

    @property
    def failed_sources(self) -> List[SourceOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    @property
    def status(self) -> SyncReportStatus:
        if not self.outcomes or not self.succeeded_sources:
            return SyncReportStatus.FAILED
        if self.failed_sources:
            return SyncReportStatus.PARTIAL
        return SyncReportStatus.SUCCESS

    @property
    def is_partial(self) -> bool:
        return self.status == SyncReportStatus.PARTIAL

    @property
    def all_failed(self) -> bool:
        return self.status == SyncReportStatus.FAILED

    @property
    def warnings(self) -> List[str]:
        return [outcome.summary() for outcome in self.failed_sources]

    @property
    def records(self) -> List[RawPayload]:
        """成功ソースのレコードをID単位で重複排除して返す（先に現れたソースを優先）"""
        merged: List[RawPayload] = []
        seen: set[str] = set()
        for outcome in self.succeeded_sources:
            for record in outcome.records:
                if not isinstance(record, dict):
                    continue
                record_id = record.get("id")
                if record_id is not None:
                    key = str(record_id)
                    if key in seen:
                        continue
                    seen.add(key)
                merged.append(record)
        return merged

    def error_message(self) -> Optional[str]:
        if not self.failed_sources:
            return None
        return "; ".join(f"{o.source_key}: {o.error}" for o in self.failed_sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "task_count": len(self.records),
            "sources": [outcome.to_dict() for outcome in self.outcomes],
            "failed_sources": [outcome.source_key for outcome in self.failed_sources],
        }
