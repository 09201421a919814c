from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.domain.entities.sync_report import SyncReport


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class SyncState:
    """オーケストレーターが公開する同期状態"""
    status: SyncStatus = SyncStatus.IDLE
    last_sync: Optional[datetime] = None
    last_full_sync: Optional[datetime] = None
    task_count: int = 0
    progress: float = 0.0
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    last_report: Optional[SyncReport] = None

    @property
    def is_syncing(self) -> bool:
        return self.status == SyncStatus.SYNCING

    @property
    def is_partial(self) -> bool:
        return bool(self.last_report and self.last_report.is_partial)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_full_sync": self.last_full_sync.isoformat() if self.last_full_sync else None,
            "task_count": self.task_count,
            "progress": round(self.progress, 3),
            "error": self.error,
            "warnings": list(self.warnings),
            "is_partial": self.is_partial,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
