from __future__ import annotations

from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from src.domain.exceptions import ConfigurationError
from src.domain.value_objects.holiday_calendar import HolidayCalendar
from src.domain.value_objects.source_spec import SourceSpec

UNASSIGNED_LABEL = "Unassigned"


@dataclass(frozen=True)
class WorkloadSyncConfig:
    """同期エンジンが参照する設定一式

    取得元は保存ビュー → リストID → ワークスペースの順で優先する。
    """
    token: str = ""
    workspace_id: Optional[str] = None
    list_ids: Tuple[str, ...] = ()
    view_ids: Tuple[str, ...] = ()
    fallback_endpoints: Tuple[str, ...] = ()
    team_members: Tuple[str, ...] = ()
    team_member_order: Tuple[str, ...] = ()
    name_alias_map: Dict[str, str] = field(default_factory=dict)
    holidays: Tuple[str, ...] = ()
    api_tag_filters: Tuple[str, ...] = ()
    assignee_filters: Tuple[str, ...] = ()
    include_archived: bool = False
    timezone: str = "UTC"
    unassigned_label: str = UNASSIGNED_LABEL
    cache_namespace: str = "workload"

    def source_spec(self) -> SourceSpec:
        if self.view_ids:
            return SourceSpec.views(self.view_ids)
        if self.list_ids:
            return SourceSpec.lists(self.list_ids)
        if self.workspace_id:
            return SourceSpec.workspace(self.workspace_id)
        raise ConfigurationError("No task source configured (view ids, list ids or workspace id)")

    def validate(self) -> SourceSpec:
        """同期開始前の検証。取得元を返す"""
        if not self.token:
            raise ConfigurationError("API token is not configured")
        return self.source_spec()

    def holiday_calendar(self) -> HolidayCalendar:
        return HolidayCalendar.from_strings(self.holidays)

    def tzinfo(self) -> tzinfo:
        return ZoneInfo(self.timezone)
