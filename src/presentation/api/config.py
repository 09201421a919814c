import json
from typing import Any, Dict, List, Optional, Union

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.domain.value_objects.sync_config import UNASSIGNED_LABEL, WorkloadSyncConfig
from src.infrastructure.clickup.task_fetcher import (
    DEFAULT_API_BASE_URL,
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_DELAY_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)

RawList = Optional[Union[str, List[str]]]


def _parse_list(raw: Any) -> List[str]:
    """JSON配列・カンマ区切り文字列・リストのいずれかを文字列リストに正規化"""
    if raw is None:
        return []

    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if item is not None and str(item).strip()]

    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return []

        try:
            parsed = json.loads(stripped)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if item is not None and str(item).strip()]
        except json.JSONDecodeError:
            pass

        return [item.strip() for item in stripped.split(",") if item.strip()]

    return []


def _parse_mapping(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items() if k and v}
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if isinstance(parsed, dict):
            return {str(k): str(v) for k, v in parsed.items() if k and v}
    return {}


class Settings(BaseSettings):
    clickup_api_token: str = ""
    clickup_workspace_id: str = ""
    clickup_list_ids_raw: RawList = Field(default=None, alias="clickup_list_ids")
    clickup_view_ids_raw: RawList = Field(default=None, alias="clickup_view_ids")
    clickup_api_base_url: str = DEFAULT_API_BASE_URL
    fallback_endpoints_raw: RawList = Field(default=None, alias="fallback_endpoints")
    use_default_fallbacks: bool = True
    team_members_raw: RawList = Field(default=None, alias="team_members")
    team_member_order_raw: RawList = Field(default=None, alias="team_member_order")
    name_alias_map_raw: Optional[Union[str, Dict[str, str]]] = Field(default=None, alias="name_alias_map")
    holidays_raw: RawList = Field(default=None, alias="holidays")
    api_tag_filters_raw: RawList = Field(default=None, alias="api_tag_filters")
    assignee_filters_raw: RawList = Field(default=None, alias="assignee_filters")
    include_archived: bool = False
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_pages: int = DEFAULT_MAX_PAGES
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS
    max_concurrent_sources: Optional[int] = None
    timezone: str = "UTC"
    unassigned_label: str = UNASSIGNED_LABEL
    cache_backend: str = "memory"
    cache_file_path: str = ".workload_cache.json"
    gcs_bucket_name: str = ""
    cache_object_name: str = "workload-cache"
    env: str = "local"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def app_name_suffix(self) -> str:
        """環境に応じてアプリ名の接尾辞を返す"""
        if self.env == "production":
            return ""
        else:
            return " (Dev)"

    @property
    def clickup_list_ids(self) -> List[str]:
        return _parse_list(self.clickup_list_ids_raw)

    @property
    def clickup_view_ids(self) -> List[str]:
        return _parse_list(self.clickup_view_ids_raw)

    @property
    def fallback_endpoints(self) -> List[str]:
        return _parse_list(self.fallback_endpoints_raw)

    @property
    def team_members(self) -> List[str]:
        return _parse_list(self.team_members_raw)

    @property
    def team_member_order(self) -> List[str]:
        return _parse_list(self.team_member_order_raw)

    @property
    def holidays(self) -> List[str]:
        return _parse_list(self.holidays_raw)

    @property
    def api_tag_filters(self) -> List[str]:
        return _parse_list(self.api_tag_filters_raw)

    @property
    def assignee_filters(self) -> List[str]:
        return _parse_list(self.assignee_filters_raw)

    @property
    def name_alias_map(self) -> Dict[str, str]:
        return _parse_mapping(self.name_alias_map_raw)

    def to_sync_config(self) -> WorkloadSyncConfig:
        """同期エンジン用の不変設定に変換"""
        return WorkloadSyncConfig(
            token=self.clickup_api_token.strip(),
            workspace_id=self.clickup_workspace_id.strip() or None,
            list_ids=tuple(self.clickup_list_ids),
            view_ids=tuple(self.clickup_view_ids),
            fallback_endpoints=tuple(self.fallback_endpoints),
            team_members=tuple(self.team_members),
            team_member_order=tuple(self.team_member_order),
            name_alias_map=self.name_alias_map,
            holidays=tuple(self.holidays),
            api_tag_filters=tuple(self.api_tag_filters),
            assignee_filters=tuple(self.assignee_filters),
            include_archived=self.include_archived,
            timezone=self.timezone,
            unassigned_label=self.unassigned_label,
        )
