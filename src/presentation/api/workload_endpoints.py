import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from src.application.dto.workload_dto import (
    FilterMetadataDto,
    GroupedDataDto,
    SyncReportDto,
    SyncStateDto,
    TaskDto,
    TeamMemberAggregateDto,
)
from src.application.services.sync_orchestrator_service import SyncOrchestrator
from src.domain.exceptions import ConfigurationError, SyncInProgressError
from src.domain.repositories.cache_storage import CacheStorageInterface
from src.infrastructure.clickup.task_fetcher import ClickUpTaskFetcher
from src.infrastructure.storage.gcs_cache_storage import GCSCacheStorage
from src.infrastructure.storage.local_cache_storage import InMemoryCacheStorage, JsonFileCacheStorage
from src.infrastructure.storage.sync_store import SyncStore
from src.presentation.api.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workload", tags=["workload"])


def build_cache_storage(settings: Settings) -> CacheStorageInterface:
    backend = settings.cache_backend.strip().lower()
    if backend == "file":
        return JsonFileCacheStorage(settings.cache_file_path)
    if backend == "gcs":
        if not settings.gcs_bucket_name:
            raise ConfigurationError("cache_backend=gcs requires gcs_bucket_name")
        return GCSCacheStorage(settings.gcs_bucket_name, prefix=settings.cache_object_name)
    if backend != "memory":
        raise ConfigurationError(f"Unknown cache backend: {settings.cache_backend}")
    return InMemoryCacheStorage()


def build_orchestrator(settings: Settings) -> SyncOrchestrator:
    """設定から同期オーケストレーターを組み立てる"""
    config = settings.to_sync_config()
    fetcher = ClickUpTaskFetcher(
        config.token,
        api_base_url=settings.clickup_api_base_url,
        fallback_endpoints=config.fallback_endpoints,
        use_default_fallbacks=settings.use_default_fallbacks,
        timeout_seconds=settings.request_timeout_seconds,
        max_pages=settings.max_pages,
        page_delay_seconds=settings.page_delay_seconds,
        max_concurrent_sources=settings.max_concurrent_sources,
    )
    store = SyncStore(build_cache_storage(settings))
    return SyncOrchestrator(fetcher, store, config)


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def _state_dto(orchestrator: SyncOrchestrator) -> SyncStateDto:
    return SyncStateDto.from_entity(orchestrator.state, orchestrator.sync_log)


async def _run_sync(action) -> SyncReportDto:
    try:
        report = await action()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigurationError as e:
        logger.warning(f"⚠️ 同期設定が不足しています: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return SyncReportDto.from_entity(report)


@router.post("/sync/full", response_model=SyncReportDto)
async def sync_full(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """フル同期を実行"""
    return await _run_sync(orchestrator.sync_full)


@router.post("/sync/incremental", response_model=SyncReportDto)
async def sync_incremental(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """前回同期以降の差分を取得してマージ"""
    return await _run_sync(orchestrator.sync_incremental)


@router.post("/sync/load-cache", response_model=SyncStateDto)
async def load_cache(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        await orchestrator.load_from_cache()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_dto(orchestrator)


@router.delete("/cache", response_model=SyncStateDto)
async def clear_cache(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        await orchestrator.clear_cache()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_dto(orchestrator)


@router.get("/state", response_model=SyncStateDto)
async def get_state(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return _state_dto(orchestrator)


@router.get("/grouped", response_model=List[GroupedDataDto])
async def get_grouped(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return [GroupedDataDto.from_entity(group) for group in orchestrator.grouped_data]


@router.get("/members", response_model=List[TeamMemberAggregateDto])
async def get_members(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return [TeamMemberAggregateDto.from_entity(member) for member in orchestrator.team_members]


@router.get("/metadata", response_model=FilterMetadataDto)
async def get_metadata(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return FilterMetadataDto.from_entity(orchestrator.filter_metadata)


@router.get("/tasks/{task_id}", response_model=TaskDto)
async def get_task(task_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    task = orchestrator.get_task_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return TaskDto.from_entity(task)


@router.get("/assignees/{name}/tasks", response_model=List[TaskDto])
async def get_assignee_tasks(name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return [TaskDto.from_entity(task) for task in orchestrator.get_tasks_by_assignee(name)]


@router.get("/projects/{name}/tasks", response_model=List[TaskDto])
async def get_project_tasks(name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return [TaskDto.from_entity(task) for task in orchestrator.get_tasks_by_project(name)]


@router.get("/completed", response_model=List[TaskDto])
async def get_completed_tasks(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """サブタスクまで完了しているタスク一覧"""
    return [TaskDto.from_entity(task) for task in orchestrator.get_completed_tasks()]
