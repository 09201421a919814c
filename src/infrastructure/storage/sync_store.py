from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from src.domain.entities.cache_record import CACHE_SCHEMA_VERSION, CacheRecord
from src.domain.entities.raw_task import RawPayload
from src.domain.exceptions import CacheSchemaError
from src.domain.repositories.cache_storage import CacheStorageInterface
from src.domain.services.task_merge_domain_service import MergeResult, TaskMergeDomainService
from src.domain.value_objects.sync_config import WorkloadSyncConfig

logger = logging.getLogger(__name__)

KEY_RECORD = "record"

ProcessFn = Callable[[List[RawPayload]], Tuple[List[Dict[str, Any]], Dict[str, Any]]]


class SyncStore:
    """スキーマバージョン付きの同期キャッシュ

    ``init(config)`` で名前空間を決めてから使い、終了時に ``dispose()`` を呼ぶ。
    書き込みは単一ライター前提。
    """

    def __init__(
        self,
        storage: CacheStorageInterface,
        merge_service: Optional[TaskMergeDomainService] = None,
        schema_version: str = CACHE_SCHEMA_VERSION,
    ):
        self.storage = storage
        self.merge_service = merge_service or TaskMergeDomainService()
        self.schema_version = schema_version
        self.namespace: Optional[str] = None
        self.last_merge: Optional[MergeResult] = None

    @property
    def is_initialized(self) -> bool:
        return self.namespace is not None

    async def init(self, config: WorkloadSyncConfig) -> None:
        self.namespace = config.cache_namespace or "workload"
        logger.info(f"📦 同期キャッシュを初期化: namespace={self.namespace}")

    async def dispose(self) -> None:
        if not self.is_initialized:
            return
        await self.storage.close()
        self.namespace = None
        logger.info("📦 同期キャッシュを解放しました")

    def _key(self, name: str) -> str:
        if self.namespace is None:
            raise RuntimeError("SyncStore is not initialized; call init(config) first")
        return f"{self.namespace}:{name}"

    async def load_cache(self) -> Optional[CacheRecord]:
        """キャッシュを読み込む。存在しない・バージョン不一致の場合はNone"""
        text = await self.storage.get(self._key(KEY_RECORD))
        if text is None or text == "":
            return None

        try:
            try:
                data = json.loads(text)
            except ValueError as exc:
                raise CacheSchemaError("Cache record is not valid JSON") from exc
            record = CacheRecord.from_dict(data)
            if record.version != self.schema_version:
                raise CacheSchemaError(
                    f"Cache schema version {record.version!r} does not match {self.schema_version!r}"
                )
        except CacheSchemaError as exc:
            logger.warning(f"⚠️ キャッシュを破棄します: {exc}")
            await self.storage.clear()
            return None

        logger.info(f"✅ キャッシュ読み込み: {record.task_count}件")
        return record

    async def save_full(self, record: CacheRecord) -> None:
        """キャッシュ全体を1回の書き込みで置き換える

        書き込みに失敗した場合は以前のキャッシュがそのまま残る。
        """
        payload = replace(record, version=self.schema_version).to_dict()
        await self.storage.set(self._key(KEY_RECORD), json.dumps(payload, ensure_ascii=False))
        logger.info(f"💾 キャッシュ保存: {record.task_count}件")

    async def merge_incremental(
        self,
        delta: Sequence[RawPayload],
        cursor: datetime,
        process: Optional[ProcessFn] = None,
    ) -> CacheRecord:
        """差分レコードを既存キャッシュへID単位でマージして保存する

        ``process`` はマージ後の全レコードから (grouped_data, metadata) を作る。
        ``process`` が失敗した場合は何も書き込まない。
        """
        existing = await self.load_cache()
        if existing is None:
            raise CacheSchemaError("No compatible cache to merge into")

        merged = self.merge_service.merge(existing.raw_tasks, delta)
        grouped_data, metadata = existing.grouped_data, dict(existing.metadata)
        if process is not None:
            grouped_data, metadata = process(merged.records)
            metadata = dict(metadata)
            if "last_full_sync" not in metadata and "last_full_sync" in existing.metadata:
                metadata["last_full_sync"] = existing.metadata["last_full_sync"]
        metadata["merge"] = merged.to_dict()

        record = CacheRecord(
            raw_tasks=merged.records,
            grouped_data=grouped_data,
            metadata=metadata,
            cursor=cursor,
            version=self.schema_version,
        )
        await self.save_full(record)
        self.last_merge = merged
        return record

    async def clear(self) -> None:
        await self.storage.clear()
        logger.info("🗑️ 同期キャッシュをクリアしました")
