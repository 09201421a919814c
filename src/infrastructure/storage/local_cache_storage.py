import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from src.domain.repositories.cache_storage import CacheStorageInterface
from src.utils.concurrency import AsyncToThreadRunner

logger = logging.getLogger(__name__)


class InMemoryCacheStorage(CacheStorageInterface):
    """メモリ内のみで保持するキャッシュ（テスト・一時利用向け）"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def clear(self) -> None:
        self._data.clear()

    def keys(self):
        return list(self._data.keys())


class JsonFileCacheStorage(CacheStorageInterface):
    """1つのJSONファイルに全キーを保存するキャッシュ

    書き込みは一時ファイル経由で置き換え、途中で落ちても既存ファイルを壊さない。
    ファイルI/Oはワーカースレッドで実行する。
    """

    def __init__(
        self,
        storage_path: Union[str, Path] = ".workload_cache.json",
        runner: Optional[AsyncToThreadRunner] = None,
    ):
        self.storage_path = Path(storage_path)
        self.lock = threading.Lock()
        self._runner = runner or AsyncToThreadRunner(max_concurrency=1)

    def _read_all(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}
        try:
            data = json.loads(self.storage_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"⚠️ キャッシュファイルを読み込めないため空として扱います: {exc}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.storage_path)

    def _get_sync(self, key: str) -> Optional[str]:
        with self.lock:
            return self._read_all().get(key)

    def _set_sync(self, key: str, value: str) -> None:
        with self.lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def _clear_sync(self) -> None:
        with self.lock:
            if self.storage_path.exists():
                self.storage_path.unlink()

    async def get(self, key: str) -> Optional[str]:
        return await self._runner.run(self._get_sync, key, key=str(self.storage_path))

    async def set(self, key: str, value: str) -> None:
        await self._runner.run(self._set_sync, key, value, key=str(self.storage_path))

    async def clear(self) -> None:
        await self._runner.run(self._clear_sync, key=str(self.storage_path))
        logger.info(f"🗑️ キャッシュファイルを削除しました: {self.storage_path}")
