"""
Google Cloud Storage を使った同期キャッシュ
Cloud Run 環境でもキャッシュを永続化する
"""
import logging
from typing import Optional

from google.cloud import storage

from src.domain.repositories.cache_storage import CacheStorageInterface
from src.utils.concurrency import AsyncToThreadRunner

logger = logging.getLogger(__name__)


class GCSCacheStorage(CacheStorageInterface):
    """キーごとに1つのJSONオブジェクトとしてGCSへ保存するキャッシュ"""

    def __init__(
        self,
        bucket_name: str,
        prefix: str = "workload-cache",
        client: Optional[storage.Client] = None,
        runner: Optional[AsyncToThreadRunner] = None,
    ):
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")
        self.client = client or storage.Client()
        self.bucket = self.client.bucket(bucket_name)
        self._runner = runner or AsyncToThreadRunner(max_concurrency=4)

    def _blob_name(self, key: str) -> str:
        return f"{self.prefix}/{key}.json"

    def _get_sync(self, key: str) -> Optional[str]:
        blob = self.bucket.blob(self._blob_name(key))
        if not blob.exists():
            return None
        return blob.download_as_text()

    def _set_sync(self, key: str, value: str) -> None:
        blob = self.bucket.blob(self._blob_name(key))
        blob.upload_from_string(value, content_type="application/json")

    def _clear_sync(self) -> int:
        deleted = 0
        for blob in self.client.list_blobs(self.bucket_name, prefix=f"{self.prefix}/"):
            blob.delete()
            deleted += 1
        return deleted

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._runner.run(self._get_sync, key, key=key)
        except Exception as e:
            logger.error(f"❌ GCSキャッシュ読み込みエラー ({key}): {e}")
            raise

    async def set(self, key: str, value: str) -> None:
        try:
            await self._runner.run(self._set_sync, key, value, key=key)
        except Exception as e:
            logger.error(f"❌ GCSキャッシュ保存エラー ({key}): {e}")
            raise
        logger.debug(f"✅ GCSにキャッシュ保存: gs://{self.bucket_name}/{self._blob_name(key)}")

    async def clear(self) -> None:
        deleted = await self._runner.run(self._clear_sync)
        logger.info(f"🗑️ GCSキャッシュを削除しました: {deleted}件")
