from abc import ABC, abstractmethod
from typing import Optional


class CacheStorageInterface(ABC):
    """同期キャッシュを保存するキー・バリューストアのインターフェース"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """キーに対応する値を取得（存在しなければNone）"""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """キーに値を保存"""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """全キーを削除"""
        pass

    async def close(self) -> None:
        """保持しているリソースを解放"""
        return None
