from typing import Optional


class WorkloadSyncError(Exception):
    """同期エンジン共通の基底例外"""


class ConfigurationError(WorkloadSyncError):
    """トークン未設定・取得元未設定など、同期を開始できない設定エラー"""


class FetchError(WorkloadSyncError):
    """リモートAPI取得エラーの基底クラス"""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class AuthenticationError(FetchError):
    """認証失敗（401）。別エンドポイントで再試行しても解決しないため即時中断"""


class ResourceError(FetchError):
    """リソース未発見・権限なし（403/404）。該当ソースのみ失敗扱い"""


class TransportError(FetchError):
    """通信エラー・5xx・不正なレスポンス。フォールバック先で再試行可能"""

    retryable = True


class RequestTimeoutError(TransportError):
    """リクエストタイムアウト"""


class RateLimitError(TransportError):
    """レート制限（429）。同一エンドポイントでバックオフ後に再試行"""

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class MalformedRecordError(WorkloadSyncError):
    """正規化できないレコード。バッチ全体は中断せずスキップする"""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class CacheSchemaError(WorkloadSyncError):
    """キャッシュのスキーマバージョン不一致"""


class SyncInProgressError(WorkloadSyncError):
    """同期実行中に別の同期が要求された"""
