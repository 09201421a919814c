from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple


class SourceKind(str, Enum):
    LIST = "list"
    VIEW = "view"
    WORKSPACE = "workspace"


@dataclass(frozen=True)
class SourceSpec:
    """タスク取得元のバリューオブジェクト

    リストID群・保存ビューID群・ワークスペースID（単一）のいずれか。
    """
    kind: SourceKind
    ids: Tuple[str, ...]

    def __post_init__(self):
        cleaned = tuple(i.strip() for i in self.ids if i and i.strip())
        if not cleaned:
            raise ValueError(f"SourceSpec requires at least one id: {self.kind.value}")
        if self.kind == SourceKind.WORKSPACE and len(cleaned) != 1:
            raise ValueError("Workspace source takes exactly one id")
        # 重複IDは同一ソースとして扱う（順序は維持）
        object.__setattr__(self, "ids", tuple(dict.fromkeys(cleaned)))

    @classmethod
    def lists(cls, ids: Iterable[str]) -> "SourceSpec":
        return cls(SourceKind.LIST, tuple(ids))

    @classmethod
    def views(cls, ids: Iterable[str]) -> "SourceSpec":
        return cls(SourceKind.VIEW, tuple(ids))

    @classmethod
    def workspace(cls, workspace_id: str) -> "SourceSpec":
        return cls(SourceKind.WORKSPACE, (workspace_id,))

    def source_keys(self) -> Tuple[str, ...]:
        """ログ・レポート用のソース識別子（例: list:123）"""
        return tuple(f"{self.kind.value}:{source_id}" for source_id in self.ids)

    def __str__(self) -> str:
        return f"{self.kind.value}({', '.join(self.ids)})"
