from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class FilterMetadata:
    """現在のタスク集合から抽出した絞り込み候補値"""
    tags: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    projects: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    priorities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tags": list(self.tags),
            "statuses": list(self.statuses),
            "projects": list(self.projects),
            "assignees": list(self.assignees),
            "priorities": list(self.priorities),
        }


@dataclass(slots=True)
class FilterConfig:
    """クライアント側の絞り込み条件（空のリストは条件なし）"""
    required_tags: List[str] = field(default_factory=list)
    excluded_tags: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    priorities: List[str] = field(default_factory=list)
    exclude_closed: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    included_assignees: List[str] = field(default_factory=list)
    include_unassigned: bool = True
    show_subtasks: bool = True
    show_parent_tasks: bool = True
    included_projects: List[str] = field(default_factory=list)

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None
