"""Core data models for NoticeWatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

NoticeKey = Tuple[str, str]


class OperatorCode(str, Enum):
    """Transit operators whose notices can be tracked."""

    KMB = "KMB"
    CTB = "CTB"
    NWFB = "NWFB"


@dataclass(frozen=True)
class Operator:
    """A transit source; its code partitions storage and document paths."""

    name: str
    code: OperatorCode


@dataclass(frozen=True)
class RouteRef:
    """A route as reported by an operator's catalog."""

    route: str
    bound: Optional[int] = None

    @property
    def key(self) -> str:
        if self.bound is None:
            return self.route
        return f"{self.route}_{self.bound}"


@dataclass(frozen=True)
class NormalizedNotice:
    """A notice currently advertised by a source for one route."""

    notice_id: str
    document_url: str


@dataclass
class NoticeRecord:
    """Persisted representation of a notice."""

    operator_code: str
    route: str
    notice_id: str
    document_url: str
    is_active: bool
    discovered_at: str
    last_seen_at: Optional[str] = None
    document_path: str = ""

    @property
    def key(self) -> NoticeKey:
        return (self.route, self.notice_id)


@dataclass
class NoticeFailure:
    """A single notice or route that could not be processed in a pass."""

    route: str
    notice_id: Optional[str]
    reason: str


@dataclass
class ReconcileSummary:
    """Outcome of one reconciliation pass for one operator."""

    operator_code: str
    executed_at: str
    added: List[NoticeKey] = field(default_factory=list)
    refreshed: List[NoticeKey] = field(default_factory=list)
    reappeared: List[NoticeKey] = field(default_factory=list)
    retired: List[NoticeKey] = field(default_factory=list)
    failures: List[NoticeFailure] = field(default_factory=list)
    routes_scanned: int = 0
    routes_failed: List[str] = field(default_factory=list)
    routes_skipped: int = 0


@dataclass
class CycleSummary:
    """Aggregated result of one scheduled cycle across all operators."""

    executed_at: str
    status: str
    operator_summaries: Dict[str, ReconcileSummary] = field(default_factory=dict)
    operator_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def added(self) -> List[Tuple[str, str, str]]:
        return [
            (code, route, notice_id)
            for code, summary in self.operator_summaries.items()
            for route, notice_id in summary.added
        ]
