"""
Query Plan Inspection

Parses `explain("executionStats")` output for find and aggregate commands
and reports whether the winning plan used an index. A collection scan on a
hot path is a degraded-performance condition: it is logged as a warning
and counted, never returned as an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional

COLLSCAN = "COLLSCAN"
INDEX_STAGES = frozenset({"IXSCAN", "DISTINCT_SCAN", "COUNT_SCAN", "EXPRESS_IXSCAN"})


def _walk_stages(node: Any) -> Iterator[Mapping[str, Any]]:
    """Depth-first walk over every plan stage in an explain tree."""
    if isinstance(node, Mapping):
        if "stage" in node:
            yield node
        for key in ("inputStage", "queryPlan", "winningPlan"):
            if key in node:
                yield from _walk_stages(node[key])
        for key in ("inputStages", "shards"):
            for child in node.get(key, ()):
                yield from _walk_stages(child)
    elif isinstance(node, list):
        for child in node:
            yield from _walk_stages(child)


def _planner_and_stats(explain: Mapping[str, Any]) -> tuple[Any, Mapping[str, Any]]:
    # Aggregations on older servers nest the find plan under stages[0].$cursor
    if "stages" in explain and explain["stages"]:
        cursor = explain["stages"][0].get("$cursor", {})
        return cursor.get("queryPlanner", {}), cursor.get("executionStats", {})
    return explain.get("queryPlanner", {}), explain.get("executionStats", {})


@dataclass(frozen=True, slots=True)
class QueryPlan:
    """Summary of a winning plan."""
    stages: tuple[str, ...] = ()
    index_names: tuple[str, ...] = ()
    docs_examined: int = 0
    keys_examined: int = 0
    returned: int = 0
    execution_ms: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_collection_scan(self) -> bool:
        return COLLSCAN in self.stages

    @property
    def uses_index(self) -> bool:
        return any(s in INDEX_STAGES for s in self.stages)

    @property
    def index_name(self) -> Optional[str]:
        return self.index_names[0] if self.index_names else None

    @classmethod
    def from_explain(cls, explain: Mapping[str, Any]) -> QueryPlan:
        planner, stats = _planner_and_stats(explain)
        nodes = list(_walk_stages(planner.get("winningPlan", {})))
        return cls(
            stages=tuple(n["stage"] for n in nodes),
            index_names=tuple(n["indexName"] for n in nodes if "indexName" in n),
            docs_examined=int(stats.get("totalDocsExamined", 0)),
            keys_examined=int(stats.get("totalKeysExamined", 0)),
            returned=int(stats.get("nReturned", 0)),
            execution_ms=int(stats.get("executionTimeMillis", 0)),
            raw=explain,
        )

    def to_log_fields(self) -> dict[str, Any]:
        return {
            "stages": list(self.stages),
            "index": self.index_name,
            "docs_examined": self.docs_examined,
            "keys_examined": self.keys_examined,
            "returned": self.returned,
            "execution_ms": self.execution_ms,
        }
