"""
Operation Statistics: Per-Store Latency and Outcome Counters

In-process counters only; exporting them is the caller's concern.
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator


@dataclass
class OperationStats:
    """
    Nanosecond-precision counters for store operations.

    Single-threaded asyncio access; no locking needed.
    """
    calls: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    latency_sum_ns: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    collection_scans: int = 0

    def record(self, operation: str, latency_ns: int, ok: bool = True) -> None:
        self.calls[operation] += 1
        self.latency_sum_ns[operation] += latency_ns
        if not ok:
            self.errors[operation] += 1

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """
        Record call count and latency for the enclosed block.

        An exception escaping the block counts as an error.
        """
        start_ns = time.perf_counter_ns()
        ok = True
        try:
            yield
        except BaseException:
            ok = False
            raise
        finally:
            self.record(operation, time.perf_counter_ns() - start_ns, ok)

    def avg_latency_ms(self, operation: str) -> float:
        count = self.calls.get(operation, 0)
        if count == 0:
            return 0.0
        return (self.latency_sum_ns[operation] / count) / 1_000_000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": dict(self.calls),
            "errors": dict(self.errors),
            "avg_latency_ms": {op: self.avg_latency_ms(op) for op in self.calls},
            "collection_scans": self.collection_scans,
        }
