"""
xnoledger.metrics - Operation metrics for the ledger client

Tracks:
- Operation counts and success rates per source (provider or endpoint)
- Fallback events and reasons
- Blocks submitted per kind

Usage:
    from xnoledger.metrics import LedgerMetrics

    metrics = LedgerMetrics()
    metrics.record_operation("work_generate", success=True, source="primary")
    metrics.record_fallback("work_generate", "RPCError", "primary", "public-1")

    stats = metrics.get_stats()
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from collections import defaultdict
from threading import Lock
import time
import logging

logger = logging.getLogger("xnoledger.metrics")


@dataclass
class OperationRecord:
    """Record of a single operation."""
    operation: str
    success: bool
    source: str
    duration_ms: float
    timestamp: float
    error: Optional[str] = None


@dataclass
class FallbackRecord:
    """Record of a fallback event."""
    operation: str
    reason: str
    from_source: str
    to_source: str
    timestamp: float


class LedgerMetrics:
    """
    Thread-safe metrics collector.

    One instance is shared by the components of a LedgerClient; separate
    clients keep separate metrics.
    """

    def __init__(self, max_operations: int = 10000, max_fallbacks: int = 1000):
        self._lock = Lock()
        self._operations: List[OperationRecord] = []
        self._fallbacks: List[FallbackRecord] = []
        self._start_time = time.time()

        self._operation_counts = defaultdict(lambda: defaultdict(int))
        self._fallback_counts = defaultdict(lambda: defaultdict(int))
        self._block_counts = defaultdict(int)

        self._max_operations = max_operations
        self._max_fallbacks = max_fallbacks

    def record_operation(
        self,
        operation: str,
        success: bool,
        source: str,
        duration_ms: float = 0,
        error: Optional[str] = None,
    ):
        """
        Record an operation.

        Args:
            operation: Operation name (work_generate, process, send, ...)
            success: Whether the operation succeeded
            source: Provider or endpoint used
            duration_ms: Operation duration in milliseconds
            error: Error message if failed
        """
        record = OperationRecord(
            operation=operation,
            success=success,
            source=source,
            duration_ms=duration_ms,
            timestamp=time.time(),
            error=error,
        )

        with self._lock:
            self._operations.append(record)
            if len(self._operations) > self._max_operations:
                self._operations = self._operations[-self._max_operations // 2:]

            status = "success" if success else "failure"
            self._operation_counts[operation][f"{source}_{status}"] += 1
            self._operation_counts[operation][status] += 1
            self._operation_counts[operation]["total"] += 1

        if duration_ms > 10000:
            logger.info(
                f"Slow operation: {operation} via {source} took {duration_ms:.0f}ms"
            )

    def record_fallback(
        self,
        operation: str,
        reason: str,
        from_source: str,
        to_source: str,
    ):
        record = FallbackRecord(
            operation=operation,
            reason=reason,
            from_source=from_source,
            to_source=to_source,
            timestamp=time.time(),
        )

        with self._lock:
            self._fallbacks.append(record)
            if len(self._fallbacks) > self._max_fallbacks:
                self._fallbacks = self._fallbacks[-self._max_fallbacks // 2:]

            self._fallback_counts[operation][reason] += 1
            self._fallback_counts["_total"][reason] += 1

        logger.info(
            f"Fallback: {operation} from {from_source} to {to_source} - {reason}"
        )

    def record_block(self, kind: str):
        """Count a block accepted by the ledger."""
        with self._lock:
            self._block_counts[kind] += 1

    def get_operation_count(self, operation: str, key: str = "total") -> int:
        with self._lock:
            return self._operation_counts[operation][key]

    def get_stats(self, window_seconds: int = 3600) -> Dict[str, Any]:
        """
        Get statistics for the specified time window.

        Args:
            window_seconds: Time window in seconds (default: 1 hour)

        Returns:
            Dictionary with statistics
        """
        cutoff = time.time() - window_seconds

        with self._lock:
            recent_ops = [op for op in self._operations if op.timestamp > cutoff]
            recent_fallbacks = [fb for fb in self._fallbacks if fb.timestamp > cutoff]
            blocks = dict(self._block_counts)

        op_stats: Dict[str, Dict[str, Any]] = defaultdict(lambda: {
            "total": 0,
            "success": 0,
            "failure": 0,
            "sources": defaultdict(int),
            "avg_duration_ms": 0,
        })

        durations = defaultdict(list)
        for op in recent_ops:
            stats = op_stats[op.operation]
            stats["total"] += 1
            stats["success" if op.success else "failure"] += 1
            if op.success:
                stats["sources"][op.source] += 1
            if op.duration_ms > 0:
                durations[op.operation].append(op.duration_ms)

        for op_name, stats in op_stats.items():
            if durations[op_name]:
                stats["avg_duration_ms"] = sum(durations[op_name]) / len(durations[op_name])
            stats["success_rate"] = stats["success"] / stats["total"] * 100
            stats["sources"] = dict(stats["sources"])

        fallback_stats = defaultdict(int)
        for fb in recent_fallbacks:
            fallback_stats[fb.reason] += 1
            fallback_stats["_total"] += 1

        return {
            "window_seconds": window_seconds,
            "uptime_seconds": time.time() - self._start_time,
            "operations": dict(op_stats),
            "fallbacks": dict(fallback_stats),
            "blocks": blocks,
        }

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        lines.append("# HELP xnoledger_operations_total Total operations by type and status")
        lines.append("# TYPE xnoledger_operations_total counter")
        with self._lock:
            op_counts = {k: dict(v) for k, v in self._operation_counts.items()}
            fb_counts = dict(self._fallback_counts["_total"])
            blocks = dict(self._block_counts)

        for operation, counts in op_counts.items():
            for status in ("success", "failure"):
                lines.append(
                    f'xnoledger_operations_total{{operation="{operation}",status="{status}"}} '
                    f'{counts.get(status, 0)}'
                )

        lines.append("# HELP xnoledger_fallbacks_total Total fallback events by reason")
        lines.append("# TYPE xnoledger_fallbacks_total counter")
        for reason, count in fb_counts.items():
            lines.append(f'xnoledger_fallbacks_total{{reason="{reason}"}} {count}')

        lines.append("# HELP xnoledger_blocks_total Blocks accepted by the ledger")
        lines.append("# TYPE xnoledger_blocks_total counter")
        for kind, count in blocks.items():
            lines.append(f'xnoledger_blocks_total{{kind="{kind}"}} {count}')

        return "\n".join(lines) + "\n"

    def reset(self):
        """Reset all metrics."""
        with self._lock:
            self._operations.clear()
            self._fallbacks.clear()
            self._operation_counts.clear()
            self._fallback_counts.clear()
            self._block_counts.clear()
            self._start_time = time.time()
