"""Timing helpers and in-memory flow metrics for the sync engine."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("columnsync.perf")


def timed_async(func: Callable) -> Callable:
    """
    Decorator that logs how long an async engine call took (DEBUG).

    Usage::

        @timed_async
        async def load(self, ...):
            ...
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "async call timed",
                extra={"function": func.__qualname__, "duration_ms": duration_ms},
            )
    return wrapper


def tracked_flow(name: str) -> Callable:
    """
    Decorator for user-triggered flows: times the flow, records it on the
    module ``tracker`` and counts exceptions (which are re-raised).
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.perf_counter()
            failed = False
            try:
                return await func(*args, **kwargs)
            except Exception:
                failed = True
                raise
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                tracker.record_flow(name, duration_ms, failed=failed)
                logger.debug("flow finished", extra={"flow": name, "duration_ms": duration_ms})
        return wrapper
    return decorator


class FlowTracker:
    """
    Thread-safe in-memory tracker for flow-level metrics.

    Tracks:
    - Runs per flow
    - Average and slowest duration per flow
    - Error count broken down by flow name
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._durations: Dict[str, list] = {}   # flow -> [duration_ms, ...]
        self._error_counts: Dict[str, int] = {}
        self._slowest_flow: Optional[str] = None
        self._slowest_flow_ms: float = 0.0

    def record_flow(self, name: str, duration_ms: float, failed: bool = False) -> None:
        with self._lock:
            self._durations.setdefault(name, []).append(duration_ms)
            if failed:
                self._error_counts[name] = self._error_counts.get(name, 0) + 1
            if duration_ms > self._slowest_flow_ms:
                self._slowest_flow_ms = duration_ms
                self._slowest_flow = name

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            flows_run             : int
            runs_by_flow          : dict  {flow: count}
            flow_avg_durations_ms : dict  {flow: avg_ms}
            slowest_flow          : str | None
            slowest_flow_ms       : float
            error_count           : int
            error_count_by_flow   : dict  {flow: count}
        """
        with self._lock:
            avgs = {
                name: round(sum(d) / len(d), 2) if d else 0.0
                for name, d in self._durations.items()
            }
            return {
                "flows_run": sum(len(d) for d in self._durations.values()),
                "runs_by_flow": {name: len(d) for name, d in self._durations.items()},
                "flow_avg_durations_ms": avgs,
                "slowest_flow": self._slowest_flow,
                "slowest_flow_ms": round(self._slowest_flow_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_flow": dict(self._error_counts),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._durations.clear()
            self._error_counts.clear()
            self._slowest_flow = None
            self._slowest_flow_ms = 0.0


tracker = FlowTracker()
