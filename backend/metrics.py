"""In-memory metrics collection for active simulation runs.

This module provides the MetricsCollector class that accumulates token usage
and node outcomes while a run executes. When the run finishes, the final
numbers become the run's SimulationMetrics and are persisted with it.

Usage:
    >>> from metrics import MetricsCollector
    >>> collector = MetricsCollector()
    >>> collector.start("run_abc123")
    >>> collector.record_llm_call("run_abc123", prompt_tokens=100, completion_tokens=50)
    >>> collector.record_node("run_abc123", succeeded=True)
    >>> final = collector.finish("run_abc123")
    >>> final.to_simulation_metrics()  # SimulationMetrics(...)
"""

import time
from dataclasses import dataclass, field

import structlog

from models.schemas import SimulationMetrics, TokenUsage

logger = structlog.get_logger(__name__)


@dataclass
class RunMetricsData:
    """Accumulated metrics for a single run.

    Attributes:
        total_tokens: Sum of prompt and completion tokens.
        prompt_tokens: Total input/prompt tokens across all model steps.
        completion_tokens: Total output/completion tokens across all model steps.
        llm_calls: Number of model invocations (real or estimated).
        nodes_succeeded: Number of graph nodes that completed.
        nodes_failed: Number of graph nodes that failed.
        duration_ms: Total execution time in milliseconds (set by finish()).
        started_at: Unix timestamp when tracking began.
    """

    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    llm_calls: int = 0
    nodes_succeeded: int = 0
    nodes_failed: int = 0
    duration_ms: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def nodes_total(self) -> int:
        return self.nodes_succeeded + self.nodes_failed

    def to_simulation_metrics(self, execution_time_ms: int | None = None) -> SimulationMetrics:
        """Convert to the SimulationMetrics stored on a run.

        Success and error rates are percentages of processed nodes. A run
        that processed no nodes reports 100% success.

        Args:
            execution_time_ms: Overrides ``duration_ms`` (the simulator uses
                the run's own start/end timestamps).
        """
        if self.nodes_total:
            success_rate = round(100.0 * self.nodes_succeeded / self.nodes_total, 2)
            error_rate = round(100.0 - success_rate, 2)
        else:
            success_rate, error_rate = 100.0, 0.0

        return SimulationMetrics(
            execution_time_ms=max(
                0, execution_time_ms if execution_time_ms is not None else self.duration_ms
            ),
            token_usage=TokenUsage(
                prompt=self.prompt_tokens,
                completion=self.completion_tokens,
                total=self.total_tokens,
            ),
            success_rate=success_rate,
            error_rate=error_rate,
        )


class MetricsCollector:
    """In-memory collector that tracks per-run metrics.

    Each active run gets its own RunMetricsData instance. All mutations are
    plain synchronous updates made from the event loop thread.

    Attributes:
        _runs: Mapping from run_id to its metrics data.
    """

    def __init__(self) -> None:
        """Initialize an empty metrics collector."""
        self._runs: dict[str, RunMetricsData] = {}
        logger.info("metrics_collector_initialized")

    def start(self, run_id: str) -> None:
        """Begin tracking metrics for a run. No-op if already tracked."""
        if run_id in self._runs:
            logger.debug("metrics_already_tracking", run_id=run_id)
            return

        self._runs[run_id] = RunMetricsData()
        logger.debug("metrics_tracking_started", run_id=run_id)

    def record_llm_call(
        self,
        run_id: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> None:
        """Record token usage from a single model step.

        If the run is not being tracked, this is a no-op with a warning.

        Args:
            run_id: The run the call belongs to.
            prompt_tokens: Number of input tokens used.
            completion_tokens: Number of output tokens used.
        """
        data = self._runs.get(run_id)
        if data is None:
            logger.warning("metrics_record_no_run", run_id=run_id)
            return

        data.prompt_tokens += prompt_tokens
        data.completion_tokens += completion_tokens
        data.total_tokens += prompt_tokens + completion_tokens
        data.llm_calls += 1

        logger.debug(
            "metrics_llm_call_recorded",
            run_id=run_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_llm_calls=data.llm_calls,
        )

    def record_node(self, run_id: str, succeeded: bool) -> None:
        """Count one processed graph node."""
        data = self._runs.get(run_id)
        if data is None:
            logger.warning("metrics_node_no_run", run_id=run_id)
            return

        if succeeded:
            data.nodes_succeeded += 1
        else:
            data.nodes_failed += 1

    def finish(self, run_id: str) -> RunMetricsData | None:
        """Finalize metrics for a run, calculating duration.

        The run's data is removed from the collector after this call.

        Returns:
            The final RunMetricsData, or None if not tracked.
        """
        data = self._runs.pop(run_id, None)
        if data is None:
            logger.warning("metrics_finish_no_run", run_id=run_id)
            return None

        data.duration_ms = int((time.time() - data.started_at) * 1000)

        logger.info(
            "metrics_run_finished",
            run_id=run_id,
            total_tokens=data.total_tokens,
            llm_calls=data.llm_calls,
            nodes_succeeded=data.nodes_succeeded,
            nodes_failed=data.nodes_failed,
            duration_ms=data.duration_ms,
        )
        return data

    def get(self, run_id: str) -> RunMetricsData | None:
        """Current (in-progress) metrics for a run. Does NOT remove it."""
        return self._runs.get(run_id)
