"""Tests for metrics.py -- per-run token and node accounting."""

from metrics import MetricsCollector, RunMetricsData


class TestRunMetricsData:
    def test_no_nodes_reports_full_success(self) -> None:
        metrics = RunMetricsData().to_simulation_metrics(execution_time_ms=12)

        assert metrics.execution_time_ms == 12
        assert metrics.success_rate == 100.0
        assert metrics.error_rate == 0.0
        assert metrics.token_usage.total == 0

    def test_rates_are_percentages_of_nodes(self) -> None:
        data = RunMetricsData(nodes_succeeded=2, nodes_failed=1)
        metrics = data.to_simulation_metrics()

        assert metrics.success_rate == 66.67
        assert metrics.error_rate == 33.33

    def test_duration_fallback(self) -> None:
        assert RunMetricsData(duration_ms=250).to_simulation_metrics().execution_time_ms == 250


class TestMetricsCollector:
    def test_full_lifecycle(self) -> None:
        collector = MetricsCollector()
        collector.start("run_1")
        collector.record_llm_call("run_1", prompt_tokens=100, completion_tokens=40)
        collector.record_llm_call("run_1", prompt_tokens=10, completion_tokens=5)
        collector.record_node("run_1", succeeded=True)
        collector.record_node("run_1", succeeded=False)

        data = collector.finish("run_1")

        assert data is not None
        assert data.prompt_tokens == 110
        assert data.completion_tokens == 45
        assert data.total_tokens == 155
        assert data.llm_calls == 2
        assert data.nodes_total == 2
        assert collector.get("run_1") is None

    def test_start_twice_keeps_data(self) -> None:
        collector = MetricsCollector()
        collector.start("run_1")
        collector.record_node("run_1", succeeded=True)
        collector.start("run_1")

        assert collector.get("run_1").nodes_succeeded == 1

    def test_untracked_run_is_ignored(self) -> None:
        collector = MetricsCollector()
        collector.record_llm_call("ghost", prompt_tokens=1, completion_tokens=1)
        collector.record_node("ghost", succeeded=True)

        assert collector.get("ghost") is None
        assert collector.finish("ghost") is None
