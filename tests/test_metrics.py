import random

from infrastructure.observability.metrics import LatencyHistogram, MetricsCollector


def test_percentiles_do_not_depend_on_arrival_order():
    samples = [float(value) for value in range(1, 101)]
    shuffled = samples[:]
    random.Random(7).shuffle(shuffled)

    ordered, mixed = LatencyHistogram(), LatencyHistogram()
    for value in samples:
        ordered.observe(value)
    for value in shuffled:
        mixed.observe(value)

    assert ordered.summary() == mixed.summary()


def test_percentile_resolves_to_bucket_upper_bound():
    histogram = LatencyHistogram(bounds=(10, 100, 1000))
    for value in [5] * 90 + [50] * 9 + [500]:
        histogram.observe(value)

    assert histogram.percentile(0.50) == 10
    assert histogram.percentile(0.95) == 100
    assert histogram.percentile(0.99) == 100
    assert histogram.percentile(1.0) == 500


def test_percentile_is_clamped_to_observed_max():
    histogram = LatencyHistogram(bounds=(10, 100))
    histogram.observe(42)

    assert histogram.percentile(0.5) == 42


def test_overflow_bucket_reports_max():
    histogram = LatencyHistogram(bounds=(10,))
    histogram.observe(5)
    histogram.observe(250)

    assert histogram.percentile(0.99) == 250


def test_empty_histogram_summary():
    summary = LatencyHistogram().summary()

    assert summary["count"] == 0
    assert summary["p95"] == 0.0
    assert summary["min"] == 0.0


def test_collector_summary():
    metrics = MetricsCollector()
    metrics.record_request("POST", "/v1/tools/execute", 200, 12.0)
    metrics.record_request("POST", "/v1/tools/execute", 503, 30.0)
    metrics.record_pipeline_error("ROUTER_ERROR")
    metrics.record_tool_execution("plan_create", success=False)
    metrics.set_gauge("sse.open", 2)

    summary = metrics.get_metrics_summary()

    assert summary["counters"]["http.requests"] == 2
    assert summary["counters"]["http.errors"] == 1
    assert summary["counters"]["errors.ROUTER_ERROR"] == 1
    assert summary["counters"]["tools.failures"] == 1
    assert summary["latency"]["http.POST /v1/tools/execute"]["count"] == 2
    assert summary["gauges"] == {"sse.open": 2}
