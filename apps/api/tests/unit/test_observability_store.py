import json
import logging

from app.observability import JsonFormatter, metrics_store, observe_timing, set_request_id


def test_metrics_store_reset_clears_counters_and_timings():
    metrics_store.increment("delivery_send_total")
    metrics_store.observe("delivery_send_seconds", 0.25)

    metrics_store.reset()

    snapshot = metrics_store.snapshot()
    assert snapshot.counters == {}
    assert snapshot.timings == {}


def test_observe_timing_records_even_when_block_raises():
    try:
        with observe_timing("provider_request_seconds"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert metrics_store.snapshot().timings["provider_request_seconds"]["count"] == 1


def test_json_formatter_includes_request_and_order_context():
    set_request_id("req-1")
    record = logging.LogRecord(
        "delivery_hub.dispatch", logging.INFO, __file__, 1, "order_dispatched", None, None
    )
    record.order_id = "o-1"
    record.tracking_number = "TRK-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "order_dispatched"
    assert payload["request_id"] == "req-1"
    assert payload["order_id"] == "o-1"
    assert payload["tracking_number"] == "TRK-1"
    assert payload["company_id"] is None
