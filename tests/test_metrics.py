"""Tests for the windowed CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from calltaker.services.metrics import MetricsClient


def _make_client(*, enabled: bool = False) -> MetricsClient:
    with (
        patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}),
        patch.object(MetricsClient, "_start_flush_thread") as start,
    ):
        client = MetricsClient()
    assert start.called is enabled
    client._cw_client = MagicMock()
    return client


def _by_name(data: list[dict], name: str) -> list[dict]:
    return [m for m in data if m["MetricName"] == name]


def _dims(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestCacheOutcomes:
    def test_repeated_outcomes_collapse_into_one_summed_datum(self):
        client = _make_client()
        for _ in range(5):
            client.record_cache("voucher_accounts", "hit")
        client.record_cache("voucher_accounts", "stale")
        client.record_cache("dispatch_token", "hit")

        data = client.snapshot()

        counts = {
            (_dims(m)["Cache"], _dims(m)["Outcome"]): m["Value"]
            for m in _by_name(data, "Cache/Requests")
        }
        assert counts == {
            ("voucher_accounts", "hit"): 5,
            ("voucher_accounts", "stale"): 1,
            ("dispatch_token", "hit"): 1,
        }
        assert all(m["Unit"] == "Count" for m in data)

    def test_unknown_outcome_is_rejected(self):
        client = _make_client()
        with pytest.raises(ValueError, match="Unknown cache outcome"):
            client.record_cache("voucher_accounts", "miss")
        assert client.snapshot() == []


class TestUpstreamCalls:
    def test_latencies_fold_into_statistic_set(self):
        client = _make_client()
        client.record_success("dispatch", "GET /Api/Voucher/GetAccounts", latency_ms=80.0)
        client.record_success("dispatch", "GET /Api/Voucher/GetAccounts", latency_ms=120.0)
        client.record_failure(
            "dispatch", "GET /Api/Voucher/GetAccounts", error_type="500", latency_ms=40.0,
        )

        (latency,) = _by_name(client.snapshot(), "Upstream/Latency")
        assert _dims(latency) == {"Service": "dispatch", "Operation": "GET /Api/Voucher/GetAccounts"}
        assert latency["StatisticValues"] == {
            "SampleCount": 3, "Sum": 240.0, "Minimum": 40.0, "Maximum": 120.0,
        }
        assert latency["Unit"] == "Milliseconds"

    def test_request_count_split_by_status(self):
        client = _make_client()
        client.record_success("openai", "POST /v1/responses", latency_ms=900.0)
        client.record_failure("openai", "POST /v1/responses", error_type="ReadTimeout")
        client.record_failure("openai", "POST /v1/responses", error_type="ReadTimeout")

        data = client.snapshot()
        statuses = {_dims(m)["Status"]: m["Value"] for m in _by_name(data, "Upstream/RequestCount")}
        assert statuses == {"success": 1, "failure": 2}
        (errors,) = _by_name(data, "Upstream/ErrorCount")
        assert _dims(errors) == {"Service": "openai", "ErrorType": "ReadTimeout"}
        assert errors["Value"] == 2

    def test_failure_without_latency_stays_out_of_statistics(self):
        client = _make_client()
        client.record_failure("dispatch", "POST /login/authenticate", error_type="ConnectError")
        assert _by_name(client.snapshot(), "Upstream/Latency") == []


class TestFlush:
    def test_disabled_flush_drops_window(self):
        client = _make_client()
        client.record_cache("dispatch_token", "hit")
        assert client.flush() == 0
        assert client.snapshot() == []

    def test_enabled_flush_sends_window_then_resets(self):
        client = _make_client(enabled=True)
        client.record_success("dispatch", "GET /a", latency_ms=10.0)
        for _ in range(30):
            client.record_cache("voucher_accounts", "refresh")

        assert client.flush() == 3
        kwargs = client._cw_client.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == "CallTaker"
        assert len(kwargs["MetricData"]) == 3
        assert client.flush() == 0
        client._cw_client.put_metric_data.assert_called_once()

    def test_flush_failure_is_logged_not_raised(self):
        client = _make_client(enabled=True)
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_cache("voucher_accounts", "empty")
        assert client.flush() == 0

    def test_close_stops_thread_and_sends_remainder(self):
        client = _make_client(enabled=True)
        client.record_cache("voucher_accounts", "stale")

        assert client.close() == 1
        assert client._stop.is_set()
