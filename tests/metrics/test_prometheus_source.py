from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from rollout_verifier.config import PrometheusSourceConfig
from rollout_verifier.metrics import GoogleManagedPrometheusMetricsSource, PrometheusMetricsSource, QueryError
from rollout_verifier.metrics.prometheus import PrometheusQueryBuilder

END = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
START = END - timedelta(minutes=5)
FILTER = 'http_requests_total{job="api"}'


def vector_response(result: list[dict[str, Any]], status: str = "success") -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"status": status, "data": {"resultType": "vector", "result": result}}
    return response


def make_source(**kwargs: Any) -> PrometheusMetricsSource:
    return PrometheusMetricsSource(PrometheusSourceConfig(url="http://prometheus:9090"), **kwargs)


def test_build_query() -> None:
    query = PrometheusQueryBuilder(FILTER, "code", 300).build_query()
    assert query == 'sum by (code) (increase(http_requests_total{job="api"}[300s]))'


def test_query_sums_counts_by_response_code() -> None:
    source = make_source(request_timeout=30)
    result = [
        {"metric": {"code": "200"}, "value": [1748779200, "80.4"]},
        {"metric": {"code": "503"}, "value": [1748779200, "12"]},
        {"metric": {"code": "500"}, "value": [1748779200, "3"]},
        {"metric": {"code": "404"}, "value": [1748779200, "5"]},
    ]
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response(result)) as get:
        sample = source.query("ignored-project", FILTER, START, END)

    assert sample.total_requests == 100
    assert sample.error_requests == 15
    get.assert_called_once_with(
        "http://prometheus:9090/api/v1/query",
        headers={},
        params={
            "query": 'sum by (code) (increase(http_requests_total{job="api"}[300s]))',
            "time": str(END.timestamp()),
        },
        timeout=30,
    )


def test_query_without_series_is_zero_traffic() -> None:
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response([])):
        sample = make_source().query("p", FILTER, START, END)
    assert sample.total_requests == 0
    assert sample.error_requests == 0


def test_custom_response_code_label() -> None:
    config = PrometheusSourceConfig(url="http://prometheus:9090", response_code_label="status_class")
    source = PrometheusMetricsSource(config)
    result = [
        {"metric": {"status_class": "2xx"}, "value": [1748779200, "90"]},
        {"metric": {"status_class": "5xx"}, "value": [1748779200, "10"]},
    ]
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response(result)) as get:
        sample = source.query("p", FILTER, START, END)

    assert (sample.total_requests, sample.error_requests) == (100, 10)
    assert get.call_args.kwargs["params"]["query"].startswith("sum by (status_class)")


def test_transport_error_raises_query_error() -> None:
    with patch(
        "rollout_verifier.metrics.prometheus.base.requests.get",
        side_effect=requests.ConnectionError("connection refused"),
    ):
        with pytest.raises(QueryError, match="connection refused"):
            make_source().query("p", FILTER, START, END)


def test_http_error_raises_query_error() -> None:
    response = vector_response([])
    response.raise_for_status.side_effect = requests.HTTPError("400 Client Error")
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=response):
        with pytest.raises(QueryError, match="400 Client Error"):
            make_source().query("p", FILTER, START, END)


def test_failed_status_raises_query_error() -> None:
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response([], "error")):
        with pytest.raises(QueryError):
            make_source().query("p", FILTER, START, END)


def test_malformed_value_raises_query_error() -> None:
    result = [{"metric": {"code": "200"}, "value": [1748779200, "not-a-number"]}]
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response(result)):
        with pytest.raises(QueryError, match="not-a-number"):
            make_source().query("p", FILTER, START, END)


@pytest.mark.parametrize(
    "series",
    [
        {"metric": None, "value": [1748779200, "1"]},
        "junk",
        None,
        {"metric": ["code", "500"], "value": [1748779200, "1"]},
        {"metric": {"code": "200"}, "value": None},
    ],
)
def test_malformed_series_raises_query_error(series: Any) -> None:
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response([series])):
        with pytest.raises(QueryError):
            make_source().query("p", FILTER, START, END)


@pytest.mark.parametrize("data", [None, "oops", ["result"]])
def test_malformed_data_raises_query_error(data: Any) -> None:
    response = MagicMock()
    response.json.return_value = {"status": "success", "data": data}
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=response):
        with pytest.raises(QueryError):
            make_source().query("p", FILTER, START, END)


def test_google_managed_prometheus_uses_adc_project_and_token() -> None:
    credentials = MagicMock()
    credentials.token = "secret-token"
    with patch("google.auth.default", return_value=(credentials, "adc-project")):
        source = GoogleManagedPrometheusMetricsSource(PrometheusSourceConfig(google_managed=True))

    assert source.query_url == (
        "https://monitoring.googleapis.com/v1/projects/adc-project/location/global/prometheus/api/v1/query"
    )
    with patch("rollout_verifier.metrics.prometheus.base.requests.get", return_value=vector_response([])) as get:
        source.query("p", FILTER, START, END)

    credentials.refresh.assert_called_once()
    assert get.call_args.kwargs["headers"] == {"Authorization": "Bearer secret-token"}
