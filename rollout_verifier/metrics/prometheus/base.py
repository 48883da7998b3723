# Copyright 2025 The Kubernetes Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import logging
from datetime import datetime
from typing import Any, Optional
import requests
from rollout_verifier.config import PrometheusSourceConfig
from ..base import MetricsSource, QueryError, SampleResult

logger = logging.getLogger(__name__)

ERROR_CODE_PREFIX = "5"


class PrometheusQueryBuilder:
    def __init__(self, metric_filter: str, response_code_label: str, window_seconds: float):
        self.metric_filter = metric_filter
        self.response_code_label = response_code_label
        self.window_seconds = window_seconds

    def build_query(self) -> str:
        """
        Builds the PromQL query returning the request count increase over the
        window, split by response code.

        Returns:
        The PromQL query.
        """
        return "sum by (%s) (increase(%s[%.0fs]))" % (self.response_code_label, self.metric_filter, self.window_seconds)


class PrometheusMetricsSource(MetricsSource):
    def __init__(self, config: PrometheusSourceConfig, request_timeout: Optional[float] = None) -> None:
        if config:
            if not config.url:
                raise Exception("prometheus url missing")
            self.query_url = config.url.unicode_string().rstrip("/") + "/api/v1/query"
            self.response_code_label = config.response_code_label
            self.request_timeout = request_timeout
            logger.debug(f"Prometheus metrics source configured, querying metrics from '{self.query_url}'")
        else:
            raise Exception("prometheus config missing")

    def query(self, project: str, metric_filter: str, start_time: datetime, end_time: datetime) -> SampleResult:
        """
        Evaluates the request count increase over [start_time, end_time] at end_time.

        Prometheus has no notion of the project scope, so it is ignored here.
        """
        window_seconds = (end_time - start_time).total_seconds()
        query = PrometheusQueryBuilder(metric_filter, self.response_code_label, window_seconds).build_query()
        result = self.execute_query(query, str(end_time.timestamp()))

        total_requests = 0
        error_requests = 0
        try:
            for series in result:
                count = self._series_value(series)
                total_requests += count
                code = str(series.get("metric", {}).get(self.response_code_label, ""))
                if code.startswith(ERROR_CODE_PREFIX):
                    error_requests += count
        except (AttributeError, TypeError) as e:
            raise QueryError(f"malformed series in query result: {e}") from e
        return SampleResult(total_requests=total_requests, error_requests=error_requests)

    def execute_query(self, query: str, eval_time: str) -> list[dict[str, Any]]:
        """
        Executes the given instant query on the Prometheus server.

        Args:
        query: the PromQL query to execute
        eval_time: the time at which the query is evaluated

        Returns:
        The result vector of the query.
        """
        try:
            logger.debug(f"Making PromQL query: '{query}'")
            response = requests.get(
                self.query_url,
                headers=self.get_headers(),
                params={"query": query, "time": eval_time},
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            response_obj = response.json()
        except (requests.RequestException, ValueError) as e:
            raise QueryError(f"error executing query {query!r}: {e}") from e

        # Sample response:
        # {
        #     "status": "success",
        #     "data": {
        #         "resultType": "vector",
        #         "result": [
        #             {
        #                 "metric": {"code": "503"},
        #                 "value": [1632741820.781, "12"]
        #             }
        #         ]
        #     }
        # }
        if not isinstance(response_obj, dict) or response_obj.get("status") != "success":
            raise QueryError(f"error executing query {query!r}: {response_obj}")
        data = response_obj.get("data")
        if not isinstance(data, dict) or data.get("resultType") != "vector":
            raise QueryError(f"unexpected result data for query {query!r}: {data!r}")
        result = data.get("result", [])
        if not isinstance(result, list):
            raise QueryError(f"malformed result for query {query!r}: {result!r}")
        return result

    def _series_value(self, series: dict[str, Any]) -> int:
        value = series.get("value")
        if not isinstance(value, list) or len(value) < 2:
            raise QueryError(f"malformed sample in query result: {series!r}")
        try:
            # increase() extrapolates, so the count is rarely a whole number.
            return max(0, round(float(value[1])))
        except ValueError as e:
            raise QueryError(f"error converting value to a number: {value[1]!r}") from e

    def get_headers(self) -> dict[str, Any]:
        return {}
