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
from datetime import datetime, timezone
from typing import Any, Optional
import requests
import google.auth
import google.auth.transport.requests
from google.auth.exceptions import GoogleAuthError
from rollout_verifier.config import CloudMonitoringSourceConfig
from .base import MetricsSource, QueryError, SampleResult

logger = logging.getLogger(__name__)

CLOUD_MONITORING_API = "https://monitoring.googleapis.com/v3"
MONITORING_READ_SCOPE = "https://www.googleapis.com/auth/monitoring.read"


def format_timestamp(ts: datetime) -> str:
    # Cloud Monitoring intervals are expressed in whole seconds.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CloudMonitoringMetricsSource(MetricsSource):
    """
    Reads request counts from the Cloud Monitoring timeSeries.list API.

    Every point of every matching series is added to the total; points of series
    whose response code label equals the configured error class are also added
    to the error count.
    """

    def __init__(self, config: CloudMonitoringSourceConfig, request_timeout: Optional[float] = None) -> None:
        self.response_code_label = config.response_code_label
        self.error_class = config.error_class
        self.request_timeout = request_timeout
        credentials, _ = google.auth.default(scopes=[MONITORING_READ_SCOPE])  # type: ignore[no-untyped-call]
        self.credentials = credentials
        logger.debug("Created new Cloud Monitoring metrics source")

    def query(self, project: str, metric_filter: str, start_time: datetime, end_time: datetime) -> SampleResult:
        url = f"{CLOUD_MONITORING_API}/projects/{project}/timeSeries"
        params = {
            "filter": metric_filter,
            "interval.startTime": format_timestamp(start_time),
            "interval.endTime": format_timestamp(end_time),
            "view": "FULL",
        }

        total_requests = 0
        error_requests = 0
        page_token: Optional[str] = None
        while True:
            page = self._list_page(url, dict(params, pageToken=page_token) if page_token else params)
            try:
                for series in page.get("timeSeries", []):
                    labels = series.get("metric", {}).get("labels", {})
                    is_error = labels.get(self.response_code_label) == self.error_class
                    for point in series.get("points", []):
                        count = self._point_value(point)
                        total_requests += count
                        if is_error:
                            error_requests += count
            except (AttributeError, TypeError) as e:
                raise QueryError(f"could not read time series value: {e}") from e
            page_token = page.get("nextPageToken")
            if not page_token:
                break
        return SampleResult(total_requests=total_requests, error_requests=error_requests)

    def _list_page(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        try:
            response = requests.get(url, headers=self.get_headers(), params=params, timeout=self.request_timeout)
            response.raise_for_status()
            page = response.json()
        except (requests.RequestException, ValueError) as e:
            raise QueryError(f"could not read time series value: {e}") from e
        if not isinstance(page, dict):
            raise QueryError(f"could not read time series value: unexpected response {page!r}")
        return page

    def _point_value(self, point: dict[str, Any]) -> int:
        value = point.get("value", {})
        try:
            # int64 values are serialized as strings in the JSON API.
            if "int64Value" in value:
                return int(value["int64Value"])
            if "doubleValue" in value:
                return round(float(value["doubleValue"]))
        except (TypeError, ValueError) as e:
            raise QueryError(f"could not read time series value: {value!r}") from e
        raise QueryError(f"expected a numeric point value, instead got: {value!r}")

    def get_headers(self) -> dict[str, Any]:
        auth_req = google.auth.transport.requests.Request()
        try:
            self.credentials.refresh(auth_req)
        except GoogleAuthError as e:
            raise QueryError(f"unable to refresh credentials: {e}") from e
        return {"Authorization": "Bearer " + self.credentials.token}
