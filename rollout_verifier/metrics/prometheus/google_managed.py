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
from typing import Any, Optional
from pydantic import HttpUrl
from rollout_verifier.metrics.prometheus.base import PrometheusMetricsSource
from rollout_verifier.config import PrometheusSourceConfig
import google.auth
import google.auth.transport.requests
from google.auth.exceptions import GoogleAuthError
from ..base import QueryError

logger = logging.getLogger(__name__)


class GoogleManagedPrometheusMetricsSource(PrometheusMetricsSource):
    def __init__(self, config: PrometheusSourceConfig, request_timeout: Optional[float] = None) -> None:
        if not config.google_managed:
            raise Exception("google managed prometheus config missing")
        # Assumes that Application Default Credentials are set up, ref:
        # https://googleapis.dev/python/google-auth/latest/user-guide.html#application-default-credentials
        credentials, project_id = google.auth.default()  # type: ignore[no-untyped-call]
        self.credentials = credentials
        self.project_id = project_id
        config = config.model_copy(
            update={
                "url": HttpUrl(f"https://monitoring.googleapis.com/v1/projects/{self.project_id}/location/global/prometheus"),
                "google_managed": False,
            }
        )
        super().__init__(config, request_timeout)

    def get_headers(self) -> dict[str, Any]:
        auth_req = google.auth.transport.requests.Request()
        try:
            self.credentials.refresh(auth_req)
        except GoogleAuthError as e:
            raise QueryError(f"unable to refresh credentials: {e}") from e
        return {"Authorization": "Bearer " + self.credentials.token}
