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
from typing import List, Optional, Sequence, Tuple, Union
from .base import MetricsSource, QueryError, SampleResult

logger = logging.getLogger(__name__)

MockResponse = Union[SampleResult, Exception]


class MockMetricsSource(MetricsSource):
    """
    Replays scripted responses, one per query, repeating the last one once the
    script runs out. Exceptions in the script are raised instead of returned.
    Without a script every window reports no traffic.
    """

    def __init__(self, responses: Optional[Sequence[MockResponse]] = None) -> None:
        self.responses: List[MockResponse] = list(responses or [SampleResult()])
        self.queries: List[Tuple[str, str, datetime, datetime]] = []

    def query(self, project: str, metric_filter: str, start_time: datetime, end_time: datetime) -> SampleResult:
        index = min(len(self.queries), len(self.responses) - 1)
        self.queries.append((project, metric_filter, start_time, end_time))
        response = self.responses[index]
        logger.debug(f"Mock metrics source answering query {len(self.queries)} with {response!r}")
        if isinstance(response, QueryError):
            raise response
        if isinstance(response, Exception):
            raise QueryError(str(response)) from response
        return response
