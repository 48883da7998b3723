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
from abc import ABC, abstractmethod
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class VerifierError(Exception):
    """Base class for errors raised by the rollout verifier."""


class QueryError(VerifierError):
    """The metrics backend could not be reached or returned an error."""


class SampleResult(BaseModel):
    total_requests: int = Field(0, ge=0)
    error_requests: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_error_requests(self) -> "SampleResult":
        if self.error_requests > self.total_requests:
            raise ValueError(
                f"error_requests ({self.error_requests}) cannot exceed total_requests ({self.total_requests})"
            )
        return self

    @property
    def error_ratio(self) -> float:
        # A window without traffic has no errors to speak of.
        if self.total_requests == 0:
            return 0.0
        return self.error_requests / self.total_requests


class MetricsSource(ABC):
    """
    Answers "how many requests, and how many of them 5xx-class, matched the
    filter within [start_time, end_time]".
    """

    @abstractmethod
    def query(self, project: str, metric_filter: str, start_time: datetime, end_time: datetime) -> SampleResult:
        """
        Aggregates request counts for the given interval.

        Raises:
        QueryError: on any transport, authentication or backend failure.
        """
        raise NotImplementedError
