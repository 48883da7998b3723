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
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from pydantic import BaseModel
from rollout_verifier.metrics.base import SampleResult


class VerdictStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    QUERY_ERROR = "query_error"


class Verdict(BaseModel):
    status: VerdictStatus
    # Number of samples that were evaluated before the verdict was reached.
    samples: int = 0
    violation_duration: Optional[timedelta] = None
    message: Optional[str] = None

    @classmethod
    def passed(cls, samples: int) -> "Verdict":
        return cls(status=VerdictStatus.PASSED, samples=samples)

    @classmethod
    def failed(cls, samples: int, violation_duration: timedelta) -> "Verdict":
        return cls(status=VerdictStatus.FAILED, samples=samples, violation_duration=violation_duration)

    @classmethod
    def query_error(cls, samples: int, message: str) -> "Verdict":
        return cls(status=VerdictStatus.QUERY_ERROR, samples=samples, message=message)

    @property
    def exit_code(self) -> int:
        return 0 if self.status == VerdictStatus.PASSED else 1

    def describe(self) -> str:
        if self.status == VerdictStatus.PASSED:
            return "Done"
        if self.status == VerdictStatus.FAILED:
            return f"max error percentage has been exceeded for {self.violation_duration}, verification failed"
        return f"failed to read time series: {self.message}"


def is_within_threshold(sample: SampleResult, max_error_percentage: float) -> bool:
    """
    A window is healthy when it saw no traffic or its error percentage is
    strictly below the maximum. A percentage equal to the maximum is a violation.
    """
    if sample.total_requests == 0:
        return True
    # Same as error_ratio * 100 < max_error_percentage, without the rounding
    # error of the division (0.1 * 100 != 10).
    return sample.error_requests * 100 < max_error_percentage * sample.total_requests


@dataclass
class VerificationState:
    sample_index: int = 1
    # End time of the first sample of the current unbroken violation streak;
    # None while the threshold is not being violated.
    violation_start_time: Optional[datetime] = None

    def record(self, end_time: datetime, within_threshold: bool) -> Optional[timedelta]:
        """
        Updates the violation streak with a sample ending at end_time.

        Returns:
        How long the threshold has been continuously violated, or None when the
        sample was within threshold.
        """
        if within_threshold:
            self.violation_start_time = None
            return None
        if self.violation_start_time is None:
            self.violation_start_time = end_time
        return end_time - self.violation_start_time
