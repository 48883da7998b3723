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
from typing import Optional
from rollout_verifier.config import VerificationConfig
from rollout_verifier.metrics.base import MetricsSource, QueryError
from .base import Verdict, VerificationState, is_within_threshold
from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class Verifier:
    """
    Samples the metrics source over a trailing window until the monitoring
    deadline and fails the rollout once the error threshold has been exceeded
    continuously for the trigger duration.
    """

    def __init__(self, config: VerificationConfig, source: MetricsSource, clock: Optional[Clock] = None) -> None:
        self.config = config
        self.source = source
        self.clock = clock or SystemClock()

    def run(self) -> Verdict:
        config = self.config
        deadline = self.clock.now() + config.time_to_monitor
        state = VerificationState()

        while self.clock.now() < deadline:
            end_time = self.clock.now()
            start_time = end_time - config.sampling_window

            try:
                sample = self.source.query(config.project, config.metric_filter, start_time, end_time)
            except QueryError as e:
                logger.error(f"Sampling Set {state.sample_index}: failed to read time series: {e}")
                return Verdict.query_error(samples=state.sample_index - 1, message=str(e))

            logger.info(
                f"Sampling Set: {state.sample_index}. Total Requests: {sample.total_requests}, "
                f"Response Class 5xx: {sample.error_requests} ({sample.error_ratio:.2%})"
            )

            within_threshold = is_within_threshold(sample, config.max_error_percentage)
            violation_duration = state.record(end_time, within_threshold)
            if violation_duration is not None:
                logger.warning(f"Sampling Set {state.sample_index} has exceeded the max error percentage")
                if violation_duration >= config.trigger_duration:
                    logger.error(
                        f"max error percentage has been exceeded for {violation_duration}, verification will fail"
                    )
                    return Verdict.failed(samples=state.sample_index, violation_duration=violation_duration)

            state.sample_index += 1
            self.clock.sleep(config.sampling_period)

        return Verdict.passed(samples=state.sample_index - 1)
