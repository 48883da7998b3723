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
from .base import MetricsSource, QueryError, SampleResult, VerifierError
from .cloud_monitoring import CloudMonitoringMetricsSource
from .mock_source import MockMetricsSource
from .prometheus import GoogleManagedPrometheusMetricsSource, PrometheusMetricsSource

__all__ = [
    "CloudMonitoringMetricsSource",
    "GoogleManagedPrometheusMetricsSource",
    "MetricsSource",
    "MockMetricsSource",
    "PrometheusMetricsSource",
    "QueryError",
    "SampleResult",
    "VerifierError",
]
