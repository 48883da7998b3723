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
from datetime import timedelta
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from typing import Any, Optional
import logging
import os
import re
import yaml

logger = logging.getLogger(__name__)

PROJECT_ENV_VAR = "CLOUD_DEPLOY_PROJECT"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_PLAIN_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_ENV_VAR_REF = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


def parse_duration(value: Any) -> timedelta:
    """
    Parses a duration given as a timedelta, a number of seconds, or a string.

    Strings use the unit-suffixed form ("90s", "5m", "1h30m", "1.5h"); a bare
    number in a string is read as seconds.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("invalid duration: empty string")
    if _PLAIN_NUMBER.fullmatch(text):
        return timedelta(seconds=float(text))

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def replace_env_vars(value: str) -> str:
    """Replaces $NAME references with the value of the NAME environment variable, when it is set."""
    return _ENV_VAR_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


class VerificationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: str = Field(default_factory=lambda: os.environ.get(PROJECT_ENV_VAR, ""))
    metric_filter: str = ""
    max_error_percentage: float = Field(10.0, ge=0.0, le=100.0)
    trigger_duration: timedelta = timedelta(minutes=5)
    time_to_monitor: timedelta = timedelta(minutes=20)
    sampling_period: timedelta = timedelta(minutes=1)
    sampling_window: timedelta = timedelta(minutes=5)

    @field_validator("trigger_duration", "time_to_monitor", "sampling_period", "sampling_window", mode="before")
    @classmethod
    def parse_durations(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("trigger_duration", "time_to_monitor")
    @classmethod
    def check_non_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("duration must not be negative")
        return value

    @field_validator("sampling_period", "sampling_window")
    @classmethod
    def check_positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value

    @field_validator("project", "metric_filter")
    @classmethod
    def expand_env_vars(cls, value: str) -> str:
        return replace_env_vars(value)

    @model_validator(mode="after")
    def check_required_fields(self) -> "VerificationConfig":
        if not self.project:
            raise ValueError(f"'project' must be set, either explicitly or through ${PROJECT_ENV_VAR}")
        if not self.metric_filter:
            raise ValueError("'metric_filter' must be set")
        return self


class MetricsSourceType(Enum):
    CLOUD_MONITORING = "cloud_monitoring"
    PROMETHEUS = "prometheus"
    MOCK = "mock"


class CloudMonitoringSourceConfig(BaseModel):
    response_code_label: str = "response_code_class"
    error_class: str = "5xx"


class PrometheusSourceConfig(BaseModel):
    url: Optional[HttpUrl] = None
    google_managed: bool = False
    # Series whose value for this label starts with "5" are counted as errors.
    response_code_label: str = "code"

    @model_validator(mode="after")
    def check_exclusive_fields(self) -> "PrometheusSourceConfig":
        if bool(self.url) == bool(self.google_managed):
            raise ValueError("Exactly one of 'url' or 'google_managed' must be set.")
        return self


class MetricsSourceConfig(BaseModel):
    type: MetricsSourceType = MetricsSourceType.CLOUD_MONITORING
    cloud_monitoring: CloudMonitoringSourceConfig = CloudMonitoringSourceConfig()
    prometheus: Optional[PrometheusSourceConfig] = None
    request_timeout: Optional[float] = Field(None, gt=0.0)

    @model_validator(mode="after")
    def check_prometheus_config(self) -> "MetricsSourceConfig":
        if self.type == MetricsSourceType.PROMETHEUS and self.prometheus is None:
            raise ValueError("'prometheus' must be configured when the metrics source type is prometheus")
        return self


class Config(BaseModel):
    verification: VerificationConfig
    metrics: MetricsSourceConfig = MetricsSourceConfig()


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def read_config(config_file: Optional[str] = None, overrides: Optional[dict[str, Any]] = None) -> Config:
    """
    Builds the run configuration.

    Values from the YAML config file (if any) are merged over the defaults, and
    the overrides (typically command-line flags) are merged over the result.
    """
    cfg: dict[str, Any] = {}
    if config_file:
        logger.info("Using configuration from: %s", config_file)
        with open(config_file, "r") as stream:
            cfg = yaml.safe_load(stream) or {}
        if not isinstance(cfg, dict):
            raise ValueError(f"config file {config_file} must contain a mapping")

    default_cfg: dict[str, Any] = {"verification": {}, "metrics": MetricsSourceConfig().model_dump(mode="json")}
    merged_cfg = deep_merge(deep_merge(default_cfg, cfg), overrides or {})

    logger.debug(
        "Verifying with the following config:\n\n%s\n", yaml.dump(merged_cfg, sort_keys=False, default_flow_style=False)
    )
    return Config(**merged_cfg)


def describe_config(config: Config) -> str:
    v = config.verification
    lines = [
        "---",
        "Verification configured as follows:",
        f"Project: {v.project!r}",
        f"Metric Filter: {v.metric_filter!r}",
        f"Max Error Percentage: {v.max_error_percentage:g}",
        f"Trigger Duration: {v.trigger_duration}",
        f"Time To Monitor: {v.time_to_monitor}",
        f"Sampling Period: {v.sampling_period}",
        f"Sampling Window: {v.sampling_window}",
        f"Metrics Source: {config.metrics.type.value}",
        "---",
    ]
    return "\n".join(lines)
