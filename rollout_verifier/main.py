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
from argparse import ArgumentParser, Namespace
from typing import Any, List, Optional
from google.auth.exceptions import GoogleAuthError
from rollout_verifier.config import (
    MetricsSourceConfig,
    MetricsSourceType,
    describe_config,
    read_config,
)
from rollout_verifier.metrics import (
    CloudMonitoringMetricsSource,
    GoogleManagedPrometheusMetricsSource,
    MetricsSource,
    MockMetricsSource,
    PrometheusMetricsSource,
)
from rollout_verifier.verifier import Verdict, VerdictStatus, Verifier
from rollout_verifier.logger import setup_logging
import logging
import sys
import yaml

logger = logging.getLogger(__name__)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="rollout-verifier",
        description="Fails a rollout when the share of 5xx responses stays above a threshold for too long.",
    )
    parser.add_argument("-c", "--config_file", help="Config File", required=False)
    parser.add_argument(
        "--project", help="The ID of the project that has the metrics, defaulted to the CLOUD_DEPLOY_PROJECT env var"
    )
    parser.add_argument("--metric-filter", help="The filter that selects the request count time series")
    parser.add_argument(
        "--max-error-percentage",
        type=float,
        help="The maximum allowable percentage of 5xx responses per sampling window (default 10)",
    )
    parser.add_argument(
        "--trigger-duration", help="The time the error condition must be observed for verify to fail (default 5m)"
    )
    parser.add_argument(
        "--time-to-monitor", help="The time to monitor before the verification is marked successful (default 20m)"
    )
    parser.add_argument("--sampling-period", help="The time to wait in between each sampling (default 1m)")
    parser.add_argument("--sampling-window", help="The window of time covered by each sampling (default 5m)")
    parser.add_argument(
        "--metrics-source",
        choices=[t.value for t in MetricsSourceType],
        help="The metrics backend to query (default cloud_monitoring)",
    )
    parser.add_argument("--prometheus-url", help="Base URL of the Prometheus server")
    parser.add_argument(
        "--google-managed-prometheus",
        action="store_true",
        help="Query Google Cloud Managed Service for Prometheus using Application Default Credentials",
    )
    parser.add_argument("--request-timeout", type=float, help="Timeout in seconds for each metrics query")
    parser.add_argument(
        "--log-level", help="Logging level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    return parser


def overrides_from_args(args: Namespace) -> dict[str, Any]:
    """
    Turns the command-line flags that were given into a config dict to merge over the config file.

    The Prometheus endpoint flags select the prometheus metrics source unless another one was asked for,
    in which case they are rejected.
    """
    verification: dict[str, Any] = {}
    for key in (
        "project",
        "metric_filter",
        "max_error_percentage",
        "trigger_duration",
        "time_to_monitor",
        "sampling_period",
        "sampling_window",
    ):
        value = getattr(args, key)
        if value is not None:
            verification[key] = value

    metrics: dict[str, Any] = {}
    if args.metrics_source is not None:
        metrics["type"] = args.metrics_source
    if args.request_timeout is not None:
        metrics["request_timeout"] = args.request_timeout
    if args.prometheus_url is not None:
        metrics.setdefault("prometheus", {})["url"] = args.prometheus_url
    if args.google_managed_prometheus:
        metrics.setdefault("prometheus", {})["google_managed"] = True
    if "prometheus" in metrics:
        source_type = metrics.setdefault("type", MetricsSourceType.PROMETHEUS.value)
        if source_type != MetricsSourceType.PROMETHEUS.value:
            raise ValueError(
                f"--prometheus-url and --google-managed-prometheus require --metrics-source prometheus, got {source_type}"
            )

    overrides: dict[str, Any] = {}
    if verification:
        overrides["verification"] = verification
    if metrics:
        overrides["metrics"] = metrics
    return overrides


def build_metrics_source(config: MetricsSourceConfig) -> MetricsSource:
    if config.type == MetricsSourceType.PROMETHEUS and config.prometheus:
        if config.prometheus.google_managed:
            return GoogleManagedPrometheusMetricsSource(config.prometheus, config.request_timeout)
        return PrometheusMetricsSource(config.prometheus, config.request_timeout)
    if config.type == MetricsSourceType.MOCK:
        return MockMetricsSource()
    return CloudMonitoringMetricsSource(config.cloud_monitoring, config.request_timeout)


def report_verdict(verdict: Verdict) -> None:
    """Terminates the process according to the verdict: exit code 0 and "Done" on success, 1 otherwise."""
    if verdict.status == VerdictStatus.PASSED:
        print(verdict.describe())
    else:
        print(verdict.describe(), file=sys.stderr)
    sys.exit(verdict.exit_code)


def main_cli(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    try:
        config = read_config(args.config_file, overrides_from_args(args))
    except (ValueError, OSError, yaml.YAMLError) as e:
        parser.error(f"invalid configuration: {e}")

    logger.info("\n%s", describe_config(config))

    try:
        metrics_source = build_metrics_source(config.metrics)
    except GoogleAuthError as e:
        sys.exit(f"Unable to create metrics client: {e}")

    verdict = Verifier(config.verification, metrics_source).run()
    report_verdict(verdict)


if __name__ == "__main__":
    main_cli()
