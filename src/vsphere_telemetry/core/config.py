"""
Collector configuration.

One explicit configuration value is built at startup and handed to every
component. Nothing reads flags or environment variables after that.

Validation happens in __post_init__ so a bad value fails before any
connection is opened.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from vsphere_telemetry.core.errors import InvalidConfiguration

# As a general rule vSphere recommends between 10 and 50 entities per QueryPerf call.
DEFAULT_BATCH_SIZE_PERF_ENTITIES = 50
DEFAULT_BATCH_SIZE_PERF_METRICS = 50
DEFAULT_PERF_WORKERS = 4

LINUX_DEFAULT_PERF_METRIC_FILE = "/etc/newrelic-infra/integrations.d/vsphere-performance.metrics"

MIN_PERF_LEVEL = 1
MAX_PERF_LEVEL = 4


def _positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise InvalidConfiguration(f"{name} must be at least 1, got {value}")


@dataclass(frozen=True)
class CollectorConfig:
    """
    Collector configuration.

    url, user, password
    vCenter or ESXi SDK endpoint and credentials, e.g. https://172.16.53.129/sdk

    datacenter_location
    Free form location attribute added to every entity when not empty.

    enable_perf_metrics, perf_level, perf_metric_file
    Performance counter collection. perf_metric_file selects counters per
    object kind and level, the built in table is used when empty.

    consider_instances
    Emit one extra entity per counter instance, e.g. per LUN.

    batch_size_perf_entities, batch_size_perf_metrics
    Upper bounds on objects and counters requested by one performance query.

    perf_workers, perf_timeout
    Worker pool size for performance queries and an optional overall bound
    in seconds for one get_metrics call.

    enable_tags, include_tags
    Tag collection and the space separated category=value allow list.
    Filtering only applies when tag collection is enabled.

    interval_seconds
    Sleep between cycles. Zero runs a single cycle.
    """

    url: str = ""
    user: str = ""
    password: str = ""
    datacenter_location: str = ""
    validate_ssl: bool = False

    enable_perf_metrics: bool = False
    perf_level: int = 1
    perf_metric_file: str = ""
    log_available_counters: bool = False
    consider_instances: bool = False
    batch_size_perf_entities: int = DEFAULT_BATCH_SIZE_PERF_ENTITIES
    batch_size_perf_metrics: int = DEFAULT_BATCH_SIZE_PERF_METRICS
    perf_workers: int = DEFAULT_PERF_WORKERS
    perf_timeout: Optional[float] = None

    enable_tags: bool = False
    include_tags: str = ""

    interval_seconds: int = 0
    verbose: bool = False

    def __post_init__(self) -> None:
        _positive("batch_size_perf_entities", self.batch_size_perf_entities)
        _positive("batch_size_perf_metrics", self.batch_size_perf_metrics)
        _positive("perf_workers", self.perf_workers)

        if not MIN_PERF_LEVEL <= self.perf_level <= MAX_PERF_LEVEL:
            raise InvalidConfiguration(
                f"perf_level must be between {MIN_PERF_LEVEL} and {MAX_PERF_LEVEL}, got {self.perf_level}"
            )
        if self.perf_timeout is not None and self.perf_timeout <= 0:
            raise InvalidConfiguration(f"perf_timeout must be positive, got {self.perf_timeout}")
        if self.interval_seconds < 0:
            raise InvalidConfiguration(f"interval_seconds must not be negative, got {self.interval_seconds}")

    def require_connection(self) -> None:
        """Fail fast when live collection is requested without an endpoint."""
        missing = [name for name in ("url", "user", "password") if not getattr(self, name)]
        if missing:
            raise InvalidConfiguration("missing required argument(s): " + ", ".join(missing))

    def tag_collection_enabled(self, is_vcenter: bool) -> bool:
        """Tags are only available when connected to a vCenter."""
        return is_vcenter and self.enable_tags

    def tag_filtering_enabled(self, is_vcenter: bool) -> bool:
        return self.tag_collection_enabled(is_vcenter) and bool(self.include_tags.strip())

    def perf_metrics_enabled(self) -> bool:
        return self.enable_perf_metrics

    def consider_instances_enabled(self) -> bool:
        return self.consider_instances
