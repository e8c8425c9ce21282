"""
Command line entry point.

Flags keep the names of the integration arguments. Every flag can also be set
through an environment variable, VSPHERE_ plus the flag name in upper case,
e.g. --batch_size_perf_entities or VSPHERE_BATCH_SIZE_PERF_ENTITIES.

Two modes
Live: connect to the url and collect from vCenter or ESXi.
Offline: --inventory_file collects from a static json snapshot, tags included.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from vsphere_telemetry import __version__
from vsphere_telemetry.agent.runner import CollectionDriver, CycleReport
from vsphere_telemetry.core.config import (
    DEFAULT_BATCH_SIZE_PERF_ENTITIES,
    DEFAULT_BATCH_SIZE_PERF_METRICS,
    DEFAULT_PERF_WORKERS,
    LINUX_DEFAULT_PERF_METRIC_FILE,
    CollectorConfig,
)
from vsphere_telemetry.core.errors import InvalidConfiguration, ServiceUnavailable
from vsphere_telemetry.core.serialization import payload_to_json
from vsphere_telemetry.core.types import ObjectKind
from vsphere_telemetry.inventory.plugins.static import StaticInventoryPlugin
from vsphere_telemetry.inventory.plugins.vsphere import (
    VSphereInventoryPlugin,
    connect_service_instance,
    disconnect_service_instance,
    is_vcenter,
)
from vsphere_telemetry.performance.counters import CounterSelection, default_counters, load_counter_file
from vsphere_telemetry.performance.vsphere import VSpherePerformanceService
from vsphere_telemetry.tags.rest import RequestsRestClient, VCenterTagService, rest_base_url

logger = logging.getLogger("vsphere_telemetry")

ENV_PREFIX = "VSPHERE_"

_TRUE = ("1", "true", "yes", "on")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name.upper(), default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidConfiguration(f"{ENV_PREFIX}{name.upper()} must be an integer, got {value!r}") from exc


def _env_float(name: str) -> Optional[float]:
    value = _env(name)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise InvalidConfiguration(f"{ENV_PREFIX}{name.upper()} must be a number, got {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vsphere-telemetry", description="vSphere telemetry agent")

    def flag(name: str, help_text: str) -> None:
        parser.add_argument(f"--{name}", action="store_true", default=_env_bool(name), help=help_text)

    parser.add_argument("--url", default=_env("url", ""), help="ESXi or vCenter SDK url, e.g. https://172.16.53.129/sdk")
    parser.add_argument("--user", default=_env("user", ""), help="Username")
    parser.add_argument("--pass", dest="password", default=_env("pass", ""), help="Password")
    parser.add_argument(
        "--datacenter_location",
        default=_env("datacenter_location", ""),
        help="Datacenter location of your vCenter or ESXi host, e.g. sydney-ultimo",
    )
    flag("validate_ssl", "Validate SSL certificates when connecting")

    flag("enable_vsphere_perf_metrics", "Collect vSphere performance metrics")
    parser.add_argument(
        "--perf_level",
        type=int,
        default=_env_int("perf_level", 1),
        help="Performance counter level of the metrics that will be collected",
    )
    parser.add_argument(
        "--perf_metric_file",
        default=_env("perf_metric_file", ""),
        help="Location of the performance metrics configuration file",
    )
    flag("log_available_counters", "Log the performance counters exposed by the server")
    flag("consider_instances", "Emit one extra entity per counter instance")
    parser.add_argument(
        "--batch_size_perf_entities",
        type=int,
        default=_env_int("batch_size_perf_entities", DEFAULT_BATCH_SIZE_PERF_ENTITIES),
        help="Number of entities requested at the same time when querying performance metrics",
    )
    parser.add_argument(
        "--batch_size_perf_metrics",
        type=int,
        default=_env_int("batch_size_perf_metrics", DEFAULT_BATCH_SIZE_PERF_METRICS),
        help="Number of metrics requested at the same time when querying performance metrics",
    )
    parser.add_argument(
        "--perf_workers",
        type=int,
        default=_env_int("perf_workers", DEFAULT_PERF_WORKERS),
        help="Number of performance queries running concurrently",
    )
    parser.add_argument(
        "--perf_timeout",
        type=float,
        default=_env_float("perf_timeout"),
        help="Upper bound in seconds for the performance queries of one datacenter",
    )

    flag("enable_vsphere_tags", "Collect tags, only available on vCenter")
    parser.add_argument(
        "--include_tags",
        default=_env("include_tags", ""),
        help="Space separated category=value pairs, e.g. 'env=prod dc=eu'. "
        "Only resources tagged with any of them are reported. Requires --enable_vsphere_tags",
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=_env_int("interval", 0),
        help="Seconds between collection cycles, 0 runs a single cycle",
    )
    parser.add_argument("--inventory_file", default=_env("inventory_file", ""), help="Collect from a static json snapshot")
    flag("verbose", "Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> CollectorConfig:
    return CollectorConfig(
        url=args.url,
        user=args.user,
        password=args.password,
        datacenter_location=args.datacenter_location,
        validate_ssl=args.validate_ssl,
        enable_perf_metrics=args.enable_vsphere_perf_metrics,
        perf_level=args.perf_level,
        perf_metric_file=args.perf_metric_file,
        log_available_counters=args.log_available_counters,
        consider_instances=args.consider_instances,
        batch_size_perf_entities=args.batch_size_perf_entities,
        batch_size_perf_metrics=args.batch_size_perf_metrics,
        perf_workers=args.perf_workers,
        perf_timeout=args.perf_timeout,
        enable_tags=args.enable_vsphere_tags,
        include_tags=args.include_tags,
        interval_seconds=args.interval,
        verbose=args.verbose,
    )


def counter_selection(config: CollectorConfig) -> CounterSelection:
    """Counters from the configured file, the default file when present, or the built in table."""
    if config.perf_metric_file:
        return load_counter_file(Path(config.perf_metric_file), config.perf_level)
    default_file = Path(LINUX_DEFAULT_PERF_METRIC_FILE)
    if default_file.is_file():
        return load_counter_file(default_file, config.perf_level)
    return default_counters(config.perf_level)


def print_sink(report: CycleReport) -> None:
    print(json.dumps(payload_to_json(report.entities, __version__)))


def _offline_driver(config: CollectorConfig, inventory_file: str) -> CollectionDriver:
    plugin = StaticInventoryPlugin(path=Path(inventory_file))
    return CollectionDriver(config, inventory_plugin=plugin, tag_service=plugin, sink=print_sink)


def tag_client(config: CollectorConfig, service_instance: Any) -> Optional[RequestsRestClient]:
    """REST client for the tagging api, None when tag collection is off."""
    if not config.tag_collection_enabled(is_vcenter(service_instance)):
        return None
    return RequestsRestClient(
        base_url=rest_base_url(config.url),
        user=config.user,
        password=config.password,
        verify=config.validate_ssl,
    )


def _live_driver(
    config: CollectorConfig,
    service_instance: Any,
    client: Optional[RequestsRestClient] = None,
) -> CollectionDriver:
    tag_service = VCenterTagService(client=client) if client is not None else None

    perf_service = None
    selection = None
    if config.perf_metrics_enabled():
        perf_service = VSpherePerformanceService(service_instance, consider_instances=config.consider_instances)
        if config.log_available_counters:
            perf_service.log_available_counters()
        selection = counter_selection(config)
        known = {}
        for kind in selection.by_kind:
            counters = perf_service.known_counters(selection.counters_for(kind), kind.value)
            if counters:
                known[kind] = counters
        selection = CounterSelection(by_kind=known)
        if ObjectKind.datastore not in selection.by_kind:
            logger.info("no datastore performance counters selected")

    return CollectionDriver(
        config,
        inventory_plugin=VSphereInventoryPlugin(service_instance),
        tag_service=tag_service,
        perf_service=perf_service,
        counters=selection,
        sink=print_sink,
    )


def _run(driver: CollectionDriver, config: CollectorConfig) -> int:
    if config.interval_seconds == 0:
        try:
            driver.run_cycle()
        except ServiceUnavailable as exc:
            logger.error("collection failed: %s", exc)
            return 1
        return 0

    try:
        driver.run_forever()
    except KeyboardInterrupt:
        logger.info("interrupted, exiting")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        args = build_parser().parse_args(argv)
        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)

        config = config_from_args(args)
        if args.inventory_file:
            return _run(_offline_driver(config, args.inventory_file), config)

        config.require_connection()
        service_instance = connect_service_instance(config)
    except InvalidConfiguration as exc:
        logger.error("invalid configuration: %s", exc)
        return 2
    except ServiceUnavailable as exc:
        logger.error("%s", exc)
        return 1

    client = None
    try:
        client = tag_client(config, service_instance)
        return _run(_live_driver(config, service_instance, client), config)
    except InvalidConfiguration as exc:
        logger.error("invalid configuration: %s", exc)
        return 2
    except ServiceUnavailable as exc:
        logger.error("%s", exc)
        return 1
    finally:
        if client is not None:
            client.close()
        disconnect_service_instance(service_instance)


if __name__ == "__main__":
    sys.exit(main())
