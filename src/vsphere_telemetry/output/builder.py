"""
Entity and metric set builder.

Collectors write through the builder rather than the registry directly.
The builder applies the error policy of the output layer:

- an entity that cannot be created is logged and skipped
- a metric that cannot be written is logged and skipped

Neither stops the remaining metrics or the remaining objects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from vsphere_telemetry.core.errors import EntityCreationError, MetricWriteError
from vsphere_telemetry.core.types import MetricType, PerfSample
from vsphere_telemetry.output.entity import Entity, EntityRegistry, MetricSet

logger = logging.getLogger(__name__)

TAGS_PREFIX = "tags."
TAGS_INVENTORY_PREFIX = "tags/"
PERF_METRIC_PREFIX = "perf."
INSTANCE_SUFFIX = "Instance"
INSTANCE_NAME = "instanceName"


@dataclass
class BuildErrors:
    """Counts of skipped entities and metrics, reported at the end of a cycle."""

    entities: int = 0
    metrics: int = 0
    messages: list[str] = field(default_factory=list)

    def add(self, message: str, entity: bool = False) -> None:
        if entity:
            self.entities += 1
        else:
            self.metrics += 1
        self.messages.append(message)


class EntityBuilder:
    """
    Writes entities and metrics into a registry.

    registry
    Entity table of the current cycle.

    log
    Logger used for skipped entities and metrics.
    """

    def __init__(self, registry: EntityRegistry, log: logging.Logger | None = None) -> None:
        self.registry = registry
        self.errors = BuildErrors()
        self._log = log or logger

    def entity(self, kind: str, name: str, stable_id: str) -> Optional[Tuple[Entity, MetricSet]]:
        """Get or create an entity, None when the output system rejects it."""
        try:
            return self.registry.get_or_create(kind, name, stable_id)
        except EntityCreationError as exc:
            self._log.error("failed to create %s entity name=%r id=%r: %s", kind, name, stable_id, exc)
            self.errors.add(str(exc), entity=True)
            return None

    def set_attribute(self, ms: MetricSet, key: str, value: Any) -> None:
        self._set(ms, key, value, MetricType.attribute)

    def set_gauge(self, ms: MetricSet, key: str, value: Any) -> None:
        self._set(ms, key, value, MetricType.gauge)

    def _set(self, ms: MetricSet, key: str, value: Any, metric_type: MetricType) -> None:
        try:
            ms.set_metric(key, value, metric_type)
        except MetricWriteError as exc:
            self._log.error("failed to set %s %s on %s: %s", metric_type.value, key, ms.event_type, exc)
            self.errors.add(str(exc))

    def add_tags(self, entity: Entity, ms: MetricSet, tags_by_category: Mapping[str, str]) -> None:
        """Tags are written both as attributes and as inventory items."""
        for category, value in tags_by_category.items():
            self.set_attribute(ms, TAGS_PREFIX + category, value)
            entity.inventory[TAGS_INVENTORY_PREFIX + category] = value

    def add_perf_samples(
        self,
        parent: Entity,
        ms: MetricSet,
        samples: Iterable[PerfSample],
        context: Mapping[str, str],
        consider_instances: bool,
    ) -> None:
        """
        Write performance samples of one object.

        The aggregate value goes to the parent metric set as perf.<counter>.

        When consider_instances is set, every instance key becomes an entity of
        kind <parent kind>Instance, id <parent id>:<instance key>, carrying the
        context attributes, instanceName and the instance value of each counter.
        """
        for sample in samples:
            metric = PERF_METRIC_PREFIX + sample.counter
            if sample.value is not None:
                self.set_gauge(ms, metric, sample.value)

            if not consider_instances:
                continue

            for instance_key, value in sample.instances.items():
                created = self._instance_entity(parent, instance_key, context)
                if created is None:
                    continue
                _, ims = created
                self.set_gauge(ims, metric, value)

    def _instance_entity(
        self,
        parent: Entity,
        instance_key: str,
        context: Mapping[str, str],
    ) -> Optional[Tuple[Entity, MetricSet]]:
        kind = parent.kind + INSTANCE_SUFFIX
        stable_id = f"{parent.id}:{instance_key}"
        existing = self.registry.get(kind, stable_id)
        if existing is not None:
            return existing, existing.metric_set

        created = self.entity(kind, f"{parent.name}:{instance_key}", stable_id)
        if created is None:
            return None

        _, ims = created
        for key, value in context.items():
            self.set_attribute(ims, key, value)
        self.set_attribute(ims, INSTANCE_NAME, instance_key)
        return created


def context_attributes(**attributes: str) -> Dict[str, str]:
    """Keep the non empty context attributes, in argument order."""
    return {key: value for key, value in attributes.items() if value}
