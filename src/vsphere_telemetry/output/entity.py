"""
Entities and metric sets.

An entity is one emitted unit of telemetry, identified by kind and a stable id.
A metric set is the bag of metrics attached to it.

The registry owns every entity of one collection cycle. Creation is
serialized by a lock so two workers asking for the same (kind, id) always
get the same entity back.
"""

from __future__ import annotations

import logging
import math
import numbers
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from vsphere_telemetry.core.errors import EntityCreationError, MetricWriteError
from vsphere_telemetry.core.types import MetricType

logger = logging.getLogger(__name__)

MetricValue = Union[str, float]


def event_type_for(kind: str) -> str:
    """Sample event type for an entity kind, e.g. VSphereDatastoreSample."""
    return f"VSphere{kind}Sample"


@dataclass
class MetricSet:
    """
    Key value metrics of one entity.

    Attributes are stored as strings, booleans as "true" or "false".
    Gauges are stored as floats.
    A key written twice keeps the last value.
    """

    event_type: str
    metrics: Dict[str, MetricValue] = field(default_factory=dict)
    types: Dict[str, MetricType] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def set_metric(self, key: str, value: Any, metric_type: MetricType) -> None:
        """Write one metric, raising MetricWriteError when it is not representable."""
        if not key:
            raise MetricWriteError("metric key must not be empty")

        if metric_type == MetricType.attribute:
            stored = _attribute_value(key, value)
        else:
            stored = _gauge_value(key, value)

        with self._lock:
            if key in self.metrics:
                logger.debug("metric %s written twice, keeping the last value", key)
            self.metrics[key] = stored
            self.types[key] = metric_type

    def get(self, key: str) -> MetricValue | None:
        return self.metrics.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self.metrics

    def __len__(self) -> int:
        return len(self.metrics)


def _attribute_value(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    raise MetricWriteError(f"attribute {key} must be a string or a boolean, got {type(value).__name__}")


def _gauge_value(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise MetricWriteError(f"gauge {key} must be numeric, got {type(value).__name__}")
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        raise MetricWriteError(f"gauge {key} must be finite, got {number}")
    return number


@dataclass
class Entity:
    """
    One emitted unit of telemetry.

    inventory holds slow changing facts, such as tags, keyed by path.
    """

    kind: str
    name: str
    id: str
    metric_set: MetricSet
    inventory: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.kind, self.id)


class EntityRegistry:
    """
    Entity table of one collection cycle.

    get_or_create never creates two entities for the same (kind, id),
    even when called from several threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entities: Dict[Tuple[str, str], Entity] = {}

    def get_or_create(self, kind: str, name: str, stable_id: str) -> Tuple[Entity, MetricSet]:
        if not kind:
            raise EntityCreationError("entity kind must not be empty")
        if not name:
            raise EntityCreationError(f"{kind} entity name must not be empty (id {stable_id!r})")
        if not stable_id:
            raise EntityCreationError(f"{kind} entity {name!r} has an empty id")

        key = (kind, stable_id)
        with self._lock:
            entity = self._entities.get(key)
            if entity is None:
                entity = Entity(kind=kind, name=name, id=stable_id, metric_set=MetricSet(event_type_for(kind)))
                self._entities[key] = entity
        return entity, entity.metric_set

    def get(self, kind: str, stable_id: str) -> Entity | None:
        with self._lock:
            return self._entities.get((kind, stable_id))

    def entities(self) -> List[Entity]:
        """Entities in creation order."""
        with self._lock:
            return list(self._entities.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)
