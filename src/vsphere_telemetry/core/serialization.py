from __future__ import annotations

from typing import Any, Dict, Iterable

INTEGRATION_NAME = "com.newrelic.vsphere"
PROTOCOL_VERSION = "3"


def entity_to_json(entity: Any) -> Dict[str, Any]:
    """
    Entity transport shape.

    We only rely on kind, name, id, metric_set and inventory attributes.
    Inventory items are wrapped as {"value": ...}.
    """
    metrics: Dict[str, Any] = {"event_type": entity.metric_set.event_type}
    metrics.update(entity.metric_set.metrics)
    return {
        "entity": {"name": entity.name, "type": entity.kind, "id": entity.id},
        "metrics": [metrics],
        "inventory": {key: {"value": value} for key, value in sorted(entity.inventory.items())},
        "events": [],
    }


def payload_to_json(entities: Iterable[Any], integration_version: str) -> Dict[str, Any]:
    """
    Integration payload for one collection cycle.

    This is intended for transport only.
    """
    return {
        "name": INTEGRATION_NAME,
        "protocol_version": PROTOCOL_VERSION,
        "integration_version": integration_version,
        "data": [entity_to_json(e) for e in entities],
    }
