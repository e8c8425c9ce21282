"""
Performance counter selection.

Which counters are collected for which object kind is read from a YAML file.

Schema example
datastore:
  level_1:
    - disk.used.latest
    - disk.capacity.latest
  level_2:
    - datastore.numberReadAveraged.average

Counters of every level up to the configured perf level are selected.
Without a file, DEFAULT_COUNTERS is used with the same rule.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml

from vsphere_telemetry.core.errors import InvalidConfiguration
from vsphere_telemetry.core.types import ObjectKind

logger = logging.getLogger(__name__)

_LEVEL_KEY = re.compile(r"^level_(\d+)$")

KIND_KEYS: Dict[str, ObjectKind] = {
    "datacenter": ObjectKind.datacenter,
    "datastore": ObjectKind.datastore,
    "host": ObjectKind.host,
    "vm": ObjectKind.vm,
    "cluster": ObjectKind.cluster,
}

DEFAULT_COUNTERS: Dict[str, Dict[str, List[str]]] = {
    "datastore": {
        "level_1": [
            "disk.capacity.latest",
            "disk.used.latest",
            "disk.provisioned.latest",
        ],
        "level_2": [
            "datastore.numberReadAveraged.average",
            "datastore.numberWriteAveraged.average",
        ],
        "level_3": [
            "disk.unshared.latest",
        ],
    },
}


@dataclass(frozen=True)
class CounterSelection:
    """Selected counter names per object kind, in file order."""

    by_kind: Mapping[ObjectKind, List[str]] = field(default_factory=dict)

    def counters_for(self, kind: ObjectKind) -> List[str]:
        return list(self.by_kind.get(kind, []))

    def __len__(self) -> int:
        return sum(len(v) for v in self.by_kind.values())


def _level_of(key: str) -> int:
    match = _LEVEL_KEY.match(key)
    if match is None:
        raise InvalidConfiguration(f"unexpected level key {key!r}, expected level_<n>")
    return int(match.group(1))


def select_counters(data: Mapping[str, Any], perf_level: int) -> CounterSelection:
    """
    Select counters of every level up to perf_level.

    Unknown kinds are ignored with a warning. Duplicate counters keep their
    first position.
    """
    if not isinstance(data, Mapping):
        raise InvalidConfiguration("performance metric file must map object kinds to levels")

    by_kind: Dict[ObjectKind, List[str]] = {}
    for kind_key, levels in data.items():
        kind = KIND_KEYS.get(str(kind_key).lower())
        if kind is None:
            logger.warning("ignoring counters for unknown object kind %r", kind_key)
            continue
        if not isinstance(levels, Mapping):
            raise InvalidConfiguration(f"counters for {kind_key!r} must map level_<n> to lists")

        selected: List[str] = []
        for level_key in sorted(levels, key=lambda k: _level_of(str(k))):
            counters = levels[level_key] or []
            if not isinstance(counters, list):
                raise InvalidConfiguration(f"counters for {kind_key!r} {level_key} must be a list")
            if _level_of(str(level_key)) > perf_level:
                continue
            for counter in counters:
                name = str(counter).strip()
                if name and name not in selected:
                    selected.append(name)
        if selected:
            by_kind[kind] = selected

    return CounterSelection(by_kind=by_kind)


def load_counter_file(path: Path, perf_level: int) -> CounterSelection:
    """Load a YAML counter selection file."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidConfiguration(f"cannot read performance metric file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InvalidConfiguration(f"invalid performance metric file {path}: {exc}") from exc

    selection = select_counters(data or {}, perf_level)
    logger.debug("selected %d counters from %s", len(selection), path)
    return selection


def default_counters(perf_level: int) -> CounterSelection:
    return select_counters(DEFAULT_COUNTERS, perf_level)
