from __future__ import annotations

from pathlib import Path

import pytest

from vsphere_telemetry.core.errors import InvalidConfiguration
from vsphere_telemetry.core.types import ObjectKind
from vsphere_telemetry.performance.counters import default_counters, load_counter_file, select_counters

COUNTER_FILE = """
datastore:
  level_1:
    - disk.used.latest
    - disk.capacity.latest
  level_2:
    - datastore.numberReadAveraged.average
    - disk.used.latest
host:
  level_3:
    - cpu.usage.average
switch:
  level_1:
    - net.packetsRx.summation
"""


def write_file(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "vsphere-performance.metrics"
    path.write_text(text, encoding="utf-8")
    return path


def test_levels_up_to_perf_level_are_selected(tmp_path: Path):
    path = write_file(tmp_path, COUNTER_FILE)

    level1 = load_counter_file(path, 1)
    assert level1.counters_for(ObjectKind.datastore) == ["disk.used.latest", "disk.capacity.latest"]
    assert level1.counters_for(ObjectKind.host) == []

    level3 = load_counter_file(path, 3)
    assert level3.counters_for(ObjectKind.datastore) == [
        "disk.used.latest",
        "disk.capacity.latest",
        "datastore.numberReadAveraged.average",
    ]
    assert level3.counters_for(ObjectKind.host) == ["cpu.usage.average"]
    assert len(level3) == 4


def test_unknown_kind_is_ignored_with_warning(tmp_path: Path, caplog):
    load_counter_file(write_file(tmp_path, COUNTER_FILE), 1)
    assert "switch" in caplog.text


def test_bad_level_key_is_rejected():
    with pytest.raises(InvalidConfiguration):
        select_counters({"datastore": {"high": ["disk.used.latest"]}}, 4)


def test_unreadable_or_invalid_file(tmp_path: Path):
    with pytest.raises(InvalidConfiguration):
        load_counter_file(tmp_path / "missing.metrics", 1)
    with pytest.raises(InvalidConfiguration):
        load_counter_file(write_file(tmp_path, "datastore: [unclosed"), 1)
    with pytest.raises(InvalidConfiguration):
        load_counter_file(write_file(tmp_path, "- just\n- a list\n"), 1)


def test_default_counters():
    assert default_counters(1).counters_for(ObjectKind.datastore) == [
        "disk.capacity.latest",
        "disk.used.latest",
        "disk.provisioned.latest",
    ]
    assert len(default_counters(4)) == 6


@pytest.mark.parametrize("levels", [{"level_1": "disk.used.latest"}, {"level_1": [], "level_4": "disk.used.latest"}])
def test_level_that_is_not_a_list_is_rejected(levels):
    with pytest.raises(InvalidConfiguration):
        select_counters({"datastore": levels}, 1)
