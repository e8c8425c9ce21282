from __future__ import annotations

import pytest

from vsphere_telemetry.core.config import CollectorConfig
from vsphere_telemetry.core.errors import InvalidConfiguration


def test_defaults():
    cfg = CollectorConfig()
    assert cfg.batch_size_perf_entities == 50
    assert cfg.batch_size_perf_metrics == 50
    assert cfg.perf_workers == 4
    assert not cfg.perf_metrics_enabled()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"batch_size_perf_entities": 0},
        {"batch_size_perf_metrics": -1},
        {"perf_workers": 0},
        {"batch_size_perf_entities": True},
        {"perf_level": 0},
        {"perf_level": 5},
        {"perf_timeout": 0},
        {"interval_seconds": -1},
    ],
)
def test_invalid_values_fail_fast(kwargs):
    with pytest.raises(InvalidConfiguration):
        CollectorConfig(**kwargs)


def test_require_connection_names_missing_arguments():
    with pytest.raises(InvalidConfiguration, match="user, password"):
        CollectorConfig(url="https://vc/sdk").require_connection()
    CollectorConfig(url="https://vc/sdk", user="u", password="p").require_connection()


def test_tags_only_on_vcenter():
    cfg = CollectorConfig(enable_tags=True, include_tags="env=prod")
    assert cfg.tag_collection_enabled(is_vcenter=True)
    assert cfg.tag_filtering_enabled(is_vcenter=True)
    assert not cfg.tag_collection_enabled(is_vcenter=False)
    assert not cfg.tag_filtering_enabled(is_vcenter=False)
    assert not CollectorConfig(enable_tags=True, include_tags="  ").tag_filtering_enabled(is_vcenter=True)
