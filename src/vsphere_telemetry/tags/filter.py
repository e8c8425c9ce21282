"""Tag based inclusion filter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from vsphere_telemetry.core.types import ObjectRef, Tag
from vsphere_telemetry.tags.index import TagIndex

logger = logging.getLogger(__name__)


def parse_include_tags(raw: str, log: logging.Logger | None = None) -> Tuple[Tag, ...]:
    """
    Parse a space separated list of category=value pairs.

    Malformed entries are skipped with a warning. Order is kept and
    duplicates are dropped.
    """
    log = log or logger
    pairs: list[Tag] = []
    for entry in raw.split():
        category, sep, value = entry.partition("=")
        if not sep or not category or not value:
            log.warning("ignoring malformed include_tags entry %r, expected category=value", entry)
            continue
        tag = Tag(category=category, value=value)
        if tag not in pairs:
            pairs.append(tag)
    return tuple(pairs)


@dataclass(frozen=True)
class InclusionFilter:
    """
    Allow list of tags.

    An object is included when it carries at least one of the pairs.
    When tag collection is disabled, or no pair parsed, every object is included.
    """

    pairs: Tuple[Tag, ...] = ()
    tag_collection_enabled: bool = False

    @classmethod
    def parse(
        cls,
        raw: str,
        tag_collection_enabled: bool,
        log: logging.Logger | None = None,
    ) -> "InclusionFilter":
        return cls(pairs=parse_include_tags(raw, log=log), tag_collection_enabled=tag_collection_enabled)

    @property
    def enabled(self) -> bool:
        return self.tag_collection_enabled and bool(self.pairs)

    def allows(self, ref: ObjectRef, index: TagIndex) -> bool:
        if not self.enabled:
            return True
        return index.matches_any(ref, self.pairs)
