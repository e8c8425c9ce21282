"""
Tag index.

Maps object references to the tags attached to them.

The index is loaded once per collection cycle from a tag service snapshot and
is read only afterwards, so it can be shared by worker threads without locks.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Set

from vsphere_telemetry.core.errors import TagServiceError
from vsphere_telemetry.core.types import ObjectRef, Tag

logger = logging.getLogger(__name__)

TagSnapshot = Mapping[ObjectRef, Iterable[Tag]]

# Separator used when one object carries several values of the same category.
CATEGORY_VALUE_SEPARATOR = "|"

_EMPTY: FrozenSet[Tag] = frozenset()


class TagIndex:
    """
    Read only tag lookup.

    An index that was never loaded, or whose load failed, answers every
    query as if no object had tags.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._tags: Dict[ObjectRef, FrozenSet[Tag]] = {}

    @classmethod
    def from_mapping(cls, tags: TagSnapshot, log: logging.Logger | None = None) -> "TagIndex":
        """Build an index directly from an already retrieved snapshot."""
        index = cls(log=log)
        index.load(lambda: tags)
        return index

    def load(self, snapshot: Callable[[], TagSnapshot]) -> None:
        """
        Populate the index from a tag service snapshot.

        Raises TagServiceError when the snapshot cannot be retrieved.
        The index stays empty in that case.
        """
        try:
            raw = snapshot()
        except TagServiceError:
            self._tags = {}
            raise
        except Exception as exc:
            self._tags = {}
            raise TagServiceError(f"failed to retrieve tag snapshot: {exc}") from exc

        loaded: Dict[ObjectRef, FrozenSet[Tag]] = {}
        for ref, tags in raw.items():
            frozen = frozenset(tags)
            if frozen:
                loaded[ref] = frozen
        self._tags = loaded
        self._log.debug("loaded tags for %d objects", len(loaded))

    def __len__(self) -> int:
        return len(self._tags)

    def tags_for(self, ref: ObjectRef) -> FrozenSet[Tag]:
        """Return the tags of ref, empty for unknown references."""
        return self._tags.get(ref, _EMPTY)

    def matches_any(self, ref: ObjectRef, pairs: Iterable[Tag]) -> bool:
        """True iff any tag of ref equals any of the given pairs."""
        tags = self.tags_for(ref)
        if not tags:
            return False
        return any(pair in tags for pair in pairs)

    def tags_by_category(self, ref: ObjectRef) -> Dict[str, str]:
        """
        Group the tags of ref by category.

        Several values in one category are sorted and joined with |.
        """
        grouped: Dict[str, Set[str]] = {}
        for tag in self.tags_for(ref):
            grouped.setdefault(tag.category, set()).add(tag.value)
        return {
            category: CATEGORY_VALUE_SEPARATOR.join(sorted(values))
            for category, values in sorted(grouped.items())
        }
