"""
Named collections of communities.

A collection is an alias for a multi-community view, configured as
``alias=sub1+sub2;alias2=sub3+sub4``.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Collection:
    name: str
    target: str


def parse_collection_map(value: Optional[str]) -> Dict[str, str]:
    """
    Parse a collections setting into an alias -> target mapping.

    Entries without ``=``, or with an empty alias or target, are skipped.
    A repeated alias keeps its last target.
    """
    mapping: Dict[str, str] = {}
    if not value:
        return mapping

    for entry in value.split(";"):
        entry = entry.strip()
        if not entry:
            continue

        alias, sep, target = entry.partition("=")
        alias, target = alias.strip(), target.strip()
        if not sep or not alias or not target:
            logger.warning(f"Ignoring malformed collection entry: {entry!r}")
            continue

        mapping[alias] = target

    return mapping


class Collections:
    """Configured collection aliases."""

    def __init__(self, value: Optional[str] = None):
        """
        Args:
            value: The raw collections setting
        """
        self._aliases = parse_collection_map(value)

    def all(self) -> List[Collection]:
        """All collections sorted by name, ignoring case."""
        entries = [Collection(name=name, target=target) for name, target in self._aliases.items()]
        entries.sort(key=lambda entry: entry.name.lower())
        return entries

    def resolve(self, name: str) -> Optional[str]:
        """The ``a+b`` target behind an alias, or None."""
        return self._aliases.get(name)

    def is_empty(self) -> bool:
        return not self._aliases

    def __len__(self) -> int:
        return len(self._aliases)
