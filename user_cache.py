"""
Per-run cache of directory subject id -> RT user name.

Filled by the user reconciler as it meets people and read by the group
reconciler when it turns group members into RT user names.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


logger = logging.getLogger(__name__)


class CacheState(Enum):
    NOT_CACHED = "not-cached"
    INVALID = "invalid"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class CacheResult:
    state: CacheState
    name: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.state is CacheState.RESOLVED


NOT_CACHED = CacheResult(CacheState.NOT_CACHED)
INVALID = CacheResult(CacheState.INVALID)


def is_valid_user_name(name: Optional[str]) -> bool:
    """RT user names must be present and never purely numeric."""
    return bool(name) and not name.isdigit()


class UserCache:
    """Case-insensitive subject id -> user name map, valid for one run."""

    def __init__(self):
        self._entries: Dict[str, Optional[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, subject_id: str) -> bool:
        return subject_id.lower() in self._entries

    def lookup(self, subject_id: str) -> CacheResult:
        key = subject_id.lower()
        if key not in self._entries:
            return NOT_CACHED
        name = self._entries[key]
        if name is None:
            return INVALID
        return CacheResult(CacheState.RESOLVED, name)

    def remember(self, subject_id: str, name: Optional[str]) -> CacheResult:
        """Record the user name for a subject; empty or numeric names are cached as invalid."""
        if is_valid_user_name(name):
            self._entries[subject_id.lower()] = name
            return CacheResult(CacheState.RESOLVED, name)
        logger.debug(f"Caching {subject_id} as invalid (name {name!r})")
        self._entries[subject_id.lower()] = None
        return INVALID

    def forget_all(self):
        self._entries.clear()
