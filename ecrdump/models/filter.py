"""Repository name filtering with include/exclude globs."""

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Optional, Tuple


@dataclass(frozen=True)
class FilterSpec:
    """Ordered include globs and exclude globs."""
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, include: Optional[Iterable[str]] = None,
                   exclude: Optional[Iterable[str]] = None) -> "FilterSpec":
        return cls(
            include=tuple(dict.fromkeys(include or ())),
            exclude=tuple(dict.fromkeys(exclude or ())),
        )

    @property
    def is_empty(self) -> bool:
        return not self.include and not self.exclude


def _matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatchcase(name, pattern) for pattern in patterns)


def matches(name: str, spec: FilterSpec) -> bool:
    """Return True if the repository name passes the filter.

    A name is kept when it matches at least one include pattern (an empty
    include set matches everything) and matches no exclude pattern. ``*``
    crosses ``/`` so ``team/*`` matches ``team/app/api``.
    """
    if _matches_any(name, spec.exclude):
        return False
    if not spec.include:
        return True
    return _matches_any(name, spec.include)
