"""Scoped release of per-iteration buffers."""

from typing import Any, List, TypeVar

from ..logging_config import get_logger

logger = get_logger("resources")

T = TypeVar("T")


class ResourceScope:
    """Releases every tracked frame, crop and tensor when the scope exits.

    Objects with a ``release()`` method have it called; anything else simply
    has its reference dropped.
    """

    def __init__(self):
        self._resources: List[Any] = []
        self.released = 0

    def track(self, resource: T) -> T:
        self._resources.append(resource)
        return resource

    @property
    def tracked(self) -> int:
        return len(self._resources)

    def release_all(self) -> int:
        count = 0
        while self._resources:
            resource = self._resources.pop()
            release = getattr(resource, "release", None)
            if callable(release):
                try:
                    release()
                except Exception as e:
                    logger.warning(f"Failed to release {type(resource).__name__}: {e}")
            count += 1
        self.released += count
        return count

    def __enter__(self) -> "ResourceScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release_all()
        return False
