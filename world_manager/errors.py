"""
Error taxonomy.

Structural failures (NotFound, Conflict, UnsupportedSchema, ValidationError,
DependencyBlocked) abort the single operation that raised them. The Partial*
errors describe a batch that finished with some per-item failures; they carry
the per-item outcomes rather than a single flag.
"""

from typing import Dict, List, Optional


class WorldManagerError(Exception):
    """Base class for all world manager errors."""


class NotFound(WorldManagerError):
    """A world or seed bundle does not exist."""


class Conflict(WorldManagerError):
    """An id already exists where uniqueness is required."""

    def __init__(self, world_id: str, environment: str):
        super().__init__(f"World '{world_id}' already exists in {environment}")
        self.world_id = world_id
        self.environment = environment


class UnsupportedSchema(WorldManagerError):
    """A seed bundle or backup was written with a schema version this build can't read."""

    def __init__(self, version: Optional[str], supported):
        super().__init__(
            f"Unsupported schema version {version!r} "
            f"(supported: {', '.join(sorted(supported))})"
        )
        self.version = version


class ValidationError(WorldManagerError):
    """A bundle is malformed or a world is missing required fields."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []

    @classmethod
    def from_pydantic(cls, message: str, error) -> "ValidationError":
        """Wrap a pydantic ValidationError, one problem line per field error."""
        problems = []
        for item in error.errors():
            location = ".".join(str(part) for part in item.get("loc", ()))
            problems.append(f"{location}: {item['msg']}" if location else item["msg"])
        return cls(message, problems=problems)


class DependencyBlocked(WorldManagerError):
    """A world can't be deactivated while active worlds depend on it."""

    def __init__(self, world_id: str, dependents: List[str]):
        super().__init__(
            f"World '{world_id}' is required by active worlds: {', '.join(dependents)}"
        )
        self.world_id = world_id
        self.dependents = dependents


class PartialExport(WorldManagerError):
    """The bundle was written, but some referenced blobs could not be exported."""

    def __init__(self, bundle_path, failed: Dict[str, str]):
        super().__init__(
            f"Exported {bundle_path} without {len(failed)} blob(s): "
            f"{', '.join(sorted(failed))}"
        )
        self.bundle_path = bundle_path
        self.failed = failed


class PartialCleanup(WorldManagerError):
    """A cleanup batch completed with per-item failures."""

    def __init__(self, failed: Dict[str, str], deleted: Optional[List[str]] = None):
        super().__init__(f"Cleanup failed for {len(failed)} item(s): {', '.join(sorted(failed))}")
        self.failed = failed
        self.deleted = deleted or []
