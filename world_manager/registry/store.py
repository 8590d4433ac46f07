"""
World Registry — CRUD and filtered listing over World records.

Behavioral Contract:
- (id, environment) is unique. create is a single insert-if-absent against the
  record store, never read-then-write, so concurrent workers creating
  run-scoped worlds can't both succeed on the same key.
- update never changes id or environment and always recomputes updated_at.
- Every other write is a whole-record overwrite of one world (last write wins).
- delete is a hard delete reserved for explicit purges; lifecycle cleanup only
  deactivates.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from world_manager.errors import Conflict, NotFound, ValidationError
from world_manager.models.base import utcnow
from world_manager.models.world import Environment, World, WorldFilter, WorldPatch
from world_manager.storage.records import EnvLike, RecordStore

logger = logging.getLogger(__name__)


class WorldRegistry:
    """Owns all reads and writes of World records."""

    def __init__(self, records: RecordStore):
        self._records = records

    def create(self, world: World, now: Optional[datetime] = None) -> World:
        """Insert a new world. Raises Conflict if the key is taken."""
        now = now or utcnow()
        created = world.model_copy(update={"created_at": now, "updated_at": now})
        if not self._records.insert_if_absent(created):
            raise Conflict(world.id, world.environment.value)
        logger.info("Created world %s in %s", created.id, created.environment.value)
        return created

    def get(self, world_id: str, environment: EnvLike) -> Optional[World]:
        """Get a world, or None."""
        return self._records.get(world_id, environment)

    def require(self, world_id: str, environment: EnvLike) -> World:
        """Get a world or raise NotFound."""
        world = self._records.get(world_id, environment)
        if world is None:
            raise NotFound(f"World '{world_id}' not found in {Environment(environment).value}")
        return world

    def exists(self, world_id: str, environment: EnvLike) -> bool:
        return self._records.get(world_id, environment) is not None

    def update(self, world_id: str, environment: EnvLike, patch) -> World:
        """Apply a partial update. ``patch`` is a WorldPatch or a plain dict."""
        if not isinstance(patch, WorldPatch):
            try:
                patch = WorldPatch.model_validate(patch)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(f"Invalid update for world '{world_id}'", e) from e

        current = self.require(world_id, environment)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        updated = World.model_validate({**current.model_dump(), **changes})
        updated.touch()
        self._write(updated)
        logger.info("Updated world %s in %s: %s", world_id, updated.environment.value, sorted(changes))
        return updated

    def replace(self, world: World, now: Optional[datetime] = None) -> World:
        """Overwrite an existing world whole. Raises NotFound if it is gone."""
        replaced = world.model_copy(deep=True)
        replaced.touch(now)
        self._write(replaced)
        return replaced

    def record_usage(self, world_id: str, environment: EnvLike, now: Optional[datetime] = None) -> World:
        """Count one use of a world and stamp last_used_at."""
        now = now or utcnow()
        world = self.require(world_id, environment)
        world.usage_count += 1
        world.last_used_at = now
        return self.replace(world, now)

    def list(self, filter: Optional[WorldFilter] = None) -> List[World]:
        """List worlds. Newest updated_at first unless insertion order is requested."""
        filter = filter or WorldFilter()
        worlds = self._records.query(
            environment=filter.environment,
            category=filter.category,
            is_active=filter.is_active,
            is_template=filter.is_template,
        )
        if filter.tags:
            worlds = [w for w in worlds if w.has_tags(filter.tags)]
        if filter.order == "updated":
            worlds.sort(key=lambda w: w.updated_at, reverse=True)
        return worlds

    def dependents_of(self, world: World) -> List[World]:
        """Other active worlds in the same environment that depend on ``world``."""
        return [
            w for w in self._records.query(environment=world.environment, is_active=True)
            if w.id != world.id and world.id in w.dependencies
        ]

    def delete(self, world_id: str, environment: EnvLike) -> None:
        """Hard delete, for explicit purges only."""
        if not self._records.delete(world_id, environment):
            raise NotFound(f"World '{world_id}' not found in {Environment(environment).value}")
        logger.warning("Purged world %s from %s", world_id, Environment(environment).value)

    def _write(self, world: World) -> None:
        if not self._records.put(world):
            raise NotFound(f"World '{world.id}' not found in {world.environment.value}")
