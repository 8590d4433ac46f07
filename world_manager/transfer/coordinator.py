"""
Transfer Coordinator — copies one world from one environment to another, or
syncs a whole environment into another.

Behavioral Contract:
- The copy is keyed ``<worldId>_<TARGET>`` in the target environment.
- A taken target key fails with Conflict, dry run or not.
- A dry run returns the descriptor of what would be written and writes nothing.
- The copy gets fresh timestamps and usage, and is inserted through the
  registry's atomic create.
- sync keeps ids: absent worlds are created, present ones replaced with their
  created_at kept. Per-world failures are collected, not raised.
"""

import logging

from pydantic import ValidationError as PydanticValidationError

from world_manager.errors import Conflict, ValidationError, WorldManagerError
from world_manager.models.base import utcnow
from world_manager.models.lifecycle import SyncReport, TransferDescriptor
from world_manager.models.world import Environment, World, WorldFilter
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import EnvLike

logger = logging.getLogger(__name__)


def target_id(world_id: str, target_environment: Environment) -> str:
    return f"{world_id}_{target_environment.value}"


def clone_for(world: World, target_environment: Environment, now=None) -> World:
    """The record a transfer of ``world`` into ``target_environment`` writes."""
    now = now or utcnow()
    try:
        return World.model_validate({
            **world.model_dump(),
            "id": target_id(world.id, target_environment),
            "name": f"{world.name or world.id} ({target_environment.value})",
            "environment": target_environment,
            "created_at": now,
            "updated_at": now,
            "usage_count": 0,
            "last_used_at": None,
        })
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(f"Cannot copy '{world.id}' to {target_environment.value}", e) from e


class TransferCoordinator:
    def __init__(self, registry: WorldRegistry):
        self._registry = registry

    def transfer(
        self,
        world_id: str,
        source_environment: EnvLike,
        target_environment: EnvLike,
        dry_run: bool = False,
        now=None,
    ) -> TransferDescriptor:
        source_environment = Environment(source_environment)
        target_environment = Environment(target_environment)

        source = self._registry.require(world_id, source_environment)
        clone = clone_for(source, target_environment, now)
        if self._registry.exists(clone.id, target_environment):
            raise Conflict(clone.id, target_environment.value)

        descriptor = TransferDescriptor(
            source_id=source.id,
            source_environment=source_environment,
            target_id=clone.id,
            target_environment=target_environment,
            dry_run=dry_run,
            world=clone,
        )
        if dry_run:
            logger.info("Dry run: would copy %s to %s as %s", world_id, target_environment.value, clone.id)
            return descriptor

        descriptor.world = self._registry.create(clone, now)
        descriptor.created = True
        logger.info(
            "Copied %s from %s to %s as %s",
            world_id, source_environment.value, target_environment.value, clone.id,
        )
        return descriptor

    def sync(self, source_environment: EnvLike, target_environment: EnvLike, now=None) -> SyncReport:
        """Upsert every world of the source environment into the target under the same id.

        Existing target worlds are overwritten but keep their created_at.
        """
        source_environment = Environment(source_environment)
        target_environment = Environment(target_environment)
        if source_environment == target_environment:
            raise ValidationError("Source and target environments must differ")

        report = SyncReport(source_environment=source_environment, target_environment=target_environment)
        for world in self._registry.list(WorldFilter(environment=source_environment, order="insertion")):
            synced = world.model_copy(update={"environment": target_environment})
            try:
                self._registry.create(synced, now)
            except Conflict:
                try:
                    existing = self._registry.require(world.id, target_environment)
                    self._registry.replace(synced.model_copy(update={"created_at": existing.created_at}), now)
                except WorldManagerError as e:
                    report.failed[world.id] = str(e)
                else:
                    report.updated.append(world.id)
            except WorldManagerError as e:
                report.failed[world.id] = str(e)
            else:
                report.created.append(world.id)

        logger.info(
            "Synced %s to %s: %d created, %d updated, %d failed",
            source_environment.value, target_environment.value,
            len(report.created), len(report.updated), len(report.failed),
        )
        return report
