"""
Lifecycle Scheduler — deactivates idle worlds past their retention window.

Behavioral Contract:
- Candidates are active worlds with settings.auto_cleanup set whose idle time
  (now - last_used_at) exceeds their TTL. A world that was never used has no
  idle time and is never a candidate.
- TTL is settings.cleanup_after_hours when set, else the default retention.
- A candidate listed in another active world's dependencies is never
  deactivated; it is reported as blocked with its dependents.
- apply re-reads every planned world before acting. A world used, disabled
  or deactivated since planning is skipped with a reason.
- Cleanup deactivates (is_active=False). It never deletes a record.
- One world failing doesn't abort the batch; failures are collected.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from world_manager.errors import DependencyBlocked, WorldManagerError
from world_manager.models.base import utcnow
from world_manager.models.lifecycle import BlockedWorld, CleanupPlan, CleanupReport
from world_manager.models.world import Environment, World, WorldFilter, WorldPatch
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import EnvLike

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24


class LifecycleScheduler:
    def __init__(self, registry: WorldRegistry, default_ttl_hours: int = DEFAULT_TTL_HOURS):
        self._registry = registry
        self.default_ttl_hours = default_ttl_hours

    def ttl(self, world: World) -> timedelta:
        hours = world.settings.cleanup_after_hours or self.default_ttl_hours
        return timedelta(hours=hours)

    def is_expired(self, world: World, now: datetime) -> bool:
        if world.last_used_at is None:
            return False
        return now - world.last_used_at > self.ttl(world)

    def skip_reason(self, planned: World, current: World, now: datetime) -> Optional[str]:
        """Why a planned world must no longer be deactivated, or None."""
        if not current.is_active:
            return "already inactive"
        if not current.settings.auto_cleanup:
            return "auto cleanup disabled"
        if current.last_used_at != planned.last_used_at:
            return "used since the cleanup plan was made"
        if not self.is_expired(current, now):
            return "no longer past its TTL"
        return None

    def plan(self, environment: Optional[Environment] = None, now: Optional[datetime] = None) -> CleanupPlan:
        """Select expired worlds and split them into eligible and blocked."""
        now = now or utcnow()
        plan = CleanupPlan(environment=environment, evaluated_at=now)

        active = self._registry.list(WorldFilter(environment=environment, is_active=True, order="insertion"))
        for world in active:
            if not world.settings.auto_cleanup or not self.is_expired(world, now):
                continue
            dependents = self._registry.dependents_of(world)
            if dependents:
                plan.blocked.append(BlockedWorld(
                    world_id=world.id,
                    environment=world.environment,
                    dependents=[d.id for d in dependents],
                ))
            else:
                plan.eligible.append(world)

        logger.info(
            "Cleanup plan for %s: %d eligible, %d blocked",
            environment.value if environment else "all environments",
            len(plan.eligible), len(plan.blocked),
        )
        return plan

    def apply(self, plan: CleanupPlan, now: Optional[datetime] = None) -> CleanupReport:
        """Deactivate every eligible world in ``plan`` that is still eligible now."""
        now = now or max(utcnow(), plan.evaluated_at)
        report = CleanupReport(blocked=list(plan.blocked))
        for planned in plan.eligible:
            try:
                current = self._registry.require(planned.id, planned.environment)
                reason = self.skip_reason(planned, current, now)
                if reason:
                    logger.info("Skipping cleanup of %s: %s", planned.id, reason)
                    report.skipped[planned.id] = reason
                    continue
                self.deactivate(planned.id, planned.environment)
            except DependencyBlocked as e:
                report.blocked.append(BlockedWorld(
                    world_id=planned.id,
                    environment=planned.environment,
                    dependents=e.dependents,
                ))
            except WorldManagerError as e:
                logger.error("Failed to deactivate %s: %s", planned.id, e)
                report.failed[planned.id] = str(e)
            else:
                report.deactivated.append(planned.id)
        return report

    def cleanup(
        self,
        environment: Optional[Environment] = None,
        confirmed: bool = True,
        now: Optional[datetime] = None,
    ) -> CleanupReport:
        """Plan and, when ``confirmed``, apply. Unconfirmed runs write nothing."""
        plan = self.plan(environment, now)
        if not confirmed:
            return CleanupReport(blocked=plan.blocked, confirmed=False)
        return self.apply(plan, now)

    def deactivate(self, world_id: str, environment: EnvLike) -> World:
        """Deactivate one world. Raises DependencyBlocked if active worlds depend on it."""
        world = self._registry.require(world_id, environment)
        dependents = self._registry.dependents_of(world)
        if dependents:
            raise DependencyBlocked(world_id, [d.id for d in dependents])
        deactivated = self._registry.update(world_id, environment, WorldPatch(is_active=False))
        logger.info("Deactivated world %s in %s", world_id, deactivated.environment.value)
        return deactivated
