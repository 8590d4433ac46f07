"""Results of lifecycle cleanup, blob auditing, environment transfer and backups."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from world_manager.errors import PartialCleanup
from world_manager.models.base import utcnow
from world_manager.models.world import Environment, World

DEPENDENCY_BLOCKED = "DependencyBlocked"
BACKUP_VERSION = "1.0"
SUPPORTED_BACKUP_VERSIONS = frozenset({BACKUP_VERSION})


class BlockedWorld(BaseModel):
    """A cleanup candidate held back by active dependents."""

    world_id: str
    environment: Environment
    reason: str = DEPENDENCY_BLOCKED
    dependents: List[str]


class CleanupPlan(BaseModel):
    """Worlds past their TTL, split into deactivatable and blocked."""

    environment: Optional[Environment] = None
    evaluated_at: datetime
    eligible: List[World] = []
    blocked: List[BlockedWorld] = []

    @property
    def eligible_ids(self) -> List[str]:
        return [w.id for w in self.eligible]


class CleanupReport(BaseModel):
    deactivated: List[str] = []
    blocked: List[BlockedWorld] = []
    skipped: Dict[str, str] = {}            # world id -> why it is no longer eligible
    failed: Dict[str, str] = {}             # world id -> error message
    confirmed: bool = True


class BlobAuditReport(BaseModel):
    """
    Stored vs referenced blobs. ``orphaned`` (stored, unreferenced) is safe to
    clean up; ``missing`` (referenced, not stored) is an integrity problem and
    is never acted on.
    """

    environment: Optional[Environment] = None
    referenced_count: int = 0
    stored_count: int = 0
    orphaned: List[str] = []
    missing: List[str] = []


class BlobCleanupReport(BaseModel):
    deleted: List[str] = []
    already_absent: List[str] = []
    still_referenced: List[str] = []        # Re-referenced since detection; kept
    failed: Dict[str, str] = {}             # blob id -> error message

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    def raise_for_failures(self) -> None:
        """Raise PartialCleanup if any deletion failed."""
        if self.failed:
            raise PartialCleanup(self.failed, deleted=self.deleted)


class TransferDescriptor(BaseModel):
    """What a transfer wrote, or would write on a dry run."""

    source_id: str
    source_environment: Environment
    target_id: str
    target_environment: Environment
    dry_run: bool
    created: bool = False
    world: World


class SyncReport(BaseModel):
    source_environment: Environment
    target_environment: Environment
    created: List[str] = []
    updated: List[str] = []
    failed: Dict[str, str] = {}             # world id -> error message


class EnvironmentBackup(BaseModel):
    """Every world of one environment at one point in time."""

    version: str = BACKUP_VERSION
    environment: Environment
    created_at: datetime = Field(default_factory=utcnow)
    worlds: List[World] = []


class RestoreReport(BaseModel):
    source_environment: Environment
    environment: Environment
    created: List[str] = []
    replaced: List[str] = []
    skipped: List[str] = []                 # Existed in the target; overwrite was off
    failed: Dict[str, str] = {}
