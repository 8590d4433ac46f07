"""World manager data models."""

from world_manager.models.base import TimestampMixin, utcnow
from world_manager.models.lifecycle import (
    BACKUP_VERSION,
    DEPENDENCY_BLOCKED,
    BlobAuditReport,
    BlobCleanupReport,
    BlockedWorld,
    CleanupPlan,
    CleanupReport,
    EnvironmentBackup,
    RestoreReport,
    SyncReport,
    TransferDescriptor,
)
from world_manager.models.seed import (
    SCHEMA_VERSION,
    SUPPORTED_SCHEMA_VERSIONS,
    BlobReference,
    ConflictReport,
    ConflictResolution,
    ConflictStrategy,
    ImportAction,
    ImportResult,
    SeedBundle,
    SeedManifest,
    UserConflictResolution,
)
from world_manager.models.world import (
    Category,
    Environment,
    World,
    WorldArtifact,
    WorldChat,
    WorldFilter,
    WorldPatch,
    WorldSettings,
    WorldUser,
)

__all__ = [
    "BACKUP_VERSION",
    "DEPENDENCY_BLOCKED",
    "SCHEMA_VERSION",
    "SUPPORTED_SCHEMA_VERSIONS",
    "BlobAuditReport",
    "BlobCleanupReport",
    "BlobReference",
    "BlockedWorld",
    "Category",
    "CleanupPlan",
    "CleanupReport",
    "ConflictReport",
    "ConflictResolution",
    "ConflictStrategy",
    "Environment",
    "EnvironmentBackup",
    "ImportAction",
    "ImportResult",
    "RestoreReport",
    "SeedBundle",
    "SeedManifest",
    "SyncReport",
    "TimestampMixin",
    "TransferDescriptor",
    "UserConflictResolution",
    "World",
    "WorldArtifact",
    "WorldChat",
    "WorldFilter",
    "WorldPatch",
    "WorldSettings",
    "WorldUser",
    "utcnow",
]
