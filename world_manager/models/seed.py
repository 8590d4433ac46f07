"""Seed bundles and import conflict handling."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from world_manager.models.base import utcnow
from world_manager.models.world import Environment, World

SCHEMA_VERSION = "1.0"
SUPPORTED_SCHEMA_VERSIONS = frozenset({SCHEMA_VERSION})


class SeedManifest(BaseModel):
    world_id: str
    source_environment: Environment
    exported_at: datetime = Field(default_factory=utcnow)
    schema_version: str = SCHEMA_VERSION


class BlobReference(BaseModel):
    """A blob copied into the bundle, addressed relative to the bundle root."""

    blob_id: str
    relative_path: str
    size: int = 0
    checksum: str = ""                      # sha256 of the copied bytes


class SeedBundle(BaseModel):
    """Portable export of one world: the contents of ``seed.json``."""

    manifest: SeedManifest
    world: World
    blobs: List[BlobReference] = []


class ConflictResolution(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"
    SKIP = "skip"


class UserConflictResolution(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"
    SKIP = "skip"
    RENAME = "rename"   # Keep both; the incoming user gets a suffixed id/email


class ConflictStrategy(BaseModel):
    """
    One resolution per domain. Closed: unknown domains and values are rejected,
    and ``rename`` is only accepted for users.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    world: ConflictResolution = ConflictResolution.REPLACE
    users: UserConflictResolution = UserConflictResolution.MERGE
    artifacts: ConflictResolution = ConflictResolution.MERGE
    chats: ConflictResolution = ConflictResolution.MERGE
    blobs: ConflictResolution = ConflictResolution.MERGE

    @classmethod
    def uniform(cls, resolution: ConflictResolution) -> "ConflictStrategy":
        """Same resolution for every domain."""
        value = ConflictResolution(resolution).value
        return cls(world=value, users=value, artifacts=value, chats=value, blobs=value)


class ConflictReport(BaseModel):
    """Read-only diff between a bundle and the target environment."""

    world_id: str
    target_environment: Environment
    world_exists: bool
    conflicting_users: List[str] = []
    conflicting_artifacts: List[str] = []
    conflicting_chats: List[str] = []
    missing_blobs: List[str] = []

    @property
    def has_conflicts(self) -> bool:
        return bool(
            self.world_exists
            or self.conflicting_users
            or self.conflicting_artifacts
            or self.conflicting_chats
            or self.missing_blobs
        )


class ImportAction(str, Enum):
    CREATED = "created"
    REPLACED = "replaced"
    MERGED = "merged"
    SKIPPED = "skipped"


class ImportResult(BaseModel):
    world_id: str
    environment: Environment
    action: ImportAction
    uploaded_blobs: List[str] = []
    warnings: List[str] = []                # Non-fatal, e.g. dangling blob references
