"""
Explicit handle on the stores and components of one world manager instance.

Every facade (CLI invocation, HTTP app, test) builds or receives a context and
passes its components around; nothing is held in module-level state.
"""

import logging
from pathlib import Path
from typing import Optional

from world_manager.audit.orphans import OrphanAuditor
from world_manager.config import WorldManagerSettings
from world_manager.lifecycle.scheduler import LifecycleScheduler
from world_manager.registry.store import WorldRegistry
from world_manager.resolver.conflicts import ConflictResolver
from world_manager.seeds.codec import SeedCodec
from world_manager.storage.blobs import BlobStore, LocalBlobStore
from world_manager.storage.records import RecordStore, SqliteRecordStore
from world_manager.transfer.backup import BackupManager
from world_manager.transfer.coordinator import TransferCoordinator

logger = logging.getLogger(__name__)


class WorldManagerContext:
    def __init__(
        self,
        records: RecordStore,
        blob_store: BlobStore,
        settings: Optional[WorldManagerSettings] = None,
    ):
        self.settings = settings or WorldManagerSettings()
        self.records = records
        self.blob_store = blob_store

        self.registry = WorldRegistry(records)
        self.resolver = ConflictResolver()
        self.codec = SeedCodec(self.registry, blob_store, self.settings.seeds_dir, self.resolver)
        self.auditor = OrphanAuditor(self.registry, blob_store)
        self.scheduler = LifecycleScheduler(self.registry, self.settings.default_ttl_hours)
        self.transfer = TransferCoordinator(self.registry)
        self.backups = BackupManager(self.registry, self.settings.backups_dir)

    @classmethod
    def from_settings(cls, settings: Optional[WorldManagerSettings] = None) -> "WorldManagerContext":
        """Open the SQLite record store and local blob store named by ``settings``."""
        settings = settings or WorldManagerSettings()
        db_path = settings.database_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Opening record store %s and blob root %s", db_path, settings.blob_root)
        return cls(
            records=SqliteRecordStore(db_path),
            blob_store=LocalBlobStore(settings.blob_root),
            settings=settings,
        )

    def close(self) -> None:
        self.records.close()

    def __enter__(self) -> "WorldManagerContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
