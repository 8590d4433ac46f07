"""
Orphan Auditor — compares stored blobs against the blobs worlds reference.

Behavioral Contract:
- R = blob ids referenced by artifacts and chats of every world (active or
  not) in scope; S = blob ids listed by the blob store.
- orphaned = S - R is the only set ever offered for deletion.
- missing = R - S is reported and logged, never acted on.
- Detection is read-only and deterministic. Cleanup is idempotent: an id that
  is already gone is recorded, not counted, and never fails the batch.
"""

import logging
from typing import Iterable, Optional, Set

from world_manager.models.lifecycle import BlobAuditReport, BlobCleanupReport
from world_manager.models.world import Environment, WorldFilter
from world_manager.references import referenced_by_all
from world_manager.registry.store import WorldRegistry
from world_manager.storage.blobs import BlobStore

logger = logging.getLogger(__name__)


class OrphanAuditor:
    def __init__(self, registry: WorldRegistry, blob_store: BlobStore):
        self._registry = registry
        self._blobs = blob_store

    def referenced(self, environment: Optional[Environment] = None) -> Set[str]:
        """R: blob ids referenced by worlds in ``environment`` (all when None)."""
        worlds = self._registry.list(WorldFilter(environment=environment, order="insertion"))
        return referenced_by_all(worlds)

    def stored(self) -> Set[str]:
        """S: blob ids the store can enumerate."""
        return set(self._blobs.list())

    def audit(self, environment: Optional[Environment] = None) -> BlobAuditReport:
        referenced = self.referenced(environment)
        stored = self.stored()
        return BlobAuditReport(
            environment=environment,
            referenced_count=len(referenced),
            stored_count=len(stored),
            orphaned=sorted(stored - referenced),
            missing=sorted(referenced - stored),
        )

    def detect_orphaned_blobs(self, environment: Optional[Environment] = None) -> Set[str]:
        """Stored but unreferenced blob ids. Missing references are only logged."""
        report = self.audit(environment)
        if report.missing:
            logger.warning(
                "%d referenced blob(s) are missing from the blob store: %s",
                len(report.missing), ", ".join(report.missing),
            )
        return set(report.orphaned)

    def cleanup_orphaned_blobs(self, blob_ids: Iterable[str], verify: bool = True) -> BlobCleanupReport:
        """
        Delete ``blob_ids`` one by one, continuing past failures.

        With ``verify`` the references are recomputed first, and any id that
        became referenced since detection is kept.
        """
        report = BlobCleanupReport()
        referenced = self.referenced() if verify else set()

        for blob_id in sorted(set(blob_ids)):
            if blob_id in referenced:
                report.still_referenced.append(blob_id)
                continue
            try:
                removed = self._blobs.delete(blob_id)
            except (OSError, ValueError) as e:
                logger.error("Failed to delete blob %s: %s", blob_id, e)
                report.failed[blob_id] = str(e)
                continue
            if removed:
                report.deleted.append(blob_id)
            else:
                report.already_absent.append(blob_id)

        logger.info(
            "Orphan cleanup: %d deleted, %d already absent, %d still referenced, %d failed",
            len(report.deleted), len(report.already_absent),
            len(report.still_referenced), len(report.failed),
        )
        return report
