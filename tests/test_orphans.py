"""Tests for the Orphan Auditor."""

from world_manager.audit.orphans import OrphanAuditor
from world_manager.models.world import Environment, World, WorldArtifact, WorldChat
from world_manager.registry.store import WorldRegistry
from world_manager.storage.blobs import LocalBlobStore
from world_manager.storage.records import SqliteRecordStore


def _make_world(world_id: str, *blob_ids, environment: Environment = Environment.LOCAL, **kwargs) -> World:
    artifacts = [WorldArtifact(id=f"art-{b}", content=f"blob://store/{b}") for b in blob_ids]
    return World(id=world_id, environment=environment, artifacts=artifacts, **kwargs)


class _FlakyBlobStore(LocalBlobStore):
    """Fails to delete the ids it is told to."""

    def __init__(self, root, failing):
        super().__init__(root)
        self.failing = set(failing)

    def delete(self, blob_id):
        if blob_id in self.failing:
            raise OSError(f"permission denied: {blob_id}")
        return super().delete(blob_id)


class TestOrphanAuditor:
    def setup_method(self):
        self.records = SqliteRecordStore(":memory:")
        self.registry = WorldRegistry(self.records)

    def teardown_method(self):
        self.records.close()

    def _auditor(self, tmp_path, blob_store=None):
        self.blobs = blob_store or LocalBlobStore(tmp_path)
        for blob_id in ("used-1", "used-2", "orphan-1", "orphan-2"):
            self.blobs.put(blob_id, b"x")
        self.registry.create(_make_world("A", "used-1", "lost-1"))
        self.registry.create(World(
            id="B",
            environment=Environment.BETA,
            chats=[WorldChat(id="c", messages=[{"attachment": {"blobId": "used-2"}}])],
        ))
        return OrphanAuditor(self.registry, self.blobs)

    def test_audit_separates_orphaned_and_missing(self, tmp_path):
        report = self._auditor(tmp_path).audit()
        assert report.orphaned == ["orphan-1", "orphan-2"]
        assert report.missing == ["lost-1"]
        assert report.referenced_count == 3
        assert report.stored_count == 4

    def test_detect_is_deterministic_and_read_only(self, tmp_path):
        auditor = self._auditor(tmp_path)
        first = auditor.detect_orphaned_blobs()
        second = auditor.detect_orphaned_blobs()
        assert first == second == {"orphan-1", "orphan-2"}
        assert len(list(self.blobs.list())) == 4

    def test_missing_blobs_are_logged_not_returned(self, tmp_path, caplog):
        auditor = self._auditor(tmp_path)
        with caplog.at_level("WARNING"):
            orphaned = auditor.detect_orphaned_blobs()
        assert "lost-1" not in orphaned
        assert "lost-1" in caplog.text

    def test_inactive_worlds_still_reference(self, tmp_path):
        auditor = self._auditor(tmp_path)
        self.registry.create(_make_world("C", "orphan-1", is_active=False))
        assert auditor.detect_orphaned_blobs() == {"orphan-2"}

    def test_environment_scope(self, tmp_path):
        auditor = self._auditor(tmp_path)
        assert auditor.detect_orphaned_blobs(Environment.LOCAL) == {"used-2", "orphan-1", "orphan-2"}

    def test_cleanup_is_idempotent(self, tmp_path):
        auditor = self._auditor(tmp_path)
        orphaned = auditor.detect_orphaned_blobs()

        first = auditor.cleanup_orphaned_blobs(orphaned)
        assert first.deleted == ["orphan-1", "orphan-2"]
        assert first.deleted_count == 2

        second = auditor.cleanup_orphaned_blobs(orphaned)
        assert second.deleted_count == 0
        assert second.already_absent == ["orphan-1", "orphan-2"]
        assert sorted(self.blobs.list()) == ["used-1", "used-2"]

    def test_cleanup_keeps_blobs_referenced_since_detection(self, tmp_path):
        auditor = self._auditor(tmp_path)
        orphaned = auditor.detect_orphaned_blobs()
        self.registry.create(_make_world("D", "orphan-2"))

        report = auditor.cleanup_orphaned_blobs(orphaned)
        assert report.deleted == ["orphan-1"]
        assert report.still_referenced == ["orphan-2"]
        assert self.blobs.exists("orphan-2")

    def test_cleanup_without_verification(self, tmp_path):
        auditor = self._auditor(tmp_path)
        report = auditor.cleanup_orphaned_blobs(["used-1"], verify=False)
        assert report.deleted == ["used-1"]

    def test_cleanup_continues_past_failures(self, tmp_path):
        auditor = self._auditor(tmp_path, _FlakyBlobStore(tmp_path, failing=["orphan-1"]))
        report = auditor.cleanup_orphaned_blobs({"orphan-1", "orphan-2"})
        assert report.deleted == ["orphan-2"]
        assert list(report.failed) == ["orphan-1"]
        assert "permission denied" in report.failed["orphan-1"]

    def test_dotted_and_namespaced_references_survive_cleanup(self, tmp_path):
        blobs = LocalBlobStore(tmp_path)
        for blob_id in ("report.pdf", "images/cat", "images/dog"):
            blobs.put(blob_id, b"x")
        self.registry.create(World(
            id="A",
            artifacts=[
                WorldArtifact(id="doc", content={"blobId": "report.pdf"}),
                WorldArtifact(id="pic", content="blob://store/images/cat"),
            ],
        ))
        auditor = OrphanAuditor(self.registry, blobs)

        report = auditor.audit()
        assert report.orphaned == ["images/dog"]
        assert report.missing == []

        cleanup = auditor.cleanup_orphaned_blobs(["report.pdf", "images/cat", "images/dog"])
        assert cleanup.deleted == ["images/dog"]
        assert cleanup.still_referenced == ["images/cat", "report.pdf"]
        assert blobs.exists("report.pdf")
        assert blobs.exists("images/cat")
