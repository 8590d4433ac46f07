"""Tests for environment backups."""

import json
from datetime import datetime, timezone

import pytest

from world_manager.errors import NotFound, UnsupportedSchema, ValidationError
from world_manager.models.world import Environment, World, WorldArtifact
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import SqliteRecordStore
from world_manager.transfer.backup import BackupManager, load_backup

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LATER = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestBackupManager:
    @pytest.fixture(autouse=True)
    def _dirs(self, tmp_path):
        self.tmp_path = tmp_path
        self.records = SqliteRecordStore(":memory:")
        self.registry = WorldRegistry(self.records)
        self.backups = BackupManager(self.registry, tmp_path / "backups")
        yield
        self.records.close()

    def _make_world(self, world_id="UC_001", environment=Environment.LOCAL, **fields) -> World:
        return self.registry.create(World(id=world_id, environment=environment, **fields), now=NOW)

    def test_backup_writes_every_world_of_the_environment(self):
        self._make_world("UC_001", artifacts=[WorldArtifact(id="a", content="blob://s/img")])
        self._make_world("UC_002", is_active=False)
        self._make_world("UC_003", environment=Environment.BETA)

        path = self.backups.backup("LOCAL", now=NOW)
        assert path == self.tmp_path / "backups" / "backup-LOCAL-2026-03-01T12-00-00.json"

        snapshot = load_backup(path)
        assert snapshot.environment == Environment.LOCAL
        assert snapshot.created_at == NOW
        assert [w.id for w in snapshot.worlds] == ["UC_001", "UC_002"]
        assert snapshot.worlds[0].artifacts[0].content == "blob://s/img"
        assert list(path.parent.glob("*.partial")) == []

    def test_backup_to_explicit_path(self):
        self._make_world()
        target = self.tmp_path / "nested" / "local.json"
        assert self.backups.backup(Environment.LOCAL, output_path=target) == target
        assert json.loads(target.read_text())["version"] == "1.0"

    def test_restore_into_empty_environment(self):
        self._make_world("UC_001", name="Onboarding")
        path = self.backups.backup("LOCAL", now=NOW)

        report = self.backups.restore(path, target_environment="PROD", now=LATER)
        assert report.source_environment == Environment.LOCAL
        assert report.environment == Environment.PROD
        assert report.created == ["UC_001"]
        assert self.registry.require("UC_001", Environment.PROD).name == "Onboarding"

    def test_restore_skips_existing_without_overwrite(self):
        self._make_world("UC_001", name="Before")
        path = self.backups.backup("LOCAL", now=NOW)
        self.registry.update("UC_001", Environment.LOCAL, {"name": "After"})

        report = self.backups.restore(path)
        assert report.skipped == ["UC_001"]
        assert report.created == []
        assert self.registry.require("UC_001", Environment.LOCAL).name == "After"

    def test_restore_with_overwrite_keeps_created_at(self):
        original = self._make_world("UC_001", name="Before")
        path = self.backups.backup("LOCAL", now=NOW)
        self.registry.update("UC_001", Environment.LOCAL, {"name": "After"})
        self._make_world("UC_002")

        report = self.backups.restore(path, overwrite=True, now=LATER)
        assert report.replaced == ["UC_001"]
        restored = self.registry.require("UC_001", Environment.LOCAL)
        assert restored.name == "Before"
        assert restored.created_at == original.created_at
        assert restored.updated_at == LATER
        # Worlds created after the backup are left alone
        assert self.registry.exists("UC_002", Environment.LOCAL)

    def test_resolve_bare_name_under_backups_dir(self):
        assert self.backups.resolve_backup_path("b.json") == self.tmp_path / "backups" / "b.json"
        absolute = self.tmp_path / "elsewhere.json"
        assert self.backups.resolve_backup_path(absolute) == absolute


class TestLoadBackup:
    def _write(self, tmp_path, data):
        path = tmp_path / "backup.json"
        path.write_text(data if isinstance(data, str) else json.dumps(data))
        return path

    def test_missing_file(self, tmp_path):
        with pytest.raises(NotFound):
            load_backup(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ValidationError):
            load_backup(self._write(tmp_path, "{not json"))

    def test_unsupported_version(self, tmp_path):
        with pytest.raises(UnsupportedSchema) as exc_info:
            load_backup(self._write(tmp_path, {"version": "9.9", "environment": "LOCAL", "worlds": []}))
        assert exc_info.value.version == "9.9"

    def test_malformed_world(self, tmp_path):
        data = {"version": "1.0", "environment": "LOCAL", "worlds": [{"id": "bad id"}]}
        with pytest.raises(ValidationError) as exc_info:
            load_backup(self._write(tmp_path, data))
        assert exc_info.value.problems
