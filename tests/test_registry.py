"""Tests for the World Registry, bulk export and sample seeding."""

import csv
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from world_manager.errors import Conflict, NotFound, ValidationError
from world_manager.models.world import Category, Environment, World, WorldFilter, WorldPatch
from world_manager.registry.export import ExportFormat, export_worlds
from world_manager.registry.samples import SAMPLE_USERS, seed_world
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import SqliteRecordStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_world(world_id: str = "UC_001", environment: Environment = Environment.LOCAL, **kwargs) -> World:
    return World(**{"id": world_id, "name": f"World {world_id}", "environment": environment, **kwargs})


class TestWorldRegistry:
    def setup_method(self):
        self.records = SqliteRecordStore(":memory:")
        self.registry = WorldRegistry(self.records)

    def teardown_method(self):
        self.records.close()

    def test_create_stamps_timestamps(self):
        created = self.registry.create(_make_world(), now=NOW)
        assert created.created_at == NOW
        assert created.updated_at == NOW
        assert self.registry.get("UC_001", Environment.LOCAL).created_at == NOW

    def test_create_conflict(self):
        self.registry.create(_make_world())
        with pytest.raises(Conflict) as exc_info:
            self.registry.create(_make_world(name="Other"))
        assert exc_info.value.world_id == "UC_001"
        assert self.registry.get("UC_001", Environment.LOCAL).name == "World UC_001"

    def test_same_id_allowed_per_environment(self):
        self.registry.create(_make_world(environment=Environment.LOCAL))
        self.registry.create(_make_world(environment=Environment.BETA))
        assert self.registry.exists("UC_001", Environment.BETA)

    def test_get_and_require(self):
        assert self.registry.get("missing", Environment.LOCAL) is None
        with pytest.raises(NotFound):
            self.registry.require("missing", Environment.LOCAL)

    def test_update_recomputes_updated_at(self):
        created = self.registry.create(_make_world(), now=NOW)
        updated = self.registry.update("UC_001", Environment.LOCAL, {"name": "Renamed", "tags": ["crm"]})
        assert updated.name == "Renamed"
        assert updated.tags == ["crm"]
        assert updated.created_at == created.created_at
        assert updated.updated_at > created.updated_at
        assert self.registry.get("UC_001", Environment.LOCAL).name == "Renamed"

    def test_update_with_patch_model(self):
        self.registry.create(_make_world())
        updated = self.registry.update("UC_001", Environment.LOCAL, WorldPatch(is_active=False))
        assert updated.is_active is False
        assert updated.name == "World UC_001"

    def test_update_cannot_change_identity(self):
        self.registry.create(_make_world())
        with pytest.raises(ValidationError) as exc_info:
            self.registry.update("UC_001", Environment.LOCAL, {"environment": "PROD"})
        assert any("environment" in p for p in exc_info.value.problems)
        with pytest.raises(ValidationError):
            self.registry.update("UC_001", Environment.LOCAL, {"id": "UC_999"})
        assert self.registry.exists("UC_001", Environment.LOCAL)

    def test_update_missing(self):
        with pytest.raises(NotFound):
            self.registry.update("missing", Environment.LOCAL, {"name": "x"})

    def test_replace_missing_raises(self):
        with pytest.raises(NotFound):
            self.registry.replace(_make_world())

    def test_record_usage(self):
        self.registry.create(_make_world(), now=NOW)
        later = NOW + timedelta(hours=1)
        used = self.registry.record_usage("UC_001", Environment.LOCAL, now=later)
        assert used.usage_count == 1
        assert used.last_used_at == later
        assert self.registry.record_usage("UC_001", Environment.LOCAL).usage_count == 2

    def test_list_defaults_to_updated_desc(self):
        self.registry.create(_make_world("a"), now=NOW)
        self.registry.create(_make_world("b"), now=NOW + timedelta(minutes=1))
        self.registry.create(_make_world("c"), now=NOW + timedelta(minutes=2))
        self.registry.update("a", Environment.LOCAL, {"name": "touched"})

        assert [w.id for w in self.registry.list()] == ["a", "c", "b"]
        assert [w.id for w in self.registry.list(WorldFilter(order="insertion"))] == ["a", "b", "c"]

    def test_list_filters(self):
        self.registry.create(_make_world("a", category=Category.UC, tags=["crm", "smoke"]))
        self.registry.create(_make_world("b", category=Category.DEMO, tags=["crm"]))
        self.registry.create(_make_world("c", environment=Environment.BETA, is_template=True))

        ids = lambda f: sorted(w.id for w in self.registry.list(f))
        assert ids(WorldFilter(environment=Environment.LOCAL)) == ["a", "b"]
        assert ids(WorldFilter(category=Category.UC)) == ["a"]
        assert ids(WorldFilter(tags=["crm"])) == ["a", "b"]
        assert ids(WorldFilter(tags=["crm", "smoke"])) == ["a"]
        assert ids(WorldFilter(is_template=True)) == ["c"]

    def test_dependents_of(self):
        base = self.registry.create(_make_world("UC_001"))
        self.registry.create(_make_world("UC_002", dependencies=["UC_001"]))
        self.registry.create(_make_world("UC_003", dependencies=["UC_001"], is_active=False))
        self.registry.create(_make_world("UC_004", environment=Environment.BETA, dependencies=["UC_001"]))
        assert [w.id for w in self.registry.dependents_of(base)] == ["UC_002"]

    def test_delete(self):
        self.registry.create(_make_world())
        self.registry.delete("UC_001", Environment.LOCAL)
        assert not self.registry.exists("UC_001", Environment.LOCAL)
        with pytest.raises(NotFound):
            self.registry.delete("UC_001", Environment.LOCAL)


class TestConcurrentCreate:
    def test_exactly_one_create_wins(self, tmp_path):
        db_path = str(tmp_path / "worlds.db")
        registries = [WorldRegistry(SqliteRecordStore(db_path)) for _ in range(2)]
        barrier = threading.Barrier(2)
        outcomes = []

        def create(registry):
            barrier.wait()
            try:
                registry.create(_make_world("run_7"))
                outcomes.append("created")
            except Conflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=create, args=(r,)) for r in registries]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "created"]


class TestExportWorlds:
    def setup_method(self):
        self.records = SqliteRecordStore(":memory:")
        self.registry = WorldRegistry(self.records)
        self.registry.create(_make_world("a", tags=["x", "y"]), now=NOW)
        self.registry.create(_make_world("b", environment=Environment.BETA), now=NOW + timedelta(minutes=1))

    def teardown_method(self):
        self.records.close()

    def test_json(self, tmp_path):
        path = export_worlds(self.registry, ExportFormat.JSON, tmp_path, now=NOW)
        assert path.name == "worlds-export-2026-03-01T12-00-00.json"
        data = json.loads(path.read_text())
        assert [w["id"] for w in data] == ["b", "a"]
        assert data[1]["tags"] == ["x", "y"]

    def test_csv(self, tmp_path):
        path = export_worlds(self.registry, "csv", tmp_path, now=NOW)
        with path.open(newline="") as f:
            rows = list(csv.DictReader(f))
        assert [r["id"] for r in rows] == ["b", "a"]
        assert rows[1]["tags"] == "x;y"
        assert rows[0]["environment"] == "BETA"


class TestSeedWorld:
    def setup_method(self):
        self.records = SqliteRecordStore(":memory:")
        self.registry = WorldRegistry(self.records)

    def teardown_method(self):
        self.records.close()

    def test_populates_and_counts_usage(self):
        self.registry.create(_make_world())
        seeded = seed_world(self.registry, "UC_001", Environment.LOCAL, now=NOW)
        assert [u.id for u in seeded.users] == [u.id for u in SAMPLE_USERS]
        assert len(seeded.artifacts) == 2
        assert len(seeded.chats) == 1
        assert seeded.usage_count == 1
        assert seeded.last_used_at == NOW

    def test_missing_world(self):
        with pytest.raises(NotFound):
            seed_world(self.registry, "missing", Environment.LOCAL)
