"""Tests for the world, seed and lifecycle models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from world_manager.errors import PartialCleanup
from world_manager.models import (
    BlobCleanupReport,
    Category,
    ConflictReport,
    ConflictResolution,
    ConflictStrategy,
    Environment,
    UserConflictResolution,
    World,
    WorldPatch,
    WorldSettings,
)


class TestWorld:
    def test_defaults(self):
        world = World(id="UC_001")
        assert world.environment == Environment.LOCAL
        assert world.category == Category.GENERAL
        assert world.is_active is True
        assert world.is_template is False
        assert world.usage_count == 0
        assert world.last_used_at is None
        assert world.settings.auto_cleanup is True
        assert world.settings.cleanup_after_hours is None
        assert world.created_at.tzinfo is not None

    def test_key(self):
        world = World(id="UC_001", environment=Environment.BETA)
        assert world.key == ("UC_001", "BETA")

    @pytest.mark.parametrize("bad_id", ["", "has space", "../escape", "-leading", "x" * 65])
    def test_rejects_invalid_ids(self, bad_id):
        with pytest.raises(PydanticValidationError):
            World(id=bad_id)

    def test_tags_and_dependencies_dedupe_in_order(self):
        world = World(id="w", tags=["b", "a", "b", " ", "a"], dependencies=["UC_002", "UC_002"])
        assert world.tags == ["b", "a"]
        assert world.dependencies == ["UC_002"]

    def test_has_tags(self):
        world = World(id="w", tags=["smoke", "crm"])
        assert world.has_tags(["crm"])
        assert world.has_tags([])
        assert not world.has_tags(["crm", "billing"])

    def test_cleanup_after_hours_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            WorldSettings(cleanup_after_hours=0)

    def test_negative_usage_rejected(self):
        with pytest.raises(PydanticValidationError):
            World(id="w", usage_count=-1)

    def test_embedded_entities_keep_unknown_fields(self):
        world = World.model_validate({
            "id": "w",
            "users": [{"id": "u1", "email": "a@test.com", "role": "owner"}],
        })
        assert world.users[0].model_dump()["role"] == "owner"

    def test_touch_updates_updated_at(self):
        world = World(id="w")
        later = world.created_at + timedelta(minutes=5)
        world.touch(later)
        assert world.updated_at == later
        assert world.created_at < world.updated_at

    def test_touch_defaults_to_current_time(self):
        world = World(id="w", updated_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        world.touch()
        assert world.updated_at > datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_json_round_trip(self):
        world = World(
            id="w",
            name="World",
            tags=["t"],
            last_used_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        assert World.model_validate_json(world.model_dump_json()).model_dump() == world.model_dump()


class TestWorldPatch:
    def test_identity_fields_are_not_patchable(self):
        with pytest.raises(PydanticValidationError):
            WorldPatch.model_validate({"id": "other"})
        with pytest.raises(PydanticValidationError):
            WorldPatch.model_validate({"environment": "PROD"})

    def test_only_set_fields_are_dumped(self):
        patch = WorldPatch(name="Renamed")
        assert patch.model_dump(exclude_unset=True) == {"name": "Renamed"}


class TestConflictStrategy:
    def test_defaults(self):
        strategy = ConflictStrategy()
        assert strategy.world == ConflictResolution.REPLACE
        assert strategy.users == UserConflictResolution.MERGE
        assert strategy.blobs == ConflictResolution.MERGE

    def test_rename_only_for_users(self):
        assert ConflictStrategy(users="rename").users == UserConflictResolution.RENAME
        for domain in ("world", "artifacts", "chats", "blobs"):
            with pytest.raises(PydanticValidationError):
                ConflictStrategy(**{domain: "rename"})

    def test_unknown_domain_rejected(self):
        with pytest.raises(PydanticValidationError):
            ConflictStrategy(settings="merge")

    def test_unknown_value_rejected(self):
        with pytest.raises(PydanticValidationError):
            ConflictStrategy(world="overwrite")

    def test_uniform(self):
        strategy = ConflictStrategy.uniform(ConflictResolution.SKIP)
        assert strategy.world == ConflictResolution.SKIP
        assert strategy.users == UserConflictResolution.SKIP
        assert strategy.chats == ConflictResolution.SKIP

    def test_frozen(self):
        strategy = ConflictStrategy()
        with pytest.raises(PydanticValidationError):
            strategy.world = ConflictResolution.SKIP


class TestReports:
    def test_conflict_report_has_conflicts(self):
        clean = ConflictReport(world_id="w", target_environment=Environment.LOCAL, world_exists=False)
        assert not clean.has_conflicts
        dirty = clean.model_copy(update={"missing_blobs": ["b1"]})
        assert dirty.has_conflicts

    def test_blob_cleanup_report_raises_on_failures(self):
        report = BlobCleanupReport(deleted=["a"], failed={"b": "permission denied"})
        assert report.deleted_count == 1
        with pytest.raises(PartialCleanup) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.failed == {"b": "permission denied"}
        assert exc_info.value.deleted == ["a"]

    def test_blob_cleanup_report_clean(self):
        BlobCleanupReport(deleted=["a"]).raise_for_failures()
