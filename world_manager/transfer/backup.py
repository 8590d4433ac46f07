"""
Environment Backups — snapshots every world of one environment to a JSON file
and restores them, into the same or another environment.

Behavioral Contract:
- backup reads through the registry and writes one file per call through a
  temporary file and os.replace; a crashed backup leaves no partial file
  under the final name.
- An unknown backup version fails with UnsupportedSchema.
- restore writes only through the registry: create for absent keys, replace
  (keeping the target's created_at) for existing keys and only with
  overwrite. Without overwrite an existing world is left untouched and
  reported as skipped.
- One world failing doesn't stop the restore; failures are collected.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from world_manager.errors import (
    Conflict,
    NotFound,
    UnsupportedSchema,
    ValidationError,
    WorldManagerError,
)
from world_manager.models.base import utcnow
from world_manager.models.lifecycle import SUPPORTED_BACKUP_VERSIONS, EnvironmentBackup, RestoreReport
from world_manager.models.world import Environment, WorldFilter
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import EnvLike

logger = logging.getLogger(__name__)


def load_backup(path) -> EnvironmentBackup:
    """Parse a backup file. Raises NotFound, UnsupportedSchema or ValidationError."""
    path = Path(path)
    if not path.is_file():
        raise NotFound(f"Backup file not found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ValidationError(f"{path} is not valid JSON", problems=[str(e)]) from e
    if not isinstance(raw, dict):
        raise ValidationError(f"{path} is not a backup")

    version = raw.get("version")
    if version not in SUPPORTED_BACKUP_VERSIONS:
        raise UnsupportedSchema(version, SUPPORTED_BACKUP_VERSIONS)

    try:
        return EnvironmentBackup.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(f"{path} is malformed", e) from e


class BackupManager:
    """Environment-wide backup and restore over one registry."""

    def __init__(self, registry: WorldRegistry, backups_dir: Path = Path("backups")):
        self._registry = registry
        self.backups_dir = Path(backups_dir)

    def default_backup_path(self, environment: Environment, now: datetime) -> Path:
        return self.backups_dir / f"backup-{environment.value}-{now.strftime('%Y-%m-%dT%H-%M-%S')}.json"

    def resolve_backup_path(self, path) -> Path:
        """Bare file names resolve under backups_dir."""
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            return self.backups_dir / path
        return path

    def backup(self, environment: EnvLike, output_path=None, now: Optional[datetime] = None) -> Path:
        """Write every world of ``environment``, active or not, and return the file path."""
        environment = Environment(environment)
        now = now or utcnow()
        worlds = self._registry.list(WorldFilter(environment=environment, order="insertion"))
        snapshot = EnvironmentBackup(environment=environment, created_at=now, worlds=worlds)

        path = Path(output_path) if output_path else self.default_backup_path(environment, now)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".partial")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

        logger.info("Backed up %d world(s) from %s to %s", len(worlds), environment.value, path)
        return path

    def restore(
        self,
        path,
        target_environment: Optional[EnvLike] = None,
        overwrite: bool = False,
        now: Optional[datetime] = None,
    ) -> RestoreReport:
        """Restore a backup into ``target_environment`` (default: the environment it was taken from)."""
        snapshot = load_backup(path)
        environment = Environment(target_environment) if target_environment else snapshot.environment
        report = RestoreReport(source_environment=snapshot.environment, environment=environment)

        for world in snapshot.worlds:
            restored = world.model_copy(update={"environment": environment})
            try:
                self._registry.create(restored, now)
            except Conflict:
                if not overwrite:
                    report.skipped.append(world.id)
                    continue
                try:
                    existing = self._registry.require(world.id, environment)
                    self._registry.replace(restored.model_copy(update={"created_at": existing.created_at}), now)
                except WorldManagerError as e:
                    report.failed[world.id] = str(e)
                else:
                    report.replaced.append(world.id)
            except WorldManagerError as e:
                report.failed[world.id] = str(e)
            else:
                report.created.append(world.id)

        logger.info(
            "Restored %s into %s: %d created, %d replaced, %d skipped, %d failed",
            path, environment.value, len(report.created), len(report.replaced),
            len(report.skipped), len(report.failed),
        )
        return report
