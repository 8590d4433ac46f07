"""
Seed Codec — exports worlds to portable bundles and imports them back.

Bundle layout (one directory per bundle):

    <bundle>/seed.json          manifest + world + blob index
    <bundle>/blob/<blobId>      blob bytes (only with include_blobs)
    <bundle>/README.md          human-readable summary

Behavioral Contract:
- load/check/validate/list work on the filesystem alone; they never touch the
  record store or the blob store.
- An unknown schema_version fails with UnsupportedSchema, never a lossy load.
- Exports are staged in a sibling directory and moved into place at the end.
- analyze_conflicts is a read-only diff against the target environment.
- import_seed resolves everything in memory first, uploads blobs, then makes
  the world write as the single commit point.
"""

import hashlib
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional

from pydantic import ValidationError as PydanticValidationError

from world_manager.errors import (
    NotFound,
    PartialExport,
    UnsupportedSchema,
    ValidationError,
    WorldManagerError,
)
from world_manager.models.base import utcnow
from world_manager.models.seed import (
    SUPPORTED_SCHEMA_VERSIONS,
    BlobReference,
    ConflictReport,
    ConflictStrategy,
    ImportAction,
    ImportResult,
    SeedBundle,
    SeedManifest,
)
from world_manager.models.world import Environment, World
from world_manager.references import referenced_blob_ids
from world_manager.registry.store import WorldRegistry
from world_manager.resolver.conflicts import ConflictResolver, find_user
from world_manager.storage.blobs import BlobStore

logger = logging.getLogger(__name__)

SEED_FILE = "seed.json"
BLOB_DIR = "blob"
README_FILE = "README.md"


# ============================================================
# OFFLINE BUNDLE ACCESS
# ============================================================

def load_bundle(bundle_path) -> SeedBundle:
    """Parse ``seed.json``. Raises NotFound, UnsupportedSchema or ValidationError."""
    bundle_path = Path(bundle_path)
    seed_file = bundle_path / SEED_FILE
    if not seed_file.is_file():
        raise NotFound(f"No seed bundle at {bundle_path}")

    try:
        raw = json.loads(seed_file.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ValidationError(f"{seed_file} is not valid JSON", problems=[str(e)]) from e
    if not isinstance(raw, dict) or not isinstance(raw.get("manifest"), dict):
        raise ValidationError(f"{seed_file} has no manifest")

    version = raw["manifest"].get("schema_version")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise UnsupportedSchema(version, SUPPORTED_SCHEMA_VERSIONS)

    try:
        return SeedBundle.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(f"{seed_file} is malformed", e) from e


def blob_file(bundle_path, ref: BlobReference) -> Path:
    """Absolute path of a bundled blob; rejects paths leaving the bundle."""
    relative = PurePosixPath(ref.relative_path)
    if relative.is_absolute() or ".." in relative.parts:
        raise ValidationError(f"Blob '{ref.blob_id}' points outside the bundle: {ref.relative_path}")
    return Path(bundle_path).joinpath(*relative.parts)


def check_seed(bundle_path) -> List[str]:
    """Structural problems with a bundle; empty when it is valid."""
    try:
        bundle = load_bundle(bundle_path)
    except ValidationError as e:
        return [str(e)] + e.problems
    except WorldManagerError as e:
        return [str(e)]

    problems = []
    for ref in bundle.blobs:
        try:
            path = blob_file(bundle_path, ref)
        except ValidationError as e:
            problems.append(str(e))
            continue
        if not path.is_file():
            problems.append(f"Blob file missing for '{ref.blob_id}': {ref.relative_path}")
        elif ref.checksum and _sha256(path.read_bytes()) != ref.checksum:
            problems.append(f"Checksum mismatch for blob '{ref.blob_id}'")
    return problems


def validate_seed(bundle_path) -> bool:
    problems = check_seed(bundle_path)
    for problem in problems:
        logger.warning("Seed %s: %s", bundle_path, problem)
    return not problems


def list_seeds(root) -> Iterator[str]:
    """Names of the immediate subdirectories of ``root`` holding a loadable seed.json."""
    root = Path(root)
    if not root.is_dir():
        return
    for entry in sorted(root.iterdir()):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        try:
            load_bundle(entry)
        except WorldManagerError as e:
            logger.debug("Skipping %s: %s", entry, e)
            continue
        yield entry.name


def render_readme(bundle: SeedBundle, bundle_name: str) -> str:
    world = bundle.world
    manifest = bundle.manifest
    return f"""# Seed Data: {world.name or world.id}

**Generated:** {manifest.exported_at.isoformat()}
**Source World:** {manifest.world_id} ({manifest.source_environment.value})
**Schema Version:** {manifest.schema_version}

## Contents

- **Users:** {len(world.users)}
- **Artifacts:** {len(world.artifacts)}
- **Chats:** {len(world.chats)}
- **Blob Files:** {len(bundle.blobs)}

## Usage

```bash
# Import this seed
world-manager import-seed {bundle_name}

# Validate seed structure
world-manager validate-seed {bundle_name}
```

## Structure

- `{SEED_FILE}` - Manifest, world record and blob index
- `{BLOB_DIR}/` - Blob files
- `{README_FILE}` - This file
"""


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ============================================================
# CODEC
# ============================================================

class SeedCodec:
    """Export/analyze/import against one registry and blob store."""

    def __init__(
        self,
        registry: WorldRegistry,
        blob_store: BlobStore,
        seeds_dir: Path = Path("seeds"),
        resolver: Optional[ConflictResolver] = None,
    ):
        self._registry = registry
        self._blobs = blob_store
        self.seeds_dir = Path(seeds_dir)
        self._resolver = resolver or ConflictResolver()

    def default_bundle_path(self, world: World, now: datetime) -> Path:
        return self.seeds_dir / f"{world.id}_{world.environment.value}_{now.strftime('%Y-%m-%d')}"

    def resolve_bundle_path(self, path) -> Path:
        """Bare bundle names (as listed by list_seeds) resolve under seeds_dir."""
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            return self.seeds_dir / path
        return path

    def export_world(
        self,
        world_id: str,
        environment: Environment,
        include_blobs: bool = False,
        output_path=None,
        now: Optional[datetime] = None,
    ) -> Path:
        """
        Write a bundle for one world and return its path.

        Referenced blobs missing from the blob store don't stop the export;
        the bundle is written without them and PartialExport is raised with
        the failed ids.
        """
        now = now or utcnow()
        world = self._registry.require(world_id, environment)
        bundle_path = Path(output_path) if output_path else self.default_bundle_path(world, now)
        bundle_path.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(prefix=f".{bundle_path.name}.", dir=bundle_path.parent))
        failed = {}
        try:
            blobs = self._copy_blobs(world, staging, failed) if include_blobs else []
            bundle = SeedBundle(
                manifest=SeedManifest(
                    world_id=world.id,
                    source_environment=world.environment,
                    exported_at=now,
                ),
                world=world,
                blobs=blobs,
            )
            (staging / SEED_FILE).write_text(bundle.model_dump_json(indent=2), encoding="utf-8")
            (staging / README_FILE).write_text(render_readme(bundle, bundle_path.name), encoding="utf-8")

            if bundle_path.exists():
                shutil.rmtree(bundle_path)
            os.replace(staging, bundle_path)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info(
            "Exported world %s (%s) to %s with %d blob(s)",
            world.id, world.environment.value, bundle_path, len(blobs),
        )
        if failed:
            logger.warning("Export of %s is missing %d blob(s): %s", world.id, len(failed), sorted(failed))
            raise PartialExport(bundle_path, failed)
        return bundle_path

    def _copy_blobs(self, world: World, staging: Path, failed: dict) -> List[BlobReference]:
        refs = []
        for blob_id in referenced_blob_ids(world):
            try:
                data = self._blobs.get(blob_id)
            except (OSError, ValueError) as e:
                failed[blob_id] = str(e)
                continue
            if data is None:
                failed[blob_id] = "not found in blob store"
                continue

            relative = f"{BLOB_DIR}/{blob_id}"
            target = staging.joinpath(*relative.split("/"))
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            refs.append(BlobReference(
                blob_id=blob_id,
                relative_path=relative,
                size=len(data),
                checksum=_sha256(data),
            ))
        return refs

    def _is_stored(self, blob_id: str) -> bool:
        try:
            return self._blobs.exists(blob_id)
        except ValueError:
            return False

    def _target_environment(self, bundle: SeedBundle, target_environment) -> Environment:
        if target_environment is None:
            return bundle.world.environment
        return Environment(target_environment)

    def analyze_conflicts(self, bundle_path, target_environment: Optional[Environment] = None) -> ConflictReport:
        """Diff a bundle against the target environment without writing anything."""
        bundle = load_bundle(bundle_path)
        environment = self._target_environment(bundle, target_environment)
        incoming = bundle.world
        target = self._registry.get(incoming.id, environment)

        report = ConflictReport(
            world_id=incoming.id,
            target_environment=environment,
            world_exists=target is not None,
            missing_blobs=[b for b in referenced_blob_ids(incoming) if not self._is_stored(b)],
        )
        if target is not None:
            artifact_ids = {a.id for a in target.artifacts}
            chat_ids = {c.id for c in target.chats}
            report.conflicting_users = [
                u.id for u in incoming.users if find_user(target.users, u) is not None
            ]
            report.conflicting_artifacts = [a.id for a in incoming.artifacts if a.id in artifact_ids]
            report.conflicting_chats = [c.id for c in incoming.chats if c.id in chat_ids]
        return report

    def import_seed(
        self,
        bundle_path,
        strategy: Optional[ConflictStrategy] = None,
        target_environment: Optional[Environment] = None,
        now: Optional[datetime] = None,
    ) -> ImportResult:
        """
        Import a bundle under ``strategy``. With world=skip and an existing
        target nothing is written. Raises Conflict if another caller created
        the world between resolution and commit.
        """
        strategy = strategy or ConflictStrategy()
        now = now or utcnow()
        bundle = load_bundle(bundle_path)
        problems = check_seed(bundle_path)
        if problems:
            raise ValidationError(f"Seed bundle {bundle_path} is invalid", problems=problems)

        environment = self._target_environment(bundle, target_environment)
        incoming = bundle.world.model_copy(update={"environment": environment})
        target = self._registry.get(incoming.id, environment)
        bundled = {ref.blob_id: ref for ref in bundle.blobs}
        missing = [b for b in referenced_blob_ids(incoming) if not self._is_stored(b)]

        resolution = self._resolver.resolve(incoming, target, strategy, missing, bundled, now)
        result = ImportResult(
            world_id=incoming.id,
            environment=environment,
            action=resolution.action,
            warnings=resolution.warnings,
        )
        if resolution.action == ImportAction.SKIPPED:
            logger.info("Skipped import of %s into %s: world exists", incoming.id, environment.value)
            return result

        for blob_id in resolution.blob_uploads:
            data = blob_file(bundle_path, bundled[blob_id]).read_bytes()
            try:
                self._blobs.put(blob_id, data)
            except ValueError as e:
                raise ValidationError(f"Cannot upload blob '{blob_id}'", problems=[str(e)]) from e
            result.uploaded_blobs.append(blob_id)

        # COMMIT
        if target is None:
            self._registry.create(resolution.world, now)
        else:
            self._registry.replace(resolution.world, now)

        for warning in resolution.warnings:
            logger.warning("Import %s: %s", incoming.id, warning)
        logger.info(
            "Imported %s into %s (%s, %d blob(s) uploaded)",
            incoming.id, environment.value, resolution.action.value, len(result.uploaded_blobs),
        )
        return result
