"""
World Manager API — FastAPI endpoints.

Exposes the world manager over REST for:
- World CRUD, usage tracking and sample seeding
- Environment transfer, sync, backup and restore
- Lifecycle cleanup
- Seed bundle export, validation, conflict analysis and import
- Blob auditing and orphan cleanup

Errors raised by the components are translated to status codes in one place
(see STATUS_CODES); endpoints don't catch them individually.
"""

from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from world_manager import __version__
from world_manager.config import WorldManagerSettings
from world_manager.context import WorldManagerContext
from world_manager.errors import (
    Conflict,
    DependencyBlocked,
    NotFound,
    PartialCleanup,
    PartialExport,
    UnsupportedSchema,
    ValidationError,
    WorldManagerError,
)
from world_manager.models.seed import ConflictStrategy
from world_manager.models.world import Category, Environment, World, WorldFilter
from world_manager.registry.samples import seed_world
from world_manager.seeds.codec import check_seed, list_seeds

STATUS_CODES = {
    NotFound: 404,
    Conflict: 409,
    DependencyBlocked: 409,
    UnsupportedSchema: 422,
    ValidationError: 400,
    PartialExport: 207,
    PartialCleanup: 207,
}


# --- Request/Response Models ---

class TransferRequest(BaseModel):
    world_id: str
    source_environment: Environment
    target_environment: Environment
    dry_run: bool = False


class SyncRequest(BaseModel):
    source_environment: Environment
    target_environment: Environment


class BackupRequest(BaseModel):
    environment: Environment
    output_path: Optional[str] = None


class RestoreRequest(BaseModel):
    path: str
    target_environment: Optional[Environment] = None
    overwrite: bool = False


class CleanupRequest(BaseModel):
    environment: Optional[Environment] = None
    confirmed: bool = True


class SeedExportRequest(BaseModel):
    world_id: str
    environment: Environment = Environment.LOCAL
    include_blobs: bool = False
    output_path: Optional[str] = None


class SeedPathRequest(BaseModel):
    path: str
    target_environment: Optional[Environment] = None


class SeedImportRequest(SeedPathRequest):
    strategy: ConflictStrategy = ConflictStrategy()


class BlobCleanupRequest(BaseModel):
    blob_ids: Optional[List[str]] = None    # None: detect orphans first
    environment: Optional[Environment] = None


def error_body(error: WorldManagerError) -> dict:
    body = {"detail": str(error), "error": type(error).__name__}
    if isinstance(error, ValidationError):
        body["problems"] = error.problems
    elif isinstance(error, DependencyBlocked):
        body["dependents"] = error.dependents
    elif isinstance(error, PartialExport):
        body["bundle_path"] = str(error.bundle_path)
        body["failed"] = error.failed
    elif isinstance(error, PartialCleanup):
        body["deleted"] = error.deleted
        body["failed"] = error.failed
    return body


def status_for(error: WorldManagerError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


# --- Application Factory ---

def create_app(
    context: Optional[WorldManagerContext] = None,
    settings: Optional[WorldManagerSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="World Manager API",
        description="Test-fixture world lifecycle: registry, seeds, transfer and cleanup",
        version=__version__,
    )

    ctx = context or WorldManagerContext.from_settings(settings)
    app.state.context = ctx

    @app.exception_handler(WorldManagerError)
    async def handle_world_manager_error(request: Request, exc: WorldManagerError):
        return JSONResponse(status_code=status_for(exc), content=error_body(exc))

    # === WORLDS ===

    @app.get("/worlds")
    def list_worlds(
        environment: Optional[Environment] = None,
        category: Optional[Category] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None,
        tag: List[str] = Query(default=[]),
    ):
        """List worlds, most recently updated first."""
        worlds = ctx.registry.list(WorldFilter(
            environment=environment,
            category=category,
            is_active=is_active,
            is_template=is_template,
            tags=tag,
        ))
        return [w.model_dump(mode="json") for w in worlds]

    @app.post("/worlds", status_code=201)
    def create_world(world: World):
        return ctx.registry.create(world).model_dump(mode="json")

    @app.get("/worlds/{environment}/{world_id}")
    def get_world(environment: Environment, world_id: str):
        return ctx.registry.require(world_id, environment).model_dump(mode="json")

    @app.patch("/worlds/{environment}/{world_id}")
    def update_world(environment: Environment, world_id: str, patch: dict):
        """Partial update; id and environment can't be changed."""
        return ctx.registry.update(world_id, environment, patch).model_dump(mode="json")

    @app.delete("/worlds/{environment}/{world_id}")
    def purge_world(environment: Environment, world_id: str):
        ctx.registry.delete(world_id, environment)
        return {"deleted": world_id, "environment": environment.value}

    @app.post("/worlds/{environment}/{world_id}/usage")
    def record_usage(environment: Environment, world_id: str):
        return ctx.registry.record_usage(world_id, environment).model_dump(mode="json")

    @app.post("/worlds/{environment}/{world_id}/seed")
    def seed_sample_data(environment: Environment, world_id: str):
        return seed_world(ctx.registry, world_id, environment).model_dump(mode="json")

    @app.post("/worlds/{environment}/{world_id}/deactivate")
    def deactivate_world(environment: Environment, world_id: str):
        return ctx.scheduler.deactivate(world_id, environment).model_dump(mode="json")

    # === TRANSFER ===

    @app.post("/transfer")
    def transfer_world(req: TransferRequest):
        descriptor = ctx.transfer.transfer(
            req.world_id, req.source_environment, req.target_environment, dry_run=req.dry_run,
        )
        return descriptor.model_dump(mode="json")

    @app.post("/sync")
    def sync_environments(req: SyncRequest):
        return ctx.transfer.sync(req.source_environment, req.target_environment).model_dump(mode="json")

    @app.post("/backups")
    def backup_environment(req: BackupRequest):
        path = ctx.backups.backup(req.environment, output_path=req.output_path)
        return {"backup_path": str(path)}

    @app.post("/backups/restore")
    def restore_backup(req: RestoreRequest):
        report = ctx.backups.restore(
            ctx.backups.resolve_backup_path(req.path), req.target_environment, overwrite=req.overwrite,
        )
        return report.model_dump(mode="json")

    # === LIFECYCLE ===

    @app.get("/lifecycle/plan")
    def cleanup_plan(environment: Optional[Environment] = None):
        plan = ctx.scheduler.plan(environment)
        return {
            "environment": environment.value if environment else None,
            "evaluated_at": plan.evaluated_at.isoformat(),
            "eligible": plan.eligible_ids,
            "blocked": [b.model_dump(mode="json") for b in plan.blocked],
        }

    @app.post("/lifecycle/cleanup")
    def run_cleanup(req: CleanupRequest):
        report = ctx.scheduler.cleanup(req.environment, confirmed=req.confirmed)
        return report.model_dump(mode="json")

    # === SEEDS ===

    @app.get("/seeds")
    def get_seeds():
        return {"seeds": list(list_seeds(ctx.codec.seeds_dir))}

    @app.post("/seeds/export")
    def export_seed(req: SeedExportRequest):
        path = ctx.codec.export_world(
            req.world_id,
            req.environment,
            include_blobs=req.include_blobs,
            output_path=req.output_path,
        )
        return {"bundle_path": str(path)}

    @app.post("/seeds/validate")
    def validate_seed(req: SeedPathRequest):
        problems = check_seed(ctx.codec.resolve_bundle_path(req.path))
        return {"valid": not problems, "problems": problems}

    @app.post("/seeds/analyze")
    def analyze_seed(req: SeedPathRequest):
        report = ctx.codec.analyze_conflicts(
            ctx.codec.resolve_bundle_path(req.path), req.target_environment,
        )
        return {**report.model_dump(mode="json"), "has_conflicts": report.has_conflicts}

    @app.post("/seeds/import")
    def import_seed(req: SeedImportRequest):
        result = ctx.codec.import_seed(
            ctx.codec.resolve_bundle_path(req.path), req.strategy, req.target_environment,
        )
        return result.model_dump(mode="json")

    # === BLOBS ===

    @app.get("/blobs/audit")
    def audit_blobs(environment: Optional[Environment] = None):
        return ctx.auditor.audit(environment).model_dump(mode="json")

    @app.post("/blobs/cleanup")
    def cleanup_blobs(req: BlobCleanupRequest):
        blob_ids = req.blob_ids
        if blob_ids is None:
            blob_ids = ctx.auditor.detect_orphaned_blobs(req.environment)
        report = ctx.auditor.cleanup_orphaned_blobs(blob_ids)
        report.raise_for_failures()
        return {**report.model_dump(mode="json"), "deleted_count": report.deleted_count}

    return app
