"""
world-manager — command line facade over the world manager components.

Every command builds one WorldManagerContext from settings (environment
variables, .env, then the global flags below), runs, and closes it. Prompts
only happen here; the components always receive resolved decisions.

Usage:
    world-manager list [ENV]
    world-manager create [--id ID --name NAME ...]
    world-manager cleanup [ENV] [--yes]
    world-manager seed WORLD_ID [--environment ENV]
    world-manager copy WORLD_ID FROM_ENV TO_ENV [--dry-run]
    world-manager export [json|csv]
    world-manager export-seed WORLD_ID [ENV] [--include-blobs] [--output-path PATH]
    world-manager import-seed SEED_PATH [--world STRATEGY ...] [--yes]
    world-manager validate-seed SEED_PATH
    world-manager list-seeds
    world-manager cleanup-orphaned-blobs [--environment ENV] [--yes]
    world-manager backup ENV [--output-path PATH]
    world-manager restore BACKUP_PATH [--target-environment ENV] [--overwrite]
    world-manager sync SOURCE_ENV TARGET_ENV [--yes]
    world-manager serve [--host HOST] [--port PORT]
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm, Prompt
from rich.table import Table

from world_manager.config import WorldManagerSettings
from world_manager.context import WorldManagerContext
from world_manager.errors import PartialExport, ValidationError, WorldManagerError
from world_manager.models.seed import (
    ConflictReport,
    ConflictResolution,
    ConflictStrategy,
    UserConflictResolution,
)
from world_manager.models.world import Category, Environment, World, WorldFilter, WorldSettings
from world_manager.registry.export import ExportFormat, export_worlds
from world_manager.registry.samples import seed_world
from world_manager.seeds.codec import check_seed, list_seeds, load_bundle

console = Console()

ENVIRONMENTS = [e.value for e in Environment]
RESOLUTIONS = [r.value for r in ConflictResolution]
USER_RESOLUTIONS = [r.value for r in UserConflictResolution]


def _environment(value: str) -> Environment:
    try:
        return Environment(value.upper())
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid environment {value!r} (choose from {', '.join(ENVIRONMENTS)})") from None


def _category(value: str) -> Category:
    try:
        return Category(value.upper())
    except ValueError:
        choices = ", ".join(c.value for c in Category)
        raise argparse.ArgumentTypeError(f"invalid category {value!r} (choose from {choices})") from None


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ============================================================
# PARSER
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="world-manager", description="Manage test-fixture worlds")
    parser.add_argument("--database-url", help="Record store URL (default: WORLD_MANAGER_DATABASE_URL).")
    parser.add_argument("--blob-root", type=Path, help="Local blob store directory.")
    parser.add_argument("--seeds-dir", type=Path, help="Directory holding seed bundles.")
    parser.add_argument("--backups-dir", type=Path, help="Directory holding environment backups.")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...).")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List worlds.")
    p.add_argument("environment", nargs="?", type=_environment)
    p.add_argument("--category", type=_category)
    p.add_argument("--tag", dest="tags", action="append", default=[], help="Require this tag; repeatable.")
    p.add_argument("--active-only", action="store_true")

    p = sub.add_parser("create", help="Create a world (prompts for anything not given).")
    p.add_argument("--id", dest="world_id")
    p.add_argument("--name")
    p.add_argument("--description", default="")
    p.add_argument("--environment", type=_environment)
    p.add_argument("--category", type=_category)
    p.add_argument("--tags", default="", help="Comma-separated tags.")
    p.add_argument("--depends-on", dest="dependencies", action="append", default=[])
    p.add_argument("--cleanup-after-hours", type=int)
    p.add_argument("--no-auto-cleanup", action="store_true")
    p.add_argument("--template", action="store_true")

    p = sub.add_parser("cleanup", help="Deactivate idle worlds past their TTL.")
    p.add_argument("environment", nargs="?", type=_environment)
    p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation.")

    p = sub.add_parser("seed", help="Fill a world with sample users, artifacts and chats.")
    p.add_argument("world_id")
    p.add_argument("--environment", type=_environment)

    p = sub.add_parser("copy", help="Copy a world to another environment.")
    p.add_argument("world_id")
    p.add_argument("source", type=_environment)
    p.add_argument("target", type=_environment)
    p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("export", help="Export all worlds to JSON or CSV.")
    p.add_argument("format", nargs="?", default=ExportFormat.JSON.value, choices=[f.value for f in ExportFormat])
    p.add_argument("--output-dir", type=Path, default=Path("."))

    p = sub.add_parser("export-seed", help="Export one world as a seed bundle.")
    p.add_argument("world_id")
    p.add_argument("environment", nargs="?", type=_environment)
    p.add_argument("--include-blobs", action="store_true")
    p.add_argument("--output-path", type=Path)

    p = sub.add_parser("import-seed", help="Import a seed bundle.")
    p.add_argument("seed_path")
    p.add_argument("--target-environment", type=_environment)
    p.add_argument("--world", choices=RESOLUTIONS)
    p.add_argument("--users", choices=USER_RESOLUTIONS)
    p.add_argument("--artifacts", choices=RESOLUTIONS)
    p.add_argument("--chats", choices=RESOLUTIONS)
    p.add_argument("--blobs", choices=RESOLUTIONS)
    p.add_argument("--yes", "-y", action="store_true", help="Use defaults for strategies not given.")

    p = sub.add_parser("validate-seed", help="Check a seed bundle's structure offline.")
    p.add_argument("seed_path")

    sub.add_parser("list-seeds", help="List seed bundles in the seeds directory.")

    p = sub.add_parser("cleanup-orphaned-blobs", help="Delete stored blobs no world references.")
    p.add_argument("--environment", type=_environment, help="Only consider references from this environment.")
    p.add_argument("--yes", "-y", action="store_true")

    p = sub.add_parser("backup", help="Write every world of an environment to a backup file.")
    p.add_argument("environment", type=_environment)
    p.add_argument("--output-path", type=Path)

    p = sub.add_parser("restore", help="Restore worlds from a backup file.")
    p.add_argument("backup_path")
    p.add_argument("--target-environment", type=_environment)
    p.add_argument("--overwrite", action="store_true", help="Replace worlds that already exist.")

    p = sub.add_parser("sync", help="Copy every world of one environment into another, keeping ids.")
    p.add_argument("source", type=_environment)
    p.add_argument("target", type=_environment)
    p.add_argument("--yes", "-y", action="store_true")

    p = sub.add_parser("serve", help="Run the HTTP API.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)

    return parser


def load_settings(args: argparse.Namespace) -> WorldManagerSettings:
    overrides = {
        "database_url": args.database_url,
        "blob_root": args.blob_root,
        "seeds_dir": args.seeds_dir,
        "backups_dir": args.backups_dir,
        "log_level": args.log_level,
    }
    return WorldManagerSettings(**{k: v for k, v in overrides.items() if v is not None})


# ============================================================
# COMMANDS
# ============================================================

def _world_table(worlds: List[World], title: str) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Env")
    table.add_column("Category")
    table.add_column("Active", justify="center")
    table.add_column("Used", justify="right")
    table.add_column("Updated", style="dim")
    for w in worlds:
        table.add_row(
            w.id,
            w.name,
            w.environment.value,
            w.category.value,
            "yes" if w.is_active else "no",
            str(w.usage_count),
            w.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def cmd_list(ctx: WorldManagerContext, args) -> int:
    worlds = ctx.registry.list(WorldFilter(
        environment=args.environment,
        category=args.category,
        is_active=True if args.active_only else None,
        tags=args.tags,
    ))
    if not worlds:
        console.print("[dim]No worlds found.[/dim]")
        return 0
    scope = args.environment.value if args.environment else "all environments"
    console.print(_world_table(worlds, f"Worlds ({scope})"))
    return 0


def cmd_create(ctx: WorldManagerContext, args) -> int:
    world_id = args.world_id or Prompt.ask("World ID")
    name = args.name or Prompt.ask("Name", default=world_id)
    environment = args.environment
    if environment is None:
        if args.world_id:
            environment = ctx.settings.default_environment
        else:
            environment = Environment(Prompt.ask(
                "Environment", choices=ENVIRONMENTS, default=ctx.settings.default_environment.value,
            ))
    category = args.category
    if category is None:
        if args.world_id:
            category = Category.GENERAL
        else:
            category = Category(Prompt.ask("Category", choices=[c.value for c in Category], default="GENERAL"))
    tags = args.tags if args.world_id else (args.tags or Prompt.ask("Tags (comma-separated)", default=""))

    try:
        world = World(
            id=world_id,
            name=name,
            description=args.description,
            environment=environment,
            category=category,
            tags=tags.split(","),
            dependencies=args.dependencies,
            settings=WorldSettings(
                auto_cleanup=not args.no_auto_cleanup,
                cleanup_after_hours=args.cleanup_after_hours,
            ),
            is_template=args.template,
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic("Invalid world", e) from e
    created = ctx.registry.create(world)
    console.print(f"[green]Created world[/green] [cyan]{created.id}[/cyan] in {created.environment.value}")
    return 0


def cmd_cleanup(ctx: WorldManagerContext, args) -> int:
    plan = ctx.scheduler.plan(args.environment)
    for blocked in plan.blocked:
        console.print(
            f"[yellow]Blocked[/yellow] {blocked.world_id}: required by {', '.join(blocked.dependents)}"
        )
    if not plan.eligible:
        console.print("[dim]No worlds to clean up.[/dim]")
        return 0

    console.print(_world_table(plan.eligible, "Worlds to deactivate"))
    if not args.yes and not Confirm.ask(f"Deactivate {len(plan.eligible)} world(s)?", default=False):
        console.print("Cleanup cancelled.")
        return 0

    report = ctx.scheduler.apply(plan)
    console.print(f"[green]Deactivated {len(report.deactivated)} world(s)[/green]")
    for world_id, reason in report.skipped.items():
        console.print(f"[dim]Skipped {world_id}: {reason}[/dim]")
    for world_id, error in report.failed.items():
        console.print(f"[red]Failed[/red] {world_id}: {error}")
    return 1 if report.failed else 0


def cmd_seed(ctx: WorldManagerContext, args) -> int:
    environment = args.environment or ctx.settings.default_environment
    world = seed_world(ctx.registry, args.world_id, environment)
    console.print(
        f"[green]Seeded[/green] {world.id}: {len(world.users)} users, "
        f"{len(world.artifacts)} artifacts, {len(world.chats)} chats"
    )
    return 0


def cmd_copy(ctx: WorldManagerContext, args) -> int:
    descriptor = ctx.transfer.transfer(args.world_id, args.source, args.target, dry_run=args.dry_run)
    if descriptor.dry_run:
        console.print(
            f"Dry run: would copy {descriptor.source_id} ({descriptor.source_environment.value}) "
            f"to {descriptor.target_id} ({descriptor.target_environment.value})"
        )
    else:
        console.print(
            f"[green]Copied[/green] {descriptor.source_id} ({descriptor.source_environment.value}) "
            f"as [cyan]{descriptor.target_id}[/cyan] ({descriptor.target_environment.value})"
        )
    return 0


def cmd_export(ctx: WorldManagerContext, args) -> int:
    path = export_worlds(ctx.registry, ExportFormat(args.format), args.output_dir)
    console.print(f"[green]Worlds exported to[/green] {path}")
    return 0


def cmd_export_seed(ctx: WorldManagerContext, args) -> int:
    environment = args.environment or ctx.settings.default_environment
    try:
        path = ctx.codec.export_world(
            args.world_id, environment, include_blobs=args.include_blobs, output_path=args.output_path,
        )
    except PartialExport as e:
        console.print(f"[yellow]Exported to {e.bundle_path} with missing blobs:[/yellow]")
        for blob_id, reason in sorted(e.failed.items()):
            console.print(f"  {blob_id}: {reason}")
        return 1
    console.print(f"[green]World exported to seed:[/green] {path}")
    return 0


def _print_conflicts(report: ConflictReport) -> None:
    console.print(f"[yellow]Conflicts importing {report.world_id} into {report.target_environment.value}:[/yellow]")
    if report.world_exists:
        console.print("  world already exists")
    if report.conflicting_users:
        console.print(f"  users: {', '.join(report.conflicting_users)}")
    if report.conflicting_artifacts:
        console.print(f"  artifacts: {', '.join(report.conflicting_artifacts)}")
    if report.conflicting_chats:
        console.print(f"  chats: {', '.join(report.conflicting_chats)}")
    if report.missing_blobs:
        console.print(f"  missing blobs: {', '.join(report.missing_blobs)}")


def resolve_strategy(args, report: ConflictReport) -> ConflictStrategy:
    """Strategy from flags; asks for each domain left unset when there are conflicts."""
    defaults = ConflictStrategy()
    ask = report.has_conflicts and not args.yes
    chosen = {}
    for domain in ("world", "users", "artifacts", "chats", "blobs"):
        value = getattr(args, domain)
        if value is None and ask:
            choices = USER_RESOLUTIONS if domain == "users" else RESOLUTIONS
            value = Prompt.ask(
                f"Strategy for {domain}", choices=choices, default=getattr(defaults, domain).value,
            )
        if value is not None:
            chosen[domain] = value
    return ConflictStrategy(**chosen)


def cmd_import_seed(ctx: WorldManagerContext, args) -> int:
    path = ctx.codec.resolve_bundle_path(args.seed_path)
    report = ctx.codec.analyze_conflicts(path, args.target_environment)
    if report.has_conflicts:
        _print_conflicts(report)
    strategy = resolve_strategy(args, report)

    result = ctx.codec.import_seed(path, strategy, args.target_environment)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    console.print(
        f"[green]Seed imported[/green] {result.world_id} into {result.environment.value}: "
        f"{result.action.value}, {len(result.uploaded_blobs)} blob(s) uploaded"
    )
    return 0


def cmd_validate_seed(ctx: WorldManagerContext, args) -> int:
    problems = check_seed(ctx.codec.resolve_bundle_path(args.seed_path))
    if problems:
        console.print("[red]Seed validation failed[/red]")
        for problem in problems:
            console.print(f"  {problem}")
        return 1
    console.print("[green]Seed validation passed[/green]")
    return 0


def cmd_list_seeds(ctx: WorldManagerContext, args) -> int:
    names = list(list_seeds(ctx.codec.seeds_dir))
    if not names:
        console.print("[dim]No seeds found.[/dim]")
        return 0

    table = Table(title=f"Seeds in {ctx.codec.seeds_dir}", box=box.ROUNDED)
    table.add_column("Seed", style="cyan")
    table.add_column("World")
    table.add_column("Source Env")
    table.add_column("Exported", style="dim")
    for name in names:
        bundle = load_bundle(ctx.codec.seeds_dir / name)
        table.add_row(
            name,
            bundle.world.id,
            bundle.manifest.source_environment.value,
            bundle.manifest.exported_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    return 0


def cmd_cleanup_orphaned_blobs(ctx: WorldManagerContext, args) -> int:
    orphaned = sorted(ctx.auditor.detect_orphaned_blobs(args.environment))
    if not orphaned:
        console.print("[green]No orphaned blobs found.[/green]")
        return 0

    console.print(f"Found {len(orphaned)} orphaned blob(s):")
    for blob_id in orphaned:
        console.print(f"  {blob_id}")
    if not args.yes and not Confirm.ask("Delete them?", default=False):
        console.print("Cleanup cancelled.")
        return 0

    report = ctx.auditor.cleanup_orphaned_blobs(orphaned)
    console.print(f"[green]Deleted {report.deleted_count} blob(s)[/green]")
    for blob_id, error in report.failed.items():
        console.print(f"[red]Failed[/red] {blob_id}: {error}")
    return 1 if report.failed else 0


def cmd_backup(ctx: WorldManagerContext, args) -> int:
    path = ctx.backups.backup(args.environment, output_path=args.output_path)
    console.print(f"[green]Backup written to[/green] {path}")
    return 0


def cmd_restore(ctx: WorldManagerContext, args) -> int:
    path = ctx.backups.resolve_backup_path(args.backup_path)
    report = ctx.backups.restore(path, args.target_environment, overwrite=args.overwrite)
    console.print(
        f"[green]Restored into {report.environment.value}:[/green] "
        f"{len(report.created)} created, {len(report.replaced)} replaced"
    )
    if report.skipped:
        console.print(f"[dim]Skipped existing worlds: {', '.join(report.skipped)}[/dim]")
    for world_id, error in report.failed.items():
        console.print(f"[red]Failed[/red] {world_id}: {error}")
    return 1 if report.failed else 0


def cmd_sync(ctx: WorldManagerContext, args) -> int:
    prompt = f"Overwrite matching worlds in {args.target.value} with {args.source.value}?"
    if not args.yes and not Confirm.ask(prompt, default=False):
        console.print("Sync cancelled.")
        return 0

    report = ctx.transfer.sync(args.source, args.target)
    console.print(
        f"[green]Synced {report.source_environment.value} to {report.target_environment.value}:[/green] "
        f"{len(report.created)} created, {len(report.updated)} updated"
    )
    for world_id, error in report.failed.items():
        console.print(f"[red]Failed[/red] {world_id}: {error}")
    return 1 if report.failed else 0


def cmd_serve(ctx: WorldManagerContext, args) -> int:
    import uvicorn

    from world_manager.api.app import create_app

    uvicorn.run(create_app(ctx), host=args.host, port=args.port, log_level=ctx.settings.log_level.lower())
    return 0


COMMANDS = {
    "list": cmd_list,
    "create": cmd_create,
    "cleanup": cmd_cleanup,
    "seed": cmd_seed,
    "copy": cmd_copy,
    "export": cmd_export,
    "export-seed": cmd_export_seed,
    "import-seed": cmd_import_seed,
    "validate-seed": cmd_validate_seed,
    "list-seeds": cmd_list_seeds,
    "cleanup-orphaned-blobs": cmd_cleanup_orphaned_blobs,
    "backup": cmd_backup,
    "restore": cmd_restore,
    "sync": cmd_sync,
    "serve": cmd_serve,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args)
    configure_logging(settings.log_level)

    with WorldManagerContext.from_settings(settings) as ctx:
        try:
            return COMMANDS[args.command](ctx, args)
        except ValidationError as e:
            console.print(f"[red]Error:[/red] {e}")
            for problem in e.problems:
                console.print(f"  {problem}")
            return 1
        except WorldManagerError as e:
            console.print(f"[red]Error:[/red] {e}")
            return 1


if __name__ == "__main__":
    raise SystemExit(main())
