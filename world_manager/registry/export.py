"""Bulk export of world records to JSON or CSV."""

import csv
import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from world_manager.models.base import utcnow
from world_manager.models.world import World, WorldFilter
from world_manager.registry.store import WorldRegistry

logger = logging.getLogger(__name__)


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


CSV_COLUMNS = [
    "id", "environment", "name", "category", "is_active", "is_template", "tags",
    "users", "artifacts", "chats", "dependencies", "usage_count", "last_used_at",
    "created_at", "updated_at",
]


def _csv_row(world: World) -> dict:
    return {
        "id": world.id,
        "environment": world.environment.value,
        "name": world.name,
        "category": world.category.value,
        "is_active": world.is_active,
        "is_template": world.is_template,
        "tags": ";".join(world.tags),
        "users": len(world.users),
        "artifacts": len(world.artifacts),
        "chats": len(world.chats),
        "dependencies": ";".join(world.dependencies),
        "usage_count": world.usage_count,
        "last_used_at": world.last_used_at.isoformat() if world.last_used_at else "",
        "created_at": world.created_at.isoformat(),
        "updated_at": world.updated_at.isoformat(),
    }


def write_json(worlds: List[World], path: Path) -> None:
    payload = [w.model_dump(mode="json") for w in worlds]
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def write_csv(worlds: List[World], path: Path) -> None:
    """One summary row per world; embedded entities are counted, not inlined."""
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for world in worlds:
            writer.writerow(_csv_row(world))


def export_worlds(
    registry: WorldRegistry,
    format: ExportFormat = ExportFormat.JSON,
    output_dir: Path = Path("."),
    filter: Optional[WorldFilter] = None,
    now: Optional[datetime] = None,
) -> Path:
    """Write every world matching ``filter`` to ``worlds-export-<timestamp>.<format>``."""
    format = ExportFormat(format)
    now = now or utcnow()
    worlds = registry.list(filter)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"worlds-export-{now.strftime('%Y-%m-%dT%H-%M-%S')}.{format.value}"
    if format == ExportFormat.JSON:
        write_json(worlds, path)
    else:
        write_csv(worlds, path)

    logger.info("Exported %d world(s) to %s", len(worlds), path)
    return path
