"""World — a named, versioned snapshot of test fixture data."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from world_manager.models.base import TimestampMixin

WORLD_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class Environment(str, Enum):
    LOCAL = "LOCAL"
    BETA = "BETA"
    PROD = "PROD"


class Category(str, Enum):
    GENERAL = "GENERAL"
    UC = "UC"                   # Use cases
    REGRESSION = "REGRESSION"
    PERFORMANCE = "PERFORMANCE"
    DEMO = "DEMO"
    ENTERPRISE = "ENTERPRISE"


class WorldUser(BaseModel):
    """Embedded user snapshot. Unknown fields are carried through untouched."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: str = ""
    name: str = ""
    type: str = "standard"                  # "standard" | "admin" | ...


class WorldArtifact(BaseModel):
    """Embedded artifact snapshot; ``content`` may hold blob references."""

    model_config = ConfigDict(extra="allow")

    id: str
    kind: str = "text"
    title: str = ""
    content: Any = None


class WorldChat(BaseModel):
    """Embedded chat snapshot."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    messages: List[dict] = []


class WorldSettings(BaseModel):
    auto_cleanup: bool = True
    cleanup_after_hours: Optional[int] = Field(default=None, gt=0)  # TTL override


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class World(TimestampMixin):
    """
    A test-fixture world, unique per (id, environment).

    ``tags`` and ``dependencies`` behave as sets but keep first-seen order so
    exported bundles are stable.
    """

    id: str = Field(min_length=1, max_length=64, pattern=WORLD_ID_PATTERN)
    name: str = ""
    description: str = ""
    environment: Environment = Environment.LOCAL
    category: Category = Category.GENERAL
    tags: List[str] = []

    # EMBEDDED SNAPSHOTS
    users: List[WorldUser] = []
    artifacts: List[WorldArtifact] = []
    chats: List[WorldChat] = []

    dependencies: List[str] = []            # Ids of worlds this one relies on
    settings: WorldSettings = WorldSettings()

    is_active: bool = True
    is_template: bool = False

    # USAGE
    usage_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = None

    @field_validator("tags", "dependencies")
    @classmethod
    def _dedupe(cls, values: List[str]) -> List[str]:
        return _unique([v.strip() for v in values if v and v.strip()])

    @property
    def key(self) -> tuple:
        return (self.id, self.environment.value)

    def has_tags(self, tags: List[str]) -> bool:
        """True if every tag in ``tags`` is present on this world."""
        return set(tags).issubset(self.tags)


class WorldFilter(BaseModel):
    """Listing filter. ``None`` means "don't filter on this field"."""

    environment: Optional[Environment] = None
    category: Optional[Category] = None
    is_active: Optional[bool] = None
    is_template: Optional[bool] = None
    tags: List[str] = []
    order: Literal["updated", "insertion"] = "updated"


class WorldPatch(BaseModel):
    """
    Partial update for an existing world.

    Identity fields (``id``, ``environment``) and bookkeeping timestamps are
    not patchable; passing them is a validation error.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    tags: Optional[List[str]] = None
    users: Optional[List[WorldUser]] = None
    artifacts: Optional[List[WorldArtifact]] = None
    chats: Optional[List[WorldChat]] = None
    dependencies: Optional[List[str]] = None
    settings: Optional[WorldSettings] = None
    is_active: Optional[bool] = None
    is_template: Optional[bool] = None
