"""Shared model helpers."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class TimestampMixin(BaseModel):
    """Created/updated timestamps for persistent records."""

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Bump updated_at."""
        self.updated_at = now or utcnow()
