"""Sample fixture data for quickly populating an empty world."""

import logging
from datetime import datetime
from typing import Optional

from world_manager.models.base import utcnow
from world_manager.models.world import World, WorldArtifact, WorldChat, WorldUser
from world_manager.registry.store import WorldRegistry
from world_manager.storage.records import EnvLike

logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    WorldUser(id="test-user-1", email="user1@test.com", name="Test User 1", type="standard"),
    WorldUser(id="test-user-2", email="user2@test.com", name="Test User 2", type="admin"),
]

SAMPLE_ARTIFACTS = [
    WorldArtifact(id="artifact-1", kind="text", title="Sample Text", content="This is sample content"),
    WorldArtifact(id="artifact-2", kind="site", title="Sample Site", content='{"blocks":[]}'),
]

SAMPLE_CHATS = [
    WorldChat(id="chat-1", title="Sample Chat", messages=[]),
]


def seed_world(registry: WorldRegistry, world_id: str, environment: EnvLike, now: Optional[datetime] = None) -> World:
    """
    Replace a world's users, artifacts and chats with the sample set and count
    it as one use. Raises NotFound if the world doesn't exist.
    """
    now = now or utcnow()
    world = registry.require(world_id, environment)
    seeded = world.model_copy(update={
        "users": [u.model_copy() for u in SAMPLE_USERS],
        "artifacts": [a.model_copy() for a in SAMPLE_ARTIFACTS],
        "chats": [c.model_copy() for c in SAMPLE_CHATS],
        "usage_count": world.usage_count + 1,
        "last_used_at": now,
    })
    seeded = registry.replace(seeded, now)
    logger.info(
        "Seeded world %s: %d users, %d artifacts, %d chats",
        world_id, len(seeded.users), len(seeded.artifacts), len(seeded.chats),
    )
    return seeded
