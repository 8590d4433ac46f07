"""
Conflict Resolver — reconciles an incoming seed world with the target's copy.

Behavioral Contract:
- Pure: takes the target world (or None), the incoming world, a strategy and
  the blob ids missing from the target store; returns a Resolution. Nothing
  is read or written here, so the caller can commit the result in one step.
- Deterministic: the same inputs (including ``now``) give the same output.
- world=skip with an existing target resolves to SKIPPED and writes nothing.
- world=replace overwrites the target wholesale; per-domain strategies apply
  under world=merge.
- Users match on e-mail (case-insensitive), then id. Artifacts and chats match
  on id.
- Dangling blob references are reported as warnings, never dropped silently.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel

from world_manager.models.base import utcnow
from world_manager.models.seed import (
    ConflictResolution,
    ConflictStrategy,
    ImportAction,
    UserConflictResolution,
)
from world_manager.models.world import World, WorldUser
from world_manager.references import referenced_blob_ids

RENAME_MARKER = "-imported-"


class Resolution(BaseModel):
    """In-memory outcome of resolving one import."""

    action: ImportAction
    world: Optional[World] = None           # None when the import is skipped
    blob_uploads: List[str] = []            # Blob ids to copy from the bundle
    warnings: List[str] = []


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_fields(existing: BaseModel, incoming: BaseModel) -> BaseModel:
    """Field-level merge: non-empty incoming values win, the rest is kept."""
    data = existing.model_dump()
    for key, value in incoming.model_dump().items():
        if not _is_empty(value):
            data[key] = value
    return type(existing).model_validate(data)


def _email_key(user: WorldUser) -> Optional[str]:
    return user.email.strip().casefold() if user.email and user.email.strip() else None


def find_user(users: List[WorldUser], candidate: WorldUser) -> Optional[int]:
    """Index of the user colliding with ``candidate``, by e-mail then id."""
    email = _email_key(candidate)
    if email is not None:
        for i, user in enumerate(users):
            if _email_key(user) == email:
                return i
    for i, user in enumerate(users):
        if user.id == candidate.id:
            return i
    return None


def _suffix_email(email: str, suffix: str) -> str:
    if "@" in email:
        local, domain = email.rsplit("@", 1)
        return f"{local}{suffix}@{domain}"
    return f"{email}{suffix}" if email else email


def rename_user(user: WorldUser, users: List[WorldUser], now: datetime) -> WorldUser:
    """Copy of ``user`` with an id/e-mail suffix that collides with nobody in ``users``."""
    taken_ids = {u.id for u in users}
    taken_emails = {_email_key(u) for u in users if _email_key(u)}
    base = f"{RENAME_MARKER}{int(now.timestamp())}"
    suffix = base
    counter = 1
    while True:
        new_id = f"{user.id}{suffix}"
        new_email = _suffix_email(user.email, suffix)
        email_free = not new_email or new_email.casefold() not in taken_emails
        if new_id not in taken_ids and email_free:
            return user.model_copy(update={"id": new_id, "email": new_email})
        counter += 1
        suffix = f"{base}-{counter}"


def _keep_unique_id(users: List[WorldUser], index: int, updated: WorldUser) -> WorldUser:
    """``updated`` for slot ``index``, falling back to the slot's id if another user holds the new one."""
    if any(i != index and u.id == updated.id for i, u in enumerate(users)):
        return updated.model_copy(update={"id": users[index].id})
    return updated


def merge_users(
    existing: List[WorldUser],
    incoming: List[WorldUser],
    resolution: UserConflictResolution,
    now: datetime,
) -> List[WorldUser]:
    result = [u.model_copy() for u in existing]
    for user in incoming:
        index = find_user(result, user)
        if index is None:
            result.append(user.model_copy())
        elif resolution == UserConflictResolution.REPLACE:
            result[index] = _keep_unique_id(result, index, user.model_copy())
        elif resolution == UserConflictResolution.MERGE:
            result[index] = _keep_unique_id(result, index, merge_fields(result[index], user))
        elif resolution == UserConflictResolution.RENAME:
            result.append(rename_user(user, result, now))
        # SKIP keeps the target user
    return result


def merge_entities(existing: list, incoming: list, resolution: ConflictResolution) -> list:
    """Union of id-keyed entities (artifacts, chats) under ``resolution``."""
    result = [e.model_copy() for e in existing]
    index = {e.id: i for i, e in enumerate(result)}
    for entity in incoming:
        i = index.get(entity.id)
        if i is None:
            index[entity.id] = len(result)
            result.append(entity.model_copy())
        elif resolution == ConflictResolution.REPLACE:
            result[i] = entity.model_copy()
        elif resolution == ConflictResolution.MERGE:
            result[i] = merge_fields(result[i], entity)
    return result


class ConflictResolver:
    """Computes the world to commit and the blobs to upload for one import."""

    def resolve(
        self,
        incoming: World,
        target: Optional[World],
        strategy: ConflictStrategy,
        missing_blobs: Iterable[str] = (),
        bundled_blobs: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Resolution:
        now = now or utcnow()

        if target is None:
            action, world = ImportAction.CREATED, incoming.model_copy(deep=True)
        elif strategy.world == ConflictResolution.SKIP:
            return Resolution(
                action=ImportAction.SKIPPED,
                warnings=[
                    f"World '{incoming.id}' already exists in "
                    f"{target.environment.value}; import skipped"
                ],
            )
        elif strategy.world == ConflictResolution.REPLACE:
            action = ImportAction.REPLACED
            world = incoming.model_copy(deep=True, update={"created_at": target.created_at})
        else:
            action, world = ImportAction.MERGED, self.merge_world(target, incoming, strategy, now)

        uploads, warnings = self.resolve_blobs(world, strategy, set(missing_blobs), set(bundled_blobs))
        return Resolution(action=action, world=world, blob_uploads=uploads, warnings=warnings)

    def merge_world(
        self,
        target: World,
        incoming: World,
        strategy: ConflictStrategy,
        now: datetime,
    ) -> World:
        """
        Union users/artifacts/chats under their domain strategies. Scalar
        metadata (name, description, category, tags, settings) comes from the
        incoming world only where it was explicitly present.
        """
        data = target.model_dump()
        present = incoming.model_fields_set

        for field in ("name", "description", "category", "tags"):
            if field in present:
                data[field] = getattr(incoming, field)
        if "settings" in present:
            data["settings"] = {
                **target.settings.model_dump(),
                **incoming.settings.model_dump(include=incoming.settings.model_fields_set),
            }

        data["dependencies"] = target.dependencies + [
            d for d in incoming.dependencies if d not in target.dependencies
        ]
        data["users"] = merge_users(target.users, incoming.users, strategy.users, now)
        data["artifacts"] = merge_entities(target.artifacts, incoming.artifacts, strategy.artifacts)
        data["chats"] = merge_entities(target.chats, incoming.chats, strategy.chats)
        return World.model_validate(data)

    def resolve_blobs(
        self,
        world: World,
        strategy: ConflictStrategy,
        missing: Set[str],
        bundled: Set[str],
    ) -> Tuple[List[str], List[str]]:
        """Blob ids to upload, plus a warning for each reference left dangling."""
        uploads: List[str] = []
        warnings: List[str] = []
        for blob_id in referenced_blob_ids(world):
            if blob_id not in missing:
                continue
            if strategy.blobs == ConflictResolution.SKIP:
                warnings.append(f"Blob '{blob_id}' is missing from the target and was not uploaded (blobs=skip)")
            elif blob_id in bundled:
                uploads.append(blob_id)
            else:
                warnings.append(f"Blob '{blob_id}' is missing from the target and not included in the bundle")
        return uploads, warnings
