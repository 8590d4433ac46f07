"""
Blob reference extraction.

Artifacts and chat messages refer to blobs in several shapes: blob:// URLs,
blob-host URLs, ``"blobId": "..."`` JSON fields, ``data-blob-id`` HTML
attributes, and structured fields whose key mentions "blob" or "file".
Recognised ids follow the blob store's id grammar, dotted names and ``/``
namespaces included. Results keep first-seen order so exports and reports
are stable.
"""

import json
import re
from typing import Iterable, List

from world_manager.models.world import World

_SEGMENT = r"[A-Za-z0-9][A-Za-z0-9_.-]*"
_ID = r"(" + _SEGMENT + r"(?:/" + _SEGMENT + r")*)"
_ID_ONLY = re.compile(r"^" + _ID + r"$")

# (pattern, trim trailing dots): unquoted URLs may end a sentence
BLOB_PATTERNS = [
    (re.compile(r"blob://[^/\s\"']+/" + _ID), True),          # blob://<host>/<id>
    (re.compile(r"\.blob\.[^/\s\"']+/" + _ID), True),         # https://<store>.blob.<domain>/<id>
    (re.compile(r"\"blobId\"\s*:\s*\"" + _ID + r"\""), False),
    (re.compile(r"data-blob-id=\"" + _ID + r"\""), False),
]


def _add(found: List[str], blob_id: str) -> None:
    if blob_id and blob_id not in found:
        found.append(blob_id)


def extract_from_text(content: str, found: List[str] = None) -> List[str]:
    """Blob ids mentioned in free text, JSON text, markdown or HTML."""
    found = [] if found is None else found
    for pattern, trim in BLOB_PATTERNS:
        for match in pattern.finditer(content):
            blob_id = match.group(1)
            _add(found, blob_id.rstrip(".") if trim else blob_id)

    stripped = content.strip()
    if stripped[:1] in ("{", "["):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            return found
        extract_from_object(parsed, found)
    return found


def extract_from_object(obj, found: List[str] = None) -> List[str]:
    """Walk dicts/lists/strings collecting blob ids."""
    found = [] if found is None else found
    if isinstance(obj, str):
        return extract_from_text(obj, found)
    if isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(value, str):
                lowered = str(key).lower()
                if ("blob" in lowered or "file" in lowered) and _ID_ONLY.match(value):
                    _add(found, value)
            extract_from_object(value, found)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            extract_from_object(item, found)
    return found


def referenced_blob_ids(world: World) -> List[str]:
    """Every blob id referenced by the world's artifacts and chat messages."""
    found: List[str] = []
    for artifact in world.artifacts:
        extract_from_object(artifact.model_dump(exclude={"id"}), found)
    for chat in world.chats:
        extract_from_object(chat.messages, found)
    return found


def referenced_by_all(worlds: Iterable[World]) -> set:
    """Union of references across ``worlds``."""
    refs = set()
    for world in worlds:
        refs.update(referenced_blob_ids(world))
    return refs
