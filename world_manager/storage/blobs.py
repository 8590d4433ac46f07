"""
Blob Store — object storage for binary content referenced by artifacts.

The local implementation keeps one file per blob id under a root directory.
Writes go through a temporary file and os.replace, so a reader sees either
the old bytes or the new bytes, never a partial write.
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class BlobStore(Protocol):
    """put/get/delete/list-by-prefix object storage."""

    def put(self, blob_id: str, data: bytes) -> None:
        ...

    def get(self, blob_id: str) -> Optional[bytes]:
        """Blob bytes, or None if absent."""
        ...

    def exists(self, blob_id: str) -> bool:
        ...

    def delete(self, blob_id: str) -> bool:
        """Remove a blob. Returns False if it was already gone."""
        ...

    def list(self, prefix: str = "") -> Iterator[str]:
        """Ids of every stored blob starting with ``prefix``."""
        ...


def validate_blob_id(blob_id: str) -> str:
    """Reject ids that could escape the store root."""
    if not isinstance(blob_id, str) or not blob_id:
        raise ValueError("blob_id must be a non-empty string")
    for segment in blob_id.split("/"):
        if not _SEGMENT.match(segment) or segment in (".", ".."):
            raise ValueError(f"Invalid blob id: {blob_id!r}")
    return blob_id


class LocalBlobStore:
    """Filesystem-backed blob store. Ids may contain ``/`` namespaces."""

    _TMP_SUFFIX = ".partial"

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_id: str) -> Path:
        return self.root.joinpath(*validate_blob_id(blob_id).split("/"))

    def put(self, blob_id: str, data: bytes) -> None:
        target = self._path(blob_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=self._TMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Stored blob %s (%d bytes)", blob_id, len(data))

    def get(self, blob_id: str) -> Optional[bytes]:
        try:
            return self._path(blob_id).read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, blob_id: str) -> bool:
        return self._path(blob_id).is_file()

    def delete(self, blob_id: str) -> bool:
        try:
            self._path(blob_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def list(self, prefix: str = "") -> Iterator[str]:
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.endswith(self._TMP_SUFFIX):
                continue
            blob_id = path.relative_to(self.root).as_posix()
            if blob_id.startswith(prefix):
                yield blob_id
