"""Filesystem-backed object store (single host deployments)."""
import logging
import mimetypes
import shutil
from pathlib import Path
from typing import Optional

from reporting_api.domain.interfaces import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        # Keys never escape the root
        if self.root not in path.parents:
            raise ValueError(f"Object key outside store root: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    async def get(self, key: str) -> Optional[StoredObject]:
        path = self._path(key)
        if not path.is_file():
            return None
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return StoredObject(path.read_bytes(), content_type)

    async def delete_prefix(self, prefix: str) -> int:
        target = self._path(prefix.rstrip("/"))
        if not target.exists():
            return 0
        if target.is_file():
            target.unlink()
            return 1
        count = sum(1 for p in target.rglob("*") if p.is_file())
        shutil.rmtree(target)
        logger.info(f"Removed {count} objects under {prefix}")
        return count
