"""Blob storage for uploaded PDFs and rendered page images.

``LocalObjectStore`` keeps blobs on disk under a root directory and the
per-object metadata (content type, cache control, custom metadata, public
flag) in a ``.meta`` sidecar tree, so listing a prefix only ever returns real
objects.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from conversion.errors import ConversionError

logger = logging.getLogger("storage.objects")

META_DIR = ".meta"


class StorageError(ConversionError):
    default_message = "Object store operation failed."


class ObjectNotFound(StorageError):
    default_message = "Object does not exist."


@dataclass
class ObjectInfo:
    path: str
    size: int
    content_type: str
    cache_control: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    public: bool = False


class ObjectStore(Protocol):
    bucket: str

    def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        metadata: Optional[Dict[str, str]] = None,
        cache_control: Optional[str] = None,
    ) -> None:
        ...

    def get(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...

    def make_public(self, path: str) -> str:
        ...

    def exists(self, path: str) -> bool:
        ...

    def stat(self, path: str) -> ObjectInfo:
        ...

    def list(self, prefix: str = "") -> List[str]:
        ...

    def public_url(self, path: str) -> str:
        ...


def check_object_path(path: str) -> str:
    if not path or path.startswith("/") or "\\" in path:
        raise StorageError(f"Invalid object path: {path!r}")
    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts) or parts[0] == META_DIR:
        raise StorageError(f"Invalid object path: {path!r}")
    return path


def atomic_write(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class LocalObjectStore:
    """Filesystem-backed object store.

    Public URLs are ``{public_base_url}/{path}``; the API serves them from
    ``/files`` only while the object is marked public.
    """

    def __init__(self, root: str, public_base_url: str, bucket: str = "local") -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.bucket = bucket
        self.root.mkdir(parents=True, exist_ok=True)

    def _blob(self, path: str) -> Path:
        return self.root / check_object_path(path)

    def _meta(self, path: str) -> Path:
        return self.root / META_DIR / f"{check_object_path(path)}.json"

    def _read_meta(self, path: str) -> dict:
        meta_path = self._meta(path)
        if not meta_path.exists():
            return {}
        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Unreadable metadata for {path}: {exc}") from exc

    def _write_meta(self, path: str, meta: dict) -> None:
        atomic_write(self._meta(path), json.dumps(meta, ensure_ascii=False).encode("utf-8"))

    def put(self, path, data, content_type, *, metadata=None, cache_control=None):
        blob = self._blob(path)
        try:
            atomic_write(blob, data)
            self._write_meta(path, {
                "content_type": content_type,
                "cache_control": cache_control,
                "metadata": dict(metadata or {}),
                "public": False,
            })
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        logger.debug("object_stored", extra={"object_path": path, "size_bytes": len(data)})

    def get(self, path):
        blob = self._blob(path)
        try:
            with open(blob, "rb") as f:
                return f.read()
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"No object at {path}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def delete(self, path):
        blob = self._blob(path)
        try:
            os.unlink(blob)
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"No object at {path}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to delete {path}: {exc}") from exc
        try:
            os.unlink(self._meta(path))
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("object_metadata_cleanup_failed", extra={"object_path": path, "error": str(exc)})
        logger.debug("object_deleted", extra={"object_path": path})

    def make_public(self, path):
        if not self._blob(path).is_file():
            raise ObjectNotFound(f"No object at {path}")
        meta = self._read_meta(path)
        meta["public"] = True
        try:
            self._write_meta(path, meta)
        except OSError as exc:
            raise StorageError(f"Failed to update ACL of {path}: {exc}") from exc
        return self.public_url(path)

    def exists(self, path):
        return self._blob(path).is_file()

    def stat(self, path):
        blob = self._blob(path)
        if not blob.is_file():
            raise ObjectNotFound(f"No object at {path}")
        meta = self._read_meta(path)
        return ObjectInfo(
            path=path,
            size=blob.stat().st_size,
            content_type=meta.get("content_type") or "application/octet-stream",
            cache_control=meta.get("cache_control"),
            metadata=meta.get("metadata") or {},
            public=bool(meta.get("public")),
        )

    def list(self, prefix=""):
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root)
            if rel_dir.parts and rel_dir.parts[0] == META_DIR:
                continue
            dirnames[:] = [d for d in dirnames if d != META_DIR]
            for name in filenames:
                if name.startswith(".tmp-"):
                    continue
                rel = (rel_dir / name).as_posix()
                if rel.startswith(prefix):
                    found.append(rel)
        return sorted(found)

    def public_url(self, path):
        return f"{self.public_base_url}/{check_object_path(path)}"
