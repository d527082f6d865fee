from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol
from urllib.parse import unquote, urlparse, urlunparse
from urllib.request import url2pathname

from azure.core.exceptions import AzureError
from azure.storage.blob import ContainerClient, ContentSettings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    message = "Failed to store image. Please try again."


@dataclass(frozen=True)
class StoredObject:
    uri: str


class Storage(Protocol):
    def store(self, data: bytes, path: str, metadata: Optional[Dict[str, str]] = None) -> StoredObject: ...
    def delete(self, uri: str) -> bool: ...
    def get_bytes(self, *, uri: str) -> bytes: ...


def _file_uri_to_path(uri: str) -> Path:
    u = urlparse(uri)
    if u.scheme != "file":
        raise ValueError(f"unsupported uri scheme: {u.scheme}")
    path = url2pathname(unquote(u.path))
    if len(path) >= 3 and (path[0] in ("\\", "/")) and path[2] == ":":
        path = path[1:]
    if u.netloc:
        path = f"\\\\{u.netloc}{path}"
    return Path(path)


class LocalStorage:
    """Directory-backed blob store. Returns file:// URIs."""

    def __init__(self, root_dir: str) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        p = (self.root / path).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"path escapes storage root: {path}")
        return p

    def store(self, data: bytes, path: str, metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        try:
            p = self._resolve(path)
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
            if metadata:
                self.put_json_atomic(p.with_name(p.name + ".meta.json"), dict(metadata))
        except OSError as e:
            logger.exception("local store failed for %s", path)
            raise StorageError(str(e)) from e
        return StoredObject(uri=p.as_uri())

    def delete(self, uri: str) -> bool:
        try:
            p = _file_uri_to_path(uri)
            p.unlink()
            meta = p.with_name(p.name + ".meta.json")
            if meta.exists():
                meta.unlink()
            return True
        except (OSError, ValueError):
            logger.exception("could not delete stored object %s", uri)
            return False

    def get_bytes(self, *, uri: str) -> bytes:
        return _file_uri_to_path(uri).read_bytes()

    @staticmethod
    def put_json_atomic(out: Path, obj: Dict[str, Any]) -> Path:
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_suffix(out.suffix + ".tmp")
        tmp.write_text(json.dumps(obj, indent=2), encoding="utf-8")
        tmp.replace(out)  # atomic on same filesystem
        return out


class AzureBlobStorage:
    """
    Blob container addressed by a container-level SAS URL
    (https://<account>.blob.core.windows.net/<container>?<sas>).
    Returned URIs carry no SAS query string.
    """

    def __init__(self, sas_url: Optional[str] = None, *, container: Any = None) -> None:
        if container is None:
            if not sas_url:
                raise ValueError("AzureBlobStorage needs a container SAS URL")
            container = ContainerClient.from_container_url(sas_url)
        self.container = container

    def _blob_name(self, uri: str) -> str:
        u = urlparse(uri)
        # /<container>/<blob name, may contain slashes>
        parts = unquote(u.path).lstrip("/").split("/", 1)
        if len(parts) != 2 or not parts[1]:
            raise ValueError(f"could not extract blob name from {uri}")
        return parts[1]

    def store(self, data: bytes, path: str, metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        try:
            blob = self.container.upload_blob(
                name=path,
                data=data,
                overwrite=False,
                metadata=dict(metadata or {}),
                content_settings=ContentSettings(content_type=(metadata or {}).get("contentType")),
            )
        except AzureError as e:
            logger.exception("blob upload failed for %s", path)
            raise StorageError(str(e)) from e

        u = urlparse(blob.url)
        return StoredObject(uri=urlunparse(u._replace(query="", fragment="")))

    def delete(self, uri: str) -> bool:
        try:
            self.container.delete_blob(self._blob_name(uri))
            return True
        except (AzureError, ValueError):
            logger.exception("could not delete blob %s", uri)
            return False

    def get_bytes(self, *, uri: str) -> bytes:
        return self.container.download_blob(self._blob_name(uri)).readall()
