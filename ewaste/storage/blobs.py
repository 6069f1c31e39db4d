from __future__ import annotations

import json
from pathlib import Path, PurePosixPath
from typing import Protocol

from ewaste.utils.error_taxonomy import NotFoundError, TransportError

_CONTENT_TYPE_SUFFIX = ".content-type"


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


class LocalBlobStore:
    """Filesystem-backed object storage rooted at ``root_dir``.

    Keys are relative POSIX paths. A key that is absolute or climbs out of
    the root with ``..`` is rejected with ``ValueError``.
    """

    def __init__(self, root_dir: Path | str) -> None:
        self.root_dir = Path(root_dir)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            _sidecar(path).write_text(
                json.dumps({"content_type": content_type}), encoding="utf-8"
            )
        except OSError as error:
            raise TransportError(f"Failed to store blob {key}: {error}") from error
        return key

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise NotFoundError(f"Blob not found: {key}")
        try:
            return path.read_bytes()
        except OSError as error:
            raise TransportError(f"Failed to read blob {key}: {error}") from error

    def content_type(self, key: str) -> str | None:
        sidecar = _sidecar(self._path_for(key))
        if not sidecar.is_file():
            return None
        payload = json.loads(sidecar.read_text(encoding="utf-8"))
        return payload.get("content_type")

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
            _sidecar(path).unlink(missing_ok=True)
        except OSError as error:
            raise TransportError(f"Failed to delete blob {key}: {error}") from error

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if not key or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Blob key must be a relative path inside the store: {key!r}")
        if key.endswith(_CONTENT_TYPE_SUFFIX):
            raise ValueError(f"Blob key uses a reserved suffix: {key!r}")

        root = self.root_dir.resolve()
        path = (root / Path(*relative.parts)).resolve()
        try:
            path.relative_to(root)
        except ValueError as error:
            raise ValueError(f"Blob key escapes the store root: {key!r}") from error
        return path


def _sidecar(path: Path) -> Path:
    return path.with_name(path.name + _CONTENT_TYPE_SUFFIX)
