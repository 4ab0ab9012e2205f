from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Any, Protocol

_BLOB_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class BlobStoreError(RuntimeError):
    pass


class BlobStore(Protocol):
    def save_blob(self, name: str, data: Any) -> None: ...

    def load_blob(self, name: str) -> Any | None: ...


def _replace_surrogates(text: str) -> str:
    if not any(0xD800 <= ord(ch) <= 0xDFFF for ch in text):
        return text
    return "".join("�" if 0xD800 <= ord(ch) <= 0xDFFF else ch for ch in text)


def _sanitize_json_value(value: Any) -> Any:
    if isinstance(value, str):
        return _replace_surrogates(value)
    if isinstance(value, list):
        return [_sanitize_json_value(v) for v in value]
    if isinstance(value, dict):
        return {(_replace_surrogates(k) if isinstance(k, str) else k): _sanitize_json_value(v) for k, v in value.items()}
    return value


def _safe_write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(
        json.dumps(_sanitize_json_value(obj), ensure_ascii=False, sort_keys=True, indent=2) + "\n",
        encoding="utf-8",
        errors="backslashreplace",
    )
    tmp.replace(path)


def _validate_blob_name(name: str) -> str:
    if not isinstance(name, str) or not _BLOB_NAME_RE.fullmatch(name):
        raise BlobStoreError(f"Invalid blob name: {name!r}")
    return name


class FileBlobStore:
    """One JSON file per blob name under `root`."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, name: str) -> Path:
        return self._root / f"{_validate_blob_name(name)}.json"

    def save_blob(self, name: str, data: Any) -> None:
        _safe_write_json(self._path(name), data)

    def load_blob(self, name: str) -> Any | None:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise BlobStoreError(f"Invalid JSON in blob {name!r}: {e}") from e

    def list_blobs(self, prefix: str = "") -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.stem for p in self._root.glob("*.json") if p.stem.startswith(prefix))


class MemoryBlobStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: dict[str, str] = {}

    def save_blob(self, name: str, data: Any) -> None:
        encoded = json.dumps(_sanitize_json_value(data), ensure_ascii=False, sort_keys=True)
        with self._lock:
            self._blobs[_validate_blob_name(name)] = encoded

    def load_blob(self, name: str) -> Any | None:
        with self._lock:
            raw = self._blobs.get(_validate_blob_name(name))
        return None if raw is None else json.loads(raw)

    def list_blobs(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(n for n in self._blobs if n.startswith(prefix))
