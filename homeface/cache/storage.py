"""Named cache buckets holding stored HTTP responses.

Two interchangeable storages: `MemoryCacheStorage` and `DirectoryCacheStorage`
(one directory per bucket). Entries are keyed by request URL.
"""

from __future__ import annotations

import hashlib
import json
import os
import shutil

from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx

from homeface.errors import StorageError
from homeface.utils.log import get_logger

logger = get_logger(__name__)

# Epoch seconds at store time, stamped onto every cached response.
CACHED_AT_HEADER = "x-cached-at"

# Body is stored decoded; these would make httpx decode/trim it again.
_DROP_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


@dataclass
class CachedEntry:
    url: str
    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    content: bytes = b""

    @classmethod
    def from_response(cls, url: str, response: httpx.Response, cached_at: float) -> "CachedEntry":
        headers = [(k, v) for k, v in response.headers.items() if k.lower() not in _DROP_HEADERS]
        headers = [(k, v) for k, v in headers if k.lower() != CACHED_AT_HEADER]
        headers.append((CACHED_AT_HEADER, f"{cached_at:.3f}"))
        return cls(url=url, status_code=response.status_code, headers=headers, content=response.content)

    @property
    def cached_at(self) -> Optional[float]:
        for k, v in self.headers:
            if k.lower() == CACHED_AT_HEADER:
                try:
                    return float(v)
                except ValueError:
                    return None
        return None

    def to_response(self, request: Optional[httpx.Request] = None) -> httpx.Response:
        return httpx.Response(self.status_code, headers=self.headers, content=self.content, request=request)


def _entry_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class MemoryBucket:
    def __init__(self, name: str):
        self.name = name
        self._entries: "OrderedDict[str, CachedEntry]" = OrderedDict()

    def match(self, url: str) -> Optional[CachedEntry]:
        return self._entries.get(url)

    def put(self, entry: CachedEntry) -> None:
        self._entries[entry.url] = entry

    def delete(self, url: str) -> bool:
        return self._entries.pop(url, None) is not None

    def keys(self) -> List[str]:
        return list(self._entries.keys())


class MemoryCacheStorage:
    def __init__(self):
        self._buckets: Dict[str, MemoryBucket] = {}

    def open(self, name: str) -> MemoryBucket:
        bucket = self._buckets.get(name)
        if bucket is None:
            bucket = MemoryBucket(name)
            self._buckets[name] = bucket
        return bucket

    def has(self, name: str) -> bool:
        return name in self._buckets

    def delete(self, name: str) -> bool:
        return self._buckets.pop(name, None) is not None

    def keys(self) -> List[str]:
        return list(self._buckets.keys())


class DirectoryBucket:
    """<root>/<bucket>/<sha256(url)>.json (metadata) + .body (raw bytes)."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path

    def match(self, url: str) -> Optional[CachedEntry]:
        key = _entry_key(url)
        meta_fp = self.path / f"{key}.json"
        body_fp = self.path / f"{key}.body"
        if not meta_fp.exists() or not body_fp.exists():
            return None
        try:
            meta = json.loads(meta_fp.read_text(encoding="utf-8"))
            content = body_fp.read_bytes()
            return CachedEntry(
                url=meta["url"],
                status_code=int(meta["status_code"]),
                headers=[(str(k), str(v)) for k, v in meta.get("headers", [])],
                content=content,
            )
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Dropping unreadable cache entry {url} in {self.name}: {e}")
            return None

    def put(self, entry: CachedEntry) -> None:
        key = _entry_key(entry.url)
        meta = {"url": entry.url, "status_code": entry.status_code, "headers": entry.headers}
        body_tmp = self.path / f"{key}.body.tmp"
        meta_tmp = self.path / f"{key}.json.tmp"
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            body_tmp.write_bytes(entry.content)
            os.replace(body_tmp, self.path / f"{key}.body")
            meta_tmp.write_text(json.dumps(meta), encoding="utf-8")
            os.replace(meta_tmp, self.path / f"{key}.json")
        except OSError as e:
            raise StorageError(f"Cannot store {entry.url} in {self.name}: {e}") from e
        finally:
            for tmp in (body_tmp, meta_tmp):
                if tmp.exists():
                    tmp.unlink()

    def delete(self, url: str) -> bool:
        key = _entry_key(url)
        removed = False
        for suffix in (".json", ".body"):
            fp = self.path / f"{key}{suffix}"
            if fp.exists():
                fp.unlink()
                removed = True
        return removed

    def keys(self) -> List[str]:
        if not self.path.exists():
            return []
        urls = []
        for fp in sorted(self.path.glob("*.json")):
            try:
                urls.append(json.loads(fp.read_text(encoding="utf-8"))["url"])
            except (OSError, ValueError, KeyError):
                continue
        return urls


class DirectoryCacheStorage:
    def __init__(self, root: Path):
        self.root = Path(root)

    def _bucket_path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid cache name: {name!r}")
        return self.root / name

    def open(self, name: str) -> DirectoryBucket:
        path = self._bucket_path(name)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create cache {name}: {e}") from e
        return DirectoryBucket(name, path)

    def has(self, name: str) -> bool:
        return self._bucket_path(name).is_dir()

    def delete(self, name: str) -> bool:
        path = self._bucket_path(name)
        if not path.is_dir():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageError(f"Cannot delete cache {name}: {e}") from e
        return True

    def keys(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())
