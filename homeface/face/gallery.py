from __future__ import annotations

import json
import os
import tempfile
import time

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from homeface.config import APP_VERSION, REQUIRED_ANGLES
from homeface.errors import StorageError, ValidationError
from homeface.face.types import Identity
from homeface.utils.log import get_logger
from homeface.utils.serializer import build_export_document, deserialize_identity, serialize_gallery

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    # File name for the persisted gallery.
    filename: str = "gallery.json"
    # Secondary copy, written best-effort after the primary.
    backup_filename: str = "gallery.backup.json"
    required_angle_count: int = len(REQUIRED_ANGLES)
    # Stamped into exports.
    device_info: Dict[str, str] = field(default_factory=lambda: {"appVersion": APP_VERSION})


class MemoryBackend:
    """Keeps the serialized document in memory (tests, or storage-less runs).

    The document is held as JSON text so callers can compare it byte for byte.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self.raw: Optional[str] = None if initial is None else json.dumps(initial)
        self.backup_raw: Optional[str] = None
        self.save_calls = 0

    def load(self) -> Optional[Dict[str, Any]]:
        if self.raw is None:
            return None
        try:
            return json.loads(self.raw)
        except ValueError as e:
            raise StorageError(f"Stored gallery is not valid JSON: {e}") from e

    def save(self, document: Mapping[str, Any]) -> None:
        self.save_calls += 1
        self.raw = json.dumps(document, ensure_ascii=False)

    def save_backup(self, document: Mapping[str, Any]) -> None:
        self.backup_raw = json.dumps(document, ensure_ascii=False)


class JsonFileBackend:
    """Whole-document JSON persistence with a best-effort backup copy."""

    def __init__(self, gallery_dir: Path, config: Optional[GalleryConfig] = None):
        cfg = config or GalleryConfig()
        self.gallery_dir = Path(gallery_dir)
        self.path = self.gallery_dir / cfg.filename
        self.backup_path = self.gallery_dir / cfg.backup_filename

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read gallery file {self.path}: {e}") from e

    def save(self, document: Mapping[str, Any]) -> None:
        self._write_atomic(self.path, document)

    def save_backup(self, document: Mapping[str, Any]) -> None:
        self._write_atomic(self.backup_path, document)

    def _write_atomic(self, fp: Path, document: Mapping[str, Any]) -> None:
        # temp file + fsync + rename: a crash never leaves a half-written gallery behind
        tmp_name = None
        try:
            self.gallery_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=fp.name, suffix=".tmp", dir=str(self.gallery_dir))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, fp)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Cannot write gallery file {fp}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)


class Gallery:
    """Enrolled identities, keyed by name, persisted as a whole on every mutation.

    Storage failures never propagate: the in-memory state stays authoritative and a
    warning is logged (the gallery is then only as durable as the process).
    """

    def __init__(self, backend, config: Optional[GalleryConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or GalleryConfig()
        self.backend = backend
        self.clock = clock
        self._identities: Dict[str, Identity] = {}
        self.degraded = False

    def __contains__(self, name: str) -> bool:
        return name in self._identities

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self) -> Iterator[Identity]:
        return iter(list(self._identities.values()))

    def get(self, name: str) -> Optional[Identity]:
        return self._identities.get(name)

    def list(self) -> List[Identity]:
        """Identities in insertion order (not sorted)."""
        return list(self._identities.values())

    def load(self) -> "Gallery":
        """Replace in-memory state with the persisted document. Never raises."""
        self._identities = {}
        try:
            data = self.backend.load()
        except StorageError as e:
            logger.error(f"Gallery load failed, starting empty: {e}")
            self.degraded = True
            return self

        if data is None:
            return self
        if not isinstance(data, dict):
            logger.error(f"Gallery document has unexpected type {type(data).__name__}, starting empty")
            self.degraded = True
            return self

        for name, entry in data.items():
            try:
                identity = deserialize_identity(name, entry)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping unreadable gallery entry {name!r}: {e}")
                continue
            if len(identity.samples) != self.config.required_angle_count:
                logger.warning(
                    f"Skipping {name!r}: {len(identity.samples)} samples, expected {self.config.required_angle_count}"
                )
                continue
            self._identities[identity.name] = identity

        logger.info(f"Gallery loaded: {len(self._identities)} identities")
        return self

    def upsert(self, identity: Identity) -> bool:
        """Insert or replace by name, then persist the whole gallery.

        Returns True once the in-memory gallery is updated, even if persisting failed.
        """
        name = identity.name
        if not name or not name.strip():
            raise ValidationError("Name must not be empty")
        if len(identity.samples) != self.config.required_angle_count:
            raise ValidationError(
                f"{name} has {len(identity.samples)} angle samples, {self.config.required_angle_count} are required"
            )
        replaced = name in self._identities
        self._identities[name] = identity
        self._persist()
        logger.info(f"{'Updated' if replaced else 'Registered'} {name} ({len(identity.samples)} samples)")
        return True

    def record_sighting(self, name: str, when: Optional[float] = None) -> None:
        identity = self._identities.get(name)
        if identity is None:
            return
        identity.last_seen_at = self.clock() if when is None else float(when)
        identity.recognition_count += 1
        self._persist()

    def remove(self, name: str) -> bool:
        if name not in self._identities:
            return False
        del self._identities[name]
        self._persist()
        logger.info(f"Removed {name}")
        return True

    def to_document(self) -> Dict[str, Any]:
        return serialize_gallery(self._identities.values())

    def export_document(self, device_info: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        info = dict(self.config.device_info)
        info.update(device_info or {})
        return build_export_document(self._identities.values(), exported_at=self.clock(), device_info=info)

    def write_export(self, fp: Path, device_info: Optional[Mapping[str, Any]] = None) -> Path:
        fp = Path(fp)
        doc = self.export_document(device_info)
        try:
            fp.parent.mkdir(parents=True, exist_ok=True)
            with open(fp, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise StorageError(f"Cannot write export {fp}: {e}") from e
        return fp

    def _persist(self) -> None:
        document = self.to_document()
        try:
            self.backend.save(document)
            self.degraded = False
        except StorageError as e:
            self.degraded = True
            logger.warning(f"Gallery not persisted, continuing in memory only: {e}")
            return
        try:
            self.backend.save_backup(document)
        except StorageError as e:
            logger.warning(f"Gallery backup copy failed: {e}")
