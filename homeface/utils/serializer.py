"""JSON-safe (de)serialization of identities and gallery documents.

Persisted layout (one document for the whole gallery)::

    {
      "<name>": {
        "embeddings": [{"angle", "embedding": [float...], "camera", "capturedAt"}],
        "registeredAt": "<iso>",
        "lastSeen": "<iso>" | null,
        "recognitionCount": int,
        "registeredWith": {...}
      }
    }
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from homeface.config import APP_VERSION
from homeface.face.types import AngleLabel, AngleSample, Camera, Identity
from homeface.utils.math import as_embedding


def format_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    dt = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Union[str, int, float, None]) -> Optional[float]:
    """Accept ISO-8601 strings or epoch milliseconds (as written by browser clients)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000.0
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def serialize_sample(sample: AngleSample) -> Dict[str, Any]:
    return {
        "angle": sample.angle.value,
        "embedding": [float(x) for x in sample.embedding.tolist()],
        "camera": sample.camera.value,
        "capturedAt": format_timestamp(sample.captured_at),
    }


def deserialize_sample(data: Mapping[str, Any]) -> AngleSample:
    embedding = data["embedding"]
    if not embedding:
        raise ValueError("empty embedding")
    return AngleSample(
        angle=AngleLabel(data["angle"]),
        embedding=as_embedding(embedding),
        camera=Camera(data.get("camera") or Camera.FRONT.value),
        captured_at=parse_timestamp(data.get("capturedAt")) or 0.0,
    )


def serialize_identity(identity: Identity) -> Dict[str, Any]:
    return {
        "embeddings": [serialize_sample(s) for s in identity.samples],
        "registeredAt": format_timestamp(identity.registered_at),
        "lastSeen": format_timestamp(identity.last_seen_at),
        "recognitionCount": int(identity.recognition_count),
        "registeredWith": dict(identity.registered_with),
    }


def deserialize_identity(name: str, data: Mapping[str, Any]) -> Identity:
    """Build an Identity from its persisted form; raises KeyError/ValueError/TypeError on bad data."""
    if not str(name).strip():
        raise ValueError("empty identity name")
    samples = [deserialize_sample(s) for s in data["embeddings"]]
    count = int(data.get("recognitionCount") or 0)
    if count < 0:
        raise ValueError(f"negative recognitionCount for {name}")
    return Identity(
        name=str(name),
        samples=samples,
        registered_at=parse_timestamp(data.get("registeredAt")) or 0.0,
        last_seen_at=parse_timestamp(data.get("lastSeen")),
        recognition_count=count,
        registered_with={str(k): str(v) for k, v in (data.get("registeredWith") or {}).items()},
    )


def serialize_gallery(identities: Iterable[Identity]) -> Dict[str, Any]:
    return {identity.name: serialize_identity(identity) for identity in identities}


def build_export_document(
    identities: Iterable[Identity],
    exported_at: float,
    device_info: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Superset of the gallery document, for manual backups."""
    members = serialize_gallery(identities)
    return {
        "exportedAt": format_timestamp(exported_at),
        "totalMembers": len(members),
        "appVersion": APP_VERSION,
        "device": dict(device_info or {}),
        "members": members,
    }
