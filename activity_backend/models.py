import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Flattened `<name>_stream` fields may use short names for Strava stream keys
STREAM_ALIASES = {"velocity": "velocity_smooth"}
STREAM_SUFFIX = "_stream"


def canonical_stream_key(name: str) -> str:
    """Map a metric name (`heartrate`, `velocity`, `watts_stream`, ...) to its stream key."""
    if name.endswith(STREAM_SUFFIX):
        name = name[: -len(STREAM_SUFFIX)]
    return STREAM_ALIASES.get(name, name)


def _number(value: Any) -> float:
    """Numeric field as read from upstream; anything unusable counts as 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class Credential(BaseModel):
    """Access token + absolute expiry (epoch seconds). Replaced whole, never mutated."""
    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: int

    def is_expired(self, now: float, margin: int = 0) -> bool:
        return now >= self.expires_at - margin

    @property
    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, timezone.utc).isoformat()


class ActivityRecord(BaseModel):
    """
    Canonical, read-only view of a stored activity.
    Built once per analysis call so the analytics never deal with optional fields.
    """
    id: Any = None
    name: str = ""
    start_date: Optional[str] = None
    start_date_local: Optional[str] = None
    distance: float = 0.0
    moving_time: float = 0.0
    total_elevation_gain: float = 0.0
    summary_polyline: Optional[str] = None
    streams: Dict[str, List[Any]] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ActivityRecord":
        streams: Dict[str, List[Any]] = {}

        # Flattened `<key>_stream` arrays take precedence
        for key, value in raw.items():
            if isinstance(key, str) and key.endswith(STREAM_SUFFIX) and isinstance(value, list):
                streams[canonical_stream_key(key)] = value

        # Fall back to the key_by_type bundle: streams.<key>.data
        nested = raw.get("streams")
        if isinstance(nested, dict):
            for key, stream in nested.items():
                if not isinstance(key, str) or not isinstance(stream, dict):
                    continue
                key = canonical_stream_key(key)
                if key in streams:
                    continue
                data = stream.get("data")
                if isinstance(data, list):
                    streams[key] = data

        activity_map = raw.get("map")
        if not isinstance(activity_map, dict):
            activity_map = {}
        name = raw.get("name")
        activity_id = raw.get("id")
        return cls(
            id=activity_id if isinstance(activity_id, (int, str)) and not isinstance(activity_id, bool) else None,
            name="" if name is None else str(name),
            start_date=_text(raw.get("start_date")),
            start_date_local=_text(raw.get("start_date_local")),
            distance=_number(raw.get("distance")),
            moving_time=_number(raw.get("moving_time")),
            total_elevation_gain=_number(raw.get("total_elevation_gain")),
            summary_polyline=_text(activity_map.get("summary_polyline")),
            streams=streams,
        )

    def stream(self, name: str) -> List[Any]:
        return self.streams.get(canonical_stream_key(name), [])


class EnrichmentReport(BaseModel):
    activities: List[Dict[str, Any]]
    degraded_ids: List[Any] = Field(default_factory=list)

    @property
    def enriched_count(self) -> int:
        return len(self.activities) - len(self.degraded_ids)


class SaveResponse(BaseModel):
    status: str
    count: int
    enriched: Optional[int] = None
    degraded: Optional[List[Any]] = None


class TokenInfo(BaseModel):
    has_token: bool
    valid: bool
    expires_at: Optional[int] = None
    expires_at_iso: Optional[str] = None
    expires_in: Optional[int] = None
    token_preview: Optional[str] = None
