"""
Analytics over the saved activity dataset.
All functions are pure: they take the loaded list of raw activities and never mutate it.
"""
import logging
import math
from bisect import bisect_right
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from .models import ActivityRecord, canonical_stream_key

logger = logging.getLogger(__name__)

ROUTE_SIGNATURE_LENGTH = 30
# Lower bounds of zones 2..5, inclusive
HR_ZONE_BOUNDS = (120, 140, 160, 180)
BIOMETRIC_STREAMS = {
    "heartrate": "heartrate",
    "cadence": "cadence",
    "watts": "watts",
    "velocity": "velocity_smooth",
    "altitude": "altitude",
}
CSV_HEADER = "id,name,start_date_local,avg_heartrate,avg_velocity,avg_altitude"


def normalize(activities: List[Dict[str, Any]]) -> List[ActivityRecord]:
    return [ActivityRecord.from_raw(a) for a in activities if isinstance(a, dict)]


def _numeric(samples: List[Any]) -> List[float]:
    return [s for s in samples if isinstance(s, (int, float)) and not isinstance(s, bool)]


def _mean(samples: List[Any]) -> Optional[float]:
    values = _numeric(samples)
    if not values:
        return None
    return sum(values) / len(values)


def _parse_start(record: ActivityRecord) -> Optional[date]:
    """Calendar day of the activity: UTC day of start_date, else wall-clock day of start_date_local."""
    for value, to_utc in ((record.start_date, True), (record.start_date_local, False)):
        if not value:
            continue
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            continue
        if to_utc and parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.date()
    return None


def week_key(day: date) -> str:
    """
    Week bucket key "{year}-W{week}" (week not zero-padded).
    week = ceil((days since Jan 1 + weekday of Jan 1 (0=Sunday) + 1) / 7)
    """
    jan1 = date(day.year, 1, 1)
    jan1_weekday = jan1.isoweekday() % 7
    week = math.ceil(((day - jan1).days + jan1_weekday + 1) / 7)
    return f"{day.year}-W{week}"


def weekly_rollup(activities: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Sum distance, moving time, elevation and count per week.
    Buckets are ordered by plain string comparison of their keys, so "2024-W10"
    sorts before "2024-W2". Existing consumers rely on this order.
    """
    weeks: Dict[str, Dict[str, float]] = {}

    for record in normalize(activities):
        day = _parse_start(record)
        if day is None:
            logger.debug(f"Skipping activity {record.id} without a usable start date")
            continue

        key = week_key(day)
        if key not in weeks:
            weeks[key] = {"distance": 0, "time": 0, "elevation": 0, "count": 0}

        weeks[key]["distance"] += record.distance
        weeks[key]["time"] += record.moving_time
        weeks[key]["elevation"] += record.total_elevation_gain
        weeks[key]["count"] += 1

    ordered = sorted(weeks.items(), key=lambda item: item[0])

    buckets = [
        {
            "week": key,
            "distance_km": round(v["distance"] / 1000, 1),
            "hours": round(v["time"] / 3600, 1),
            "elevation_m": round(v["elevation"]),
            "count": v["count"],
        }
        for key, v in ordered
    ]

    if ordered:
        last = ordered[-1][1]
        text = (
            f"Last week: {last['distance'] / 1000:.1f} km, {last['time'] / 3600:.1f} hours, "
            f"{last['elevation']:.0f} m of elevation gain over {last['count']} activities."
        )
    else:
        text = "No activities recorded."

    return {
        "text": text,
        "weeks": buckets,
        "chart": {
            "labels": [key for key, _ in ordered],
            "datasets": [
                {"label": "Distance (km)", "data": [f"{v['distance'] / 1000:.1f}" for _, v in ordered], "borderColor": "blue"},
                {"label": "Time (h)", "data": [f"{v['time'] / 3600:.1f}" for _, v in ordered], "borderColor": "green"},
                {"label": "Elevation (m)", "data": [f"{v['elevation']:.0f}" for _, v in ordered], "borderColor": "orange"},
            ],
        },
    }


def route_signature(polyline: str) -> str:
    # Coarse fingerprint: activities sharing the polyline prefix count as the same route
    return polyline[:ROUTE_SIGNATURE_LENGTH]


def recognize_routes(activities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Report recurring routes (signature seen more than once), named after the first activity seen."""
    route_map: Dict[str, Dict[str, Any]] = {}

    for record in normalize(activities):
        if not record.summary_polyline:
            continue
        key = route_signature(record.summary_polyline)
        if key not in route_map:
            route_map[key] = {"name": record.name, "count": 0}
        route_map[key]["count"] += 1

    return [
        {"route": v["name"], "hash": key, "count": v["count"]}
        for key, v in route_map.items()
        if v["count"] > 1
    ]


def extract_biometrics(activities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    results = []
    for record in normalize(activities):
        entry = {"id": record.id, "name": record.name, "start_date": record.start_date}
        for label, stream_key in BIOMETRIC_STREAMS.items():
            entry[label] = record.stream(stream_key)
        results.append(entry)
    return results


def compare_metric(activities: List[Dict[str, Any]], metric: str) -> Dict[str, Any]:
    """
    Mean of one stream per activity. `metric` may be a short name (heartrate,
    velocity, ...) or any `<key>_stream` field. Activities without samples are omitted.
    """
    key = canonical_stream_key(metric)
    decimals = 2 if key == "velocity_smooth" else 1

    compared = []
    for record in normalize(activities):
        mean = _mean(record.stream(key))
        if mean is None:
            continue
        compared.append({
            "id": record.id,
            "name": record.name,
            "start_date": record.start_date,
            "value": round(mean, decimals),
        })

    return {"metric": metric, "activities": compared}


def hr_zone(bpm: float) -> int:
    """Zone 1..5 for a heart rate sample: <120, 120-139, 140-159, 160-179, >=180."""
    return bisect_right(HR_ZONE_BOUNDS, bpm) + 1


def hr_zone_histogram(samples: List[Any]) -> Dict[str, int]:
    zones = {f"zone{n}": 0 for n in range(1, len(HR_ZONE_BOUNDS) + 2)}
    for bpm in _numeric(samples):
        zones[f"zone{hr_zone(bpm)}"] += 1
    return zones


def analyze_intensity(activities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Heart-rate intensity per activity. Activities without heart rate samples are skipped."""
    results = []
    for record in normalize(activities):
        heartrate = _numeric(record.stream("heartrate"))
        if not heartrate:
            continue

        avg_watts = _mean(record.stream("watts"))
        results.append({
            "id": record.id,
            "name": record.name,
            "start_date": record.start_date,
            "avg_hr": round(sum(heartrate) / len(heartrate), 1),
            "max_hr": max(heartrate),
            "avg_watts": round(avg_watts, 1) if avg_watts is not None else None,
            # One sample per recorded point; stands in for duration
            "duration": len(heartrate),
            "zones": hr_zone_histogram(heartrate),
        })
    return results


def _fmt(value: Optional[float], decimals: int = 1) -> str:
    return "" if value is None else f"{value:.{decimals}f}"


def export_csv(activities: List[Dict[str, Any]]) -> str:
    """
    One row per activity. Fields are joined with bare commas and never quoted,
    so a name containing a comma shifts the following columns.
    """
    lines = [CSV_HEADER]
    for record in normalize(activities):
        row = [
            "" if record.id is None else str(record.id),
            record.name,
            record.start_date_local or "",
            _fmt(_mean(record.stream("heartrate"))),
            _fmt(_mean(record.stream("velocity_smooth")), 2),
            _fmt(_mean(record.stream("altitude"))),
        ]
        lines.append(",".join(row))
    return "\n".join(lines) + "\n"
