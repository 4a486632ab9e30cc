"""Pure query helpers shared by the backends that evaluate queries in process."""
from __future__ import annotations

import math
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from .errors import ValidationError
from .geo import Point, Polygon, distance_to, geometry_within, to_shape
from .models import Feature, Task, TaskStatus

T = TypeVar("T")


def validate_center(lng: float, lat: float, max_distance: float) -> Tuple[float, float, float]:
    try:
        lng, lat, max_distance = float(lng), float(lat), float(max_distance)
    except (TypeError, ValueError):
        raise ValidationError("Longitude, latitude and distance must be numbers") from None
    if not all(math.isfinite(v) for v in (lng, lat, max_distance)):
        raise ValidationError("Longitude, latitude and distance must be finite")
    if not -180.0 <= lng <= 180.0 or not -90.0 <= lat <= 90.0:
        raise ValidationError("Coordinates out of range")
    if max_distance < 0:
        raise ValidationError("max_distance must not be negative", "max_distance")
    return lng, lat, max_distance


def nearest_first(
    candidates: Iterable[Tuple[T, Optional[Point]]],
    lng: float,
    lat: float,
    max_distance: float,
) -> List[T]:
    """Keep candidates within `max_distance` meters (inclusive), nearest first."""
    ranked = []
    for order, (item, point) in enumerate(candidates):
        if point is None:
            continue
        distance = distance_to(point, lng, lat)
        if distance <= max_distance:
            ranked.append((distance, order, item))
    ranked.sort(key=lambda entry: (entry[0], entry[1]))
    return [item for _distance, _order, item in ranked]


def features_within(features: Iterable[Feature], polygon: Polygon) -> List[Feature]:
    area = to_shape(polygon)
    return [f for f in features if f.geometry is not None and geometry_within(f.geometry, area)]


def tasks_within(tasks: Iterable[Task], polygon: Polygon) -> List[Task]:
    area = to_shape(polygon)
    return [t for t in tasks if t.location is not None and geometry_within(t.location, area)]


def task_stats(tasks: Iterable[Task]) -> dict:
    """Count tasks per status; every status is present, zero included."""
    counts = Counter(task.status for task in tasks)
    stats = {status.value: counts.get(status, 0) for status in TaskStatus}
    stats["total"] = sum(counts.values())
    return stats


def feature_stats(features: Iterable[Feature]) -> dict:
    counts = Counter(feature.fea_type for feature in features)
    return {fea_type: counts[fea_type] for fea_type in sorted(counts)}


def normalize_query(query: str) -> str:
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Search query is required", "query")
    return query.strip().casefold()


def text_matches(needle: str, values: Sequence[Optional[str]]) -> bool:
    return any(needle in value.casefold() for value in values if value)


def feature_search_fields(feature: Feature) -> Sequence[Optional[str]]:
    return (feature.name, feature.fea_no, feature.fea_type, feature.specific_type, feature.remarks)


def task_search_fields(task: Task) -> Sequence[Optional[str]]:
    return (task.title, task.description)
