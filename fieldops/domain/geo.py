"""
Geometry types and great-circle helpers.

Coordinates are (longitude, latitude) pairs in degrees, as in GeoJSON.
Every geometry validates its coordinate arity on construction, so a value of
one of these types is always well formed.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Mapping, Tuple, Union

from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from .errors import ValidationError

EARTH_RADIUS_METERS = 6_371_000.0

Position = Tuple[float, float]


def _position(value: Any, field: str) -> Position:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValidationError("Positions must be [longitude, latitude] pairs", field)
    lng, lat = value
    if isinstance(lng, bool) or isinstance(lat, bool):
        raise ValidationError("Coordinates must be numbers", field)
    try:
        lng, lat = float(lng), float(lat)
    except (TypeError, ValueError):
        raise ValidationError("Coordinates must be numbers", field) from None
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValidationError("Coordinates must be finite", field)
    if not -180.0 <= lng <= 180.0 or not -90.0 <= lat <= 90.0:
        raise ValidationError("Coordinates out of range", field)
    return (lng, lat)


def _positions(value: Any, field: str) -> Tuple[Position, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Expected a list of positions", field)
    return tuple(_position(item, field) for item in value)


@dataclass(frozen=True)
class Point:
    type: ClassVar[str] = "Point"
    coordinates: Position

    def __post_init__(self):
        object.__setattr__(self, "coordinates", _position(self.coordinates, "coordinates"))

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]


@dataclass(frozen=True)
class LineString:
    type: ClassVar[str] = "LineString"
    coordinates: Tuple[Position, ...]

    def __post_init__(self):
        coords = _positions(self.coordinates, "coordinates")
        if len(coords) < 2:
            raise ValidationError("LineString needs at least two positions", "coordinates")
        object.__setattr__(self, "coordinates", coords)


@dataclass(frozen=True)
class Polygon:
    """Outer ring first, then holes. Each ring is closed (first == last)."""

    type: ClassVar[str] = "Polygon"
    coordinates: Tuple[Tuple[Position, ...], ...]

    def __post_init__(self):
        if not isinstance(self.coordinates, (list, tuple)) or not self.coordinates:
            raise ValidationError("Polygon needs at least one ring", "coordinates")
        rings = tuple(_positions(ring, "coordinates") for ring in self.coordinates)
        for ring in rings:
            if len(ring) < 4:
                raise ValidationError("Polygon rings need at least four positions", "coordinates")
            if ring[0] != ring[-1]:
                raise ValidationError("Polygon rings must be closed", "coordinates")
        object.__setattr__(self, "coordinates", rings)

    @property
    def exterior(self) -> Tuple[Position, ...]:
        return self.coordinates[0]

    @property
    def holes(self) -> Tuple[Tuple[Position, ...], ...]:
        return self.coordinates[1:]


Geometry = Union[Point, LineString, Polygon]

_GEOMETRY_TYPES = {cls.type: cls for cls in (Point, LineString, Polygon)}


def geometry_from_dict(data: Any, allowed: Iterable[str] | None = None) -> Geometry:
    """Parse a `{type, coordinates}` mapping into a geometry value."""
    if isinstance(data, (Point, LineString, Polygon)):
        geometry = data
    else:
        if not isinstance(data, Mapping):
            raise ValidationError("Geometry must be an object with type and coordinates", "geometry")
        cls = _GEOMETRY_TYPES.get(data.get("type"))
        if cls is None:
            raise ValidationError(f"Unsupported geometry type: {data.get('type')!r}", "geometry")
        if "coordinates" not in data:
            raise ValidationError("Geometry coordinates are required", "geometry")
        geometry = cls(data["coordinates"])
    if allowed is not None and geometry.type not in set(allowed):
        raise ValidationError(f"Geometry must be one of: {', '.join(sorted(allowed))}", "geometry")
    return geometry


def geometry_to_dict(geometry: Geometry) -> dict:
    def _plain(value):
        if isinstance(value, tuple):
            return [_plain(item) for item in value]
        return value

    return {"type": geometry.type, "coordinates": _plain(geometry.coordinates)}


def haversine_distance(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance in meters on a sphere of mean Earth radius."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to(point: Point, lng: float, lat: float) -> float:
    return haversine_distance(lng, lat, point.lng, point.lat)


def bounding_box(lng: float, lat: float, radius_m: float) -> Tuple[float, float, float, float] | None:
    """
    (min_lng, min_lat, max_lng, max_lat) enclosing a circle, used only to
    pre-filter candidates before the exact distance check. None when the
    circle reaches a pole or crosses the antimeridian.
    """
    delta = radius_m / EARTH_RADIUS_METERS
    if delta >= math.pi / 2:
        return None
    d_lat = math.degrees(delta)
    min_lat, max_lat = lat - d_lat, lat + d_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return None
    d_lng = math.degrees(math.asin(math.sin(delta) / math.cos(math.radians(lat))))
    min_lng, max_lng = lng - d_lng, lng + d_lng
    if min_lng < -180.0 or max_lng > 180.0:
        return None
    pad = 1e-9
    return (min_lng - pad, min_lat - pad, max_lng + pad, max_lat + pad)


def to_shape(geometry: Geometry) -> BaseGeometry:
    return shape(geometry_to_dict(geometry))


def geometry_within(geometry: Geometry, polygon: Polygon | BaseGeometry) -> bool:
    """
    True when every point of `geometry` lies in `polygon`, edges included.
    Coordinates are treated as planar, as the boundary rings are drawn.
    """
    area = polygon if isinstance(polygon, BaseGeometry) else to_shape(polygon)
    return area.covers(to_shape(geometry))
