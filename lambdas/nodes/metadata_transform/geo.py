"""Geocoordinate conversion.

Turns coordinate strings found in source records into a GeoJSON
FeatureCollection (for map display) plus a WKT-like search string (for
spatial queries).

Supported coordinate types:
    gml:point                 "x y" (lon lat)
    gml:point:4326            "lat lon" (axis order reversed)
    gml:polygon               "x1 y1 x2 y2 ..."
    gml:polygon:4326          "lat1 lon1 lat2 lon2 ..."
    mods:coordinates/point    "x y" or "x y z"
    sexagesimal:point         "E0080756 N0500000"
    sexagesimal:polygon       "E0080756 E0090756 N0500000 N0510000" (w e n s)

Sexagesimal tokens are exactly 8 characters: direction letter, 3-digit
degrees, 2-digit minutes, 2-digit seconds. W and S are negative.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Final

logger = logging.getLogger(__name__)

Position = tuple[float, ...]

TYPE_GML_POINT: Final[str] = "gml:point"
TYPE_GML_POINT_4326: Final[str] = "gml:point:4326"
TYPE_GML_POLYGON: Final[str] = "gml:polygon"
TYPE_GML_POLYGON_4326: Final[str] = "gml:polygon:4326"
TYPE_MODS_POINT: Final[str] = "mods:coordinates/point"
TYPE_SEXAGESIMAL_POINT: Final[str] = "sexagesimal:point"
TYPE_SEXAGESIMAL_POLYGON: Final[str] = "sexagesimal:polygon"

SUPPORTED_TYPES: Final[frozenset[str]] = frozenset(
    {
        TYPE_GML_POINT,
        TYPE_GML_POINT_4326,
        TYPE_GML_POLYGON,
        TYPE_GML_POLYGON_4326,
        TYPE_MODS_POINT,
        TYPE_SEXAGESIMAL_POINT,
        TYPE_SEXAGESIMAL_POLYGON,
    }
)


@dataclass(frozen=True)
class GeoCoords:
    """Converted coordinates; both members are None if conversion failed."""

    geojson: str | None = None
    wkt: str | None = None


def _split(coords: str, separator: str | None) -> list[str]:
    return [token.strip() for token in coords.strip().split(separator or " ") if token.strip()]


def convert_points(
    coords: str, separator: str | None, dimensions: int, reverse: bool
) -> list[Position]:
    """Group a flat list of numbers into positions.

    Args:
        coords: Coordinate string
        separator: Token separator (default single space)
        dimensions: Numbers per position (2 or 3)
        reverse: Swap the first two axes (lat/lon input)

    Raises:
        ValueError: If a token is not a number
    """
    if not coords:
        return []

    positions: list[Position] = []
    current: list[float] = []
    for token in _split(coords, separator):
        current.append(float(token))
        if len(current) == dimensions:
            if reverse:
                current[0], current[1] = current[1], current[0]
            positions.append(tuple(current))
            current = []
    return positions


def sexagesimal_to_decimal(coordinate: str) -> float:
    """Convert one sexagesimal token (e.g. ``E0080756``) to decimal degrees.

    Raises:
        ValueError: If the token is None, not 8 characters or not numeric
    """
    if coordinate is None:
        raise ValueError("coordinate may not be None")
    if len(coordinate) != 8:
        raise ValueError(f"Coordinate length must be 8: {coordinate}")

    direction = coordinate[0].upper()
    factor = -1 if direction in ("W", "S") else 1
    degrees = int(coordinate[1:4])
    minutes = int(coordinate[4:6])
    seconds = int(coordinate[6:8])
    return (degrees + minutes / 60 + seconds / 3600) * factor


def convert_sexagesimal_points(coords: str, separator: str | None) -> list[Position]:
    """Convert 2 (point) or 4 (w e n s rectangle) sexagesimal tokens.

    A rectangle whose two coordinate pairs are equal collapses to a point.
    A proper rectangle becomes a closed ring of five positions.
    """
    if not coords:
        return []

    values = [sexagesimal_to_decimal(token) for token in _split(coords, separator)]
    if len(values) == 2:
        return [(values[0], values[1])]
    if len(values) == 4:
        west, east, north, south = values
        if west == east and north == south:
            return [(west, north)]
        return [(west, north), (east, north), (east, south), (west, south), (west, north)]

    logger.warning(f"Incompatible sexagesimal coordinates: {coords}")
    return []


def _build_geometry(coords: str, coord_type: str, separator: str | None) -> dict[str, Any] | None:
    kind = coord_type.lower()
    if kind in (TYPE_GML_POINT, TYPE_GML_POINT_4326):
        points = convert_points(coords, separator, 2, kind == TYPE_GML_POINT_4326)
        return {"type": "Point", "coordinates": list(points[0])} if points else None
    if kind in (TYPE_GML_POLYGON, TYPE_GML_POLYGON_4326):
        points = convert_points(coords, separator, 2, kind == TYPE_GML_POLYGON_4326)
        return {"type": "Polygon", "coordinates": [[list(p) for p in points]]} if points else None
    if kind == TYPE_MODS_POINT:
        dimensions = len(_split(coords, separator))
        if dimensions not in (2, 3):
            raise ValueError(f"Point needs 2 or 3 coordinates, got {dimensions}")
        points = convert_points(coords, separator, dimensions, False)
        return {"type": "Point", "coordinates": list(points[0])} if points else None
    if kind in (TYPE_SEXAGESIMAL_POINT, TYPE_SEXAGESIMAL_POLYGON):
        points = convert_sexagesimal_points(coords, separator)
        if not points:
            return None
        if len(points) == 1:
            return {"type": "Point", "coordinates": list(points[0])}
        return {"type": "Polygon", "coordinates": [[list(p) for p in points]]}

    return None


def to_wkt(positions: list[Position]) -> str | None:
    """Render positions as ``"x y"`` (single point) or ``"POLYGON((x y, ...))"``."""
    if not positions:
        return None
    if len(positions) == 1:
        return f"{positions[0][0]} {positions[0][1]}"
    ring = ", ".join(f"{p[0]} {p[1]}" for p in positions)
    return f"POLYGON(({ring}))"


def convert(coords: str | None, coord_type: str, separator: str | None = " ") -> GeoCoords:
    """Convert a coordinate string to GeoJSON and WKT.

    Args:
        coords: Coordinate string
        coord_type: One of the supported coordinate types (case-insensitive)
        separator: Token separator

    Returns:
        GeoCoords; empty if the input is empty, malformed or of unknown type

    Raises:
        ValueError: If coord_type is None
    """
    if coord_type is None:
        raise ValueError("coord_type may not be None")
    if not coords or not coords.strip():
        return GeoCoords()

    if coord_type.lower() not in SUPPORTED_TYPES:
        logger.error(f"Unknown coordinate type: {coord_type}")
        return GeoCoords()

    try:
        geometry = _build_geometry(coords, coord_type, separator)
    except ValueError as e:
        logger.warning(f"Cannot convert coordinates '{coords}' ({coord_type}): {e}")
        return GeoCoords()

    if geometry is None:
        return GeoCoords()

    if geometry["type"] == "Point":
        positions = [tuple(geometry["coordinates"])]
    else:
        positions = [tuple(p) for p in geometry["coordinates"][0]]

    feature_collection = {
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "properties": {}, "geometry": geometry}],
    }
    return GeoCoords(geojson=json.dumps(feature_collection), wkt=to_wkt(positions))


def get_coordinates_type(coords: str) -> str:
    """Guess the type of an authority-data coordinate string."""
    tokens = coords.split(" ")
    if coords.startswith(("E", "W")):
        if len(tokens) == 2:
            return TYPE_SEXAGESIMAL_POINT
        if len(tokens) == 4:
            return TYPE_SEXAGESIMAL_POLYGON
    return TYPE_MODS_POINT
