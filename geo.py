"""Geometry helpers: great-circle distance and GeoJSON polygon tests."""

import math

EARTH_RADIUS_M = 6371000


def haversine_distance(lat1, lng1, lat2, lng2):
    """Great-circle distance in meters between two (lat, lng) points in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(d_lng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def _is_number(value):
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def validate_polygon(polygon):
    """Check a GeoJSON Polygon. Returns an error message, or None if usable."""
    if not isinstance(polygon, dict):
        return 'Invalid polygon format. Expected GeoJSON Polygon.'
    coordinates = polygon.get('coordinates')
    if (polygon.get('type') != 'Polygon' or not coordinates
            or not isinstance(coordinates, (list, tuple))):
        return 'Invalid polygon format. Expected GeoJSON Polygon.'

    ring = coordinates[0]
    if not isinstance(ring, (list, tuple)):
        return 'Polygon ring must be a list of [lng, lat] positions.'
    for vertex in ring:
        if (not isinstance(vertex, (list, tuple)) or len(vertex) < 2
                or not _is_number(vertex[0]) or not _is_number(vertex[1])):
            return 'Polygon ring must be a list of [lng, lat] positions.'

    distinct = {(v[0], v[1]) for v in ring}
    if len(distinct) < 3:
        return 'Polygon ring needs at least three distinct vertices.'
    return None


def _exterior_ring(polygon):
    """First ring as a list of (x, y), without the closing vertex."""
    ring = [(v[0], v[1]) for v in polygon['coordinates'][0]]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    return ring


def point_in_polygon(x, y, polygon):
    """Ray-casting algorithm for point-in-polygon. Holes are ignored."""
    ring = _exterior_ring(polygon)
    n = len(ring)
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if ((yi > y) != (yj > y)) and (x < (xj - xi) * (y - yi) / (yj - yi) + xi):
            inside = not inside
        j = i
    return inside


def polygon_centroid(polygon):
    """Area-weighted centroid of the exterior ring as (lat, lng).

    Falls back to the mean of the vertices when the ring has no area
    (all vertices collinear).
    """
    ring = _exterior_ring(polygon)
    area2 = 0.0
    cx = 0.0
    cy = 0.0
    for i in range(len(ring)):
        x0, y0 = ring[i]
        x1, y1 = ring[(i + 1) % len(ring)]
        cross = x0 * y1 - x1 * y0
        area2 += cross
        cx += (x0 + x1) * cross
        cy += (y0 + y1) * cross

    if abs(area2) < 1e-15:
        lng = sum(x for x, _ in ring) / len(ring)
        lat = sum(y for _, y in ring) / len(ring)
        return lat, lng

    return cy / (3 * area2), cx / (3 * area2)
