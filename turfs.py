"""Turf cutting: household aggregation, partitioning and walk-order routing.

Everything in this module is pure. Database access lives in turf_store.py.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from geo import haversine_distance, point_in_polygon, polygon_centroid

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 50
CONVERGENCE_DEGREES = 0.0001
MINUTES_PER_DOOR = 3
WALK_METERS_PER_MINUTE = 80
UNASSIGNED_PRECINCT = 'Unassigned'


@dataclass
class VoterPoint:
    voter_id: str
    household_id: Optional[str]
    lat: Optional[float]
    lng: Optional[float]
    sort_order: Optional[int] = None
    precinct: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None


@dataclass
class Household:
    """One door. `voter_ids` is never empty."""
    id: str
    lat: float
    lng: float
    voter_ids: List[str] = field(default_factory=list)
    precinct: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    sort_order: Optional[int] = None

    def to_dict(self):
        return {
            'household_id': self.id,
            'lat': self.lat,
            'lng': self.lng,
            'street_address': self.street_address,
            'city': self.city,
            'zip_code': self.zip_code,
            'voter_ids': list(self.voter_ids),
        }


@dataclass
class TurfPartition:
    """A group of households ready to become a turf, whatever produced it."""
    households: List[Household]
    center: Tuple[float, float]
    boundary: Optional[dict] = None
    name: Optional[str] = None

    @property
    def voter_ids(self):
        seen = {}
        for household in self.households:
            seen.update(dict.fromkeys(household.voter_ids))
        return list(seen)

    @property
    def door_count(self):
        return len(self.households)


@dataclass
class PolygonSelection:
    voter_ids: List[str]
    households: List[Household]
    center: Tuple[float, float]

    @property
    def is_empty(self):
        return not self.voter_ids

    def as_partition(self, polygon, name=None):
        return TurfPartition(households=self.households, center=self.center,
                             boundary=polygon, name=name)


@dataclass
class Route:
    stops: List[dict]
    distance: int
    estimated_duration: int

    def to_dict(self):
        return {
            'route': self.stops,
            'distance': self.distance,
            'estimated_duration': self.estimated_duration,
        }


def _has_coordinates(point):
    return (point.lat is not None and point.lng is not None
            and math.isfinite(point.lat) and math.isfinite(point.lng))


def aggregate_households(points, require_household=True):
    """Collapse voter points into unique households, first-seen order.

    With require_household, voters without a household key are left out
    (they cannot be turfed automatically). Otherwise each becomes its own
    door keyed by voter id.
    """
    households = {}
    rejected = 0
    for point in points:
        if not _has_coordinates(point):
            rejected += 1
            continue
        key = point.household_id
        if not key:
            if require_household:
                continue
            key = point.voter_id
        household = households.get(key)
        if household is None:
            household = Household(
                id=key, lat=point.lat, lng=point.lng,
                precinct=point.precinct,
                street_address=point.street_address,
                city=point.city,
                zip_code=point.zip_code,
                sort_order=point.sort_order,
            )
            households[key] = household
        household.voter_ids.append(point.voter_id)

    if rejected:
        logger.warning('Skipped %d voter(s) without usable coordinates', rejected)
    return list(households.values())


def doors_to_turf_count(door_count, doors_per_turf):
    return max(1, math.ceil(door_count / doors_per_turf))


def _nearest(lat, lng, centroids):
    best = 0
    best_dist = math.inf
    for i, (c_lat, c_lng) in enumerate(centroids):
        dist = haversine_distance(lat, lng, c_lat, c_lng)
        if dist < best_dist:
            best_dist = dist
            best = i
    return best


def _assign(households, centroids):
    clusters = [[] for _ in centroids]
    for household in households:
        clusters[_nearest(household.lat, household.lng, centroids)].append(household)
    return clusters


def _mean_center(households):
    lat = sum(h.lat for h in households) / len(households)
    lng = sum(h.lng for h in households) / len(households)
    return lat, lng


def cluster_households(households, k, rng=None):
    """k-means style partition of households into at most k groups.

    Centroids are seeded from a random sample of households, so results
    vary between runs unless a seeded `rng` is passed. Empty clusters are
    dropped, so fewer than k partitions may come back.
    """
    if not households:
        return []
    if k >= len(households):
        return [TurfPartition(households=[h], center=(h.lat, h.lng))
                for h in households]

    rng = rng or random.Random()
    centroids = [(h.lat, h.lng) for h in rng.sample(households, k)]

    for iteration in range(MAX_ITERATIONS):
        clusters = _assign(households, centroids)
        new_centroids = [
            _mean_center(members) if members else centroids[i]
            for i, members in enumerate(clusters)
        ]
        moved = any(
            abs(old[0] - new[0]) > CONVERGENCE_DEGREES or
            abs(old[1] - new[1]) > CONVERGENCE_DEGREES
            for old, new in zip(centroids, new_centroids)
        )
        centroids = new_centroids
        if not moved:
            logger.debug('k-means converged after %d iteration(s)', iteration + 1)
            break
    else:
        logger.info('k-means hit the %d iteration cap (k=%d, doors=%d)',
                    MAX_ITERATIONS, k, len(households))

    clusters = _assign(households, centroids)
    return [TurfPartition(households=members, center=centroids[i])
            for i, members in enumerate(clusters) if members]


def group_by_precinct(points):
    """One partition per precinct among geocoded, household-bearing voters.

    A household follows the precinct of its first-seen voter. The center is
    the mean of every member voter's coordinates.
    """
    households = aggregate_households(points)
    by_id = {h.id: h for h in households}

    groups = {}
    sums = {}
    for household in households:
        precinct = household.precinct or UNASSIGNED_PRECINCT
        groups.setdefault(precinct, []).append(household)
        sums.setdefault(precinct, [0.0, 0.0, 0])

    for point in points:
        if not point.household_id or not _has_coordinates(point):
            continue
        household = by_id[point.household_id]
        acc = sums[household.precinct or UNASSIGNED_PRECINCT]
        acc[0] += point.lat
        acc[1] += point.lng
        acc[2] += 1

    partitions = []
    for precinct in sorted(groups):
        lat_sum, lng_sum, count = sums[precinct]
        partitions.append(TurfPartition(
            households=groups[precinct],
            center=(lat_sum / count, lng_sum / count),
            name=precinct,
        ))
    return partitions


def select_in_polygon(polygon, points):
    """Voters strictly inside a validated polygon, plus the polygon centroid."""
    inside = [p for p in points
              if _has_coordinates(p) and point_in_polygon(p.lng, p.lat, polygon)]
    households = aggregate_households(inside, require_household=False)
    voter_ids = list(dict.fromkeys(p.voter_id for p in inside))
    return PolygonSelection(voter_ids=voter_ids, households=households,
                            center=polygon_centroid(polygon))


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def nearest_neighbor_route(households):
    """Greedy walk order starting from the first household.

    Always picks the closest unvisited door next. Not optimal, but O(n^2)
    and never revisits a door.
    """
    n = len(households)
    visited = [False] * n
    order = []
    total = 0.0

    if n:
        visited[0] = True
        order.append(0)
    while len(order) < n:
        current = households[order[-1]]
        nearest = None
        best = math.inf
        for i in range(n):
            if visited[i]:
                continue
            dist = haversine_distance(current.lat, current.lng,
                                      households[i].lat, households[i].lng)
            if nearest is None or dist < best:
                best = dist
                nearest = i
        visited[nearest] = True
        order.append(nearest)
        total += best

    distance = _round_half_up(total)
    stops = []
    for position, index in enumerate(order, start=1):
        stop = households[index].to_dict()
        stop['order'] = position
        stops.append(stop)

    return Route(
        stops=stops,
        distance=distance,
        estimated_duration=_round_half_up(n * MINUTES_PER_DOOR +
                                          total / WALK_METERS_PER_MINUTE),
    )
