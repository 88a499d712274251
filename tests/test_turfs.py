import math
import random

import pytest

from geo import EARTH_RADIUS_M, haversine_distance
from turfs import (Household, VoterPoint, aggregate_households, cluster_households,
                   doors_to_turf_count, group_by_precinct, nearest_neighbor_route,
                   select_in_polygon)

SQUARE = [(35.60, -82.55), (35.61, -82.55), (35.60, -82.56), (35.61, -82.56)]


def make_household(hid, lat, lng):
    return Household(id=hid, lat=lat, lng=lng, voter_ids=[f'{hid}-v'])


def square_households():
    return [make_household(f'H{i}', lat, lng) for i, (lat, lng) in enumerate(SQUARE)]


def north_of(lat, lng, meters):
    return lat + math.degrees(meters / EARTH_RADIUS_M), lng


# ---------------------------------------------------------------------------
# Household aggregation
# ---------------------------------------------------------------------------

def test_aggregate_collapses_voters_by_household():
    points = [
        VoterPoint('V1', 'H1', 35.60, -82.55),
        VoterPoint('V2', 'H2', 35.61, -82.55),
        VoterPoint('V3', 'H1', 35.70, -82.70),
    ]
    households = aggregate_households(points)

    assert [h.id for h in households] == ['H1', 'H2']
    assert households[0].voter_ids == ['V1', 'V3']
    # first-seen coordinates win
    assert (households[0].lat, households[0].lng) == (35.60, -82.55)


def test_aggregate_skips_missing_household_and_bad_coordinates():
    points = [
        VoterPoint('V1', None, 35.60, -82.55),
        VoterPoint('V2', 'H2', float('nan'), -82.55),
        VoterPoint('V3', 'H3', 35.60, float('inf')),
        VoterPoint('V4', 'H4', None, None),
        VoterPoint('V5', 'H5', 35.61, -82.56),
    ]
    households = aggregate_households(points)
    assert [h.id for h in households] == ['H5']


def test_aggregate_without_household_requirement_uses_voter_as_door():
    points = [VoterPoint('V1', None, 35.60, -82.55), VoterPoint('V2', 'H2', 35.61, -82.55)]
    households = aggregate_households(points, require_household=False)
    assert [h.id for h in households] == ['V1', 'H2']


@pytest.mark.parametrize('doors, per_turf, expected', [
    (0, 50, 1), (1, 50, 1), (50, 50, 1), (51, 50, 2), (4, 2, 2), (5, 1, 5),
])
def test_doors_to_turf_count(doors, per_turf, expected):
    assert doors_to_turf_count(doors, per_turf) == expected


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------

def test_cluster_empty_input():
    assert cluster_households([], 3) == []


@pytest.mark.parametrize('k', [4, 5, 100])
def test_cluster_k_at_least_doors_gives_singletons(k):
    households = square_households()
    partitions = cluster_households(households, k)

    assert len(partitions) == len(households)
    for partition, h in zip(partitions, households):
        assert partition.households == [h]
        assert partition.center == (h.lat, h.lng)


def test_cluster_k_one_gives_single_mean_cluster():
    households = square_households()
    partitions = cluster_households(households, 1, rng=random.Random(3))

    assert len(partitions) == 1
    assert len(partitions[0].households) == 4
    assert partitions[0].center[0] == pytest.approx(35.605)
    assert partitions[0].center[1] == pytest.approx(-82.555)


def test_cluster_square_into_two():
    households = square_households()
    for seed in range(10):
        partitions = cluster_households(households, 2, rng=random.Random(seed))
        sizes = [len(p.households) for p in partitions]
        assert sum(sizes) == 4
        assert all(size >= 1 for size in sizes)
        ids = [h.id for p in partitions for h in p.households]
        assert sorted(ids) == ['H0', 'H1', 'H2', 'H3']


def test_cluster_seeded_runs_are_reproducible():
    rng_points = random.Random(99)
    households = [make_household(f'H{i}', 35.5 + rng_points.random() / 10,
                                 -82.6 + rng_points.random() / 10) for i in range(60)]

    first = cluster_households(households, 5, rng=random.Random(7))
    second = cluster_households(households, 5, rng=random.Random(7))

    assert [[h.id for h in p.households] for p in first] == \
        [[h.id for h in p.households] for p in second]
    assert sum(len(p.households) for p in first) == 60


def test_partition_voter_ids_union():
    households = [Household('H1', 35.6, -82.5, ['A', 'B']), Household('H2', 35.6, -82.5, ['C'])]
    partitions = cluster_households(households, 1, rng=random.Random(0))
    assert partitions[0].voter_ids == ['A', 'B', 'C']


# ---------------------------------------------------------------------------
# Precinct grouping
# ---------------------------------------------------------------------------

def test_group_by_precinct():
    points = [
        VoterPoint('V1', 'H1', 35.60, -82.55, precinct='P2'),
        VoterPoint('V2', 'H1', 35.60, -82.55, precinct='P2'),
        VoterPoint('V3', 'H2', 35.62, -82.57, precinct='P2'),
        VoterPoint('V4', 'H3', 35.70, -82.70, precinct='P1'),
        VoterPoint('V5', None, 35.80, -82.80, precinct='P3'),
    ]
    partitions = group_by_precinct(points)

    assert [p.name for p in partitions] == ['P1', 'P2']
    p2 = partitions[1]
    assert [h.id for h in p2.households] == ['H1', 'H2']
    assert p2.voter_ids == ['V1', 'V2', 'V3']
    # mean of member voters, not of doors
    assert p2.center[0] == pytest.approx((35.60 * 2 + 35.62) / 3)
    assert p2.center[1] == pytest.approx((-82.55 * 2 + -82.57) / 3)


def test_group_by_precinct_keeps_household_in_first_precinct():
    points = [
        VoterPoint('V1', 'H1', 35.60, -82.55, precinct='P1'),
        VoterPoint('V2', 'H1', 35.60, -82.55, precinct='P2'),
    ]
    partitions = group_by_precinct(points)
    assert len(partitions) == 1
    assert partitions[0].name == 'P1'
    assert partitions[0].voter_ids == ['V1', 'V2']


def test_group_by_precinct_names_missing_precinct():
    partitions = group_by_precinct([VoterPoint('V1', 'H1', 35.6, -82.5)])
    assert partitions[0].name == 'Unassigned'


def test_group_by_precinct_empty():
    assert group_by_precinct([]) == []


# ---------------------------------------------------------------------------
# Polygon selection
# ---------------------------------------------------------------------------

POLYGON = {
    'type': 'Polygon',
    'coordinates': [[[-82.555, 35.595], [-82.545, 35.595], [-82.545, 35.615],
                     [-82.555, 35.615], [-82.555, 35.595]]],
}


def test_select_in_polygon():
    points = [
        VoterPoint('V1', 'H1', 35.60, -82.55),
        VoterPoint('V2', 'H1', 35.60, -82.55),
        VoterPoint('V3', None, 35.61, -82.55),
        VoterPoint('V4', 'H4', 35.60, -82.56),
        VoterPoint('V5', 'H5', None, None),
    ]
    selection = select_in_polygon(POLYGON, points)

    assert selection.voter_ids == ['V1', 'V2', 'V3']
    assert [h.id for h in selection.households] == ['H1', 'V3']
    assert selection.center == pytest.approx((35.605, -82.55))
    assert not selection.is_empty


def test_select_in_polygon_is_idempotent():
    points = [VoterPoint(f'V{i}', f'H{i}', 35.595 + i * 0.002, -82.55) for i in range(12)]
    first = select_in_polygon(POLYGON, points)
    second = select_in_polygon(POLYGON, points)
    assert first.voter_ids == second.voter_ids
    assert first.center == second.center


def test_select_in_polygon_empty():
    selection = select_in_polygon(POLYGON, [VoterPoint('V1', 'H1', 36.0, -80.0)])
    assert selection.is_empty
    assert selection.households == []


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def test_route_empty_and_single():
    empty = nearest_neighbor_route([])
    assert (empty.stops, empty.distance, empty.estimated_duration) == ([], 0, 0)

    single = nearest_neighbor_route([make_household('H1', 35.6, -82.5)])
    assert single.distance == 0
    assert [s['household_id'] for s in single.stops] == ['H1']
    assert single.stops[0]['order'] == 1


def test_route_two_stops_distance():
    a = make_household('A', 35.60, -82.55)
    b = make_household('B', 35.61, -82.56)
    route = nearest_neighbor_route([a, b])
    assert route.distance == pytest.approx(haversine_distance(a.lat, a.lng, b.lat, b.lng), abs=0.5)
    assert [s['household_id'] for s in route.stops] == ['A', 'B']


def test_route_collinear_stops_in_distance_order():
    start = (35.60, -82.55)
    far = make_household('FAR', *north_of(*start, 300))
    near = make_household('NEAR', *north_of(*start, 100))
    route = nearest_neighbor_route([make_household('START', *start), far, near])

    assert [s['household_id'] for s in route.stops] == ['START', 'NEAR', 'FAR']
    assert [s['order'] for s in route.stops] == [1, 2, 3]
    assert route.distance == 300
    # 3 doors x 3 min + 300 m / 80 m per min
    assert route.estimated_duration == 13


def test_route_visits_every_household_once():
    rng = random.Random(5)
    households = [make_household(f'H{i}', 35.5 + rng.random() / 20, -82.6 + rng.random() / 20)
                  for i in range(40)]
    route = nearest_neighbor_route(households)

    ids = [s['household_id'] for s in route.stops]
    assert ids[0] == 'H0'
    assert sorted(ids) == sorted(h.id for h in households)
    assert len(set(ids)) == len(ids)
    # input untouched
    assert [h.id for h in households] == [f'H{i}' for i in range(40)]
