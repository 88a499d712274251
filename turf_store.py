"""Turf persistence: loading voter points, saving turfs, assignment and routes."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from models import db, Voter, VoterList, ListVoter, Turf
from turfs import (VoterPoint, aggregate_households, nearest_neighbor_route,
                   MINUTES_PER_DOOR)

logger = logging.getLogger(__name__)

# Keeps IN (...) clauses under SQLite's bound-parameter limit.
UPDATE_CHUNK = 500


def _point_query():
    return (db.session.query(
        ListVoter.ncid, ListVoter.household_id, ListVoter.sort_order,
        Voter.latitude, Voter.longitude, Voter.precinct_name,
        Voter.street_address, Voter.city, Voter.zip_code,
    ).join(Voter, ListVoter.ncid == Voter.ncid)
     .filter(Voter.latitude.isnot(None), Voter.longitude.isnot(None))
     .order_by(ListVoter.sort_order.is_(None), ListVoter.sort_order, ListVoter.ncid))


def _to_points(rows):
    return [VoterPoint(
        voter_id=r.ncid,
        household_id=r.household_id,
        lat=r.latitude,
        lng=r.longitude,
        sort_order=r.sort_order,
        precinct=r.precinct_name,
        street_address=r.street_address,
        city=r.city,
        zip_code=r.zip_code,
    ) for r in rows]


def load_voter_points(list_id):
    """Geocoded members of a list, in canonical (sort_order) order."""
    return _to_points(_point_query().filter(ListVoter.list_id == list_id).all())


def load_turf_households(turf):
    """Distinct doors of a turf, ordered by their first member's sort_order."""
    rows = _point_query().filter(
        ListVoter.list_id == turf.list_id,
        ListVoter.turf_id == turf.id,
    ).all()
    return aggregate_households(_to_points(rows), require_household=False)


def lock_list(list_id):
    """Fetch a list row FOR UPDATE so turf cutting on one list runs serially."""
    return VoterList.query.filter_by(id=list_id).with_for_update().first()


def _chunks(items, size=UPDATE_CHUNK):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _bump_previous_turfs(list_id, voter_ids):
    """Mark turfs losing members so their cached routes are recomputed."""
    previous = set()
    for chunk in _chunks(voter_ids):
        previous.update(
            turf_id for (turf_id,) in db.session.query(ListVoter.turf_id).filter(
                ListVoter.list_id == list_id,
                ListVoter.ncid.in_(chunk),
                ListVoter.turf_id.isnot(None),
            ).distinct()
        )
    if previous:
        Turf.query.filter(Turf.id.in_(previous)).update(
            {Turf.membership_version: Turf.membership_version + 1},
            synchronize_session=False,
        )
    return previous


def _emptied_turfs(turf_ids):
    """Ids among turf_ids that no longer have any assigned voter."""
    if not turf_ids:
        return []
    occupied = {turf_id for (turf_id,) in db.session.query(ListVoter.turf_id).filter(
        ListVoter.turf_id.in_(turf_ids)).distinct()}
    return sorted(set(turf_ids) - occupied)


def _assign_voters(turf, voter_ids):
    for chunk in _chunks(voter_ids):
        ListVoter.query.filter(
            ListVoter.list_id == turf.list_id,
            ListVoter.ncid.in_(chunk),
        ).update({ListVoter.turf_id: turf.id}, synchronize_session=False)


def create_turfs(voter_list, partitions, settings, name=None, description=None):
    """Persist one turf per non-empty partition and assign its voters.

    All turfs of one call are written in a single transaction. Returns
    (created_turfs, failed_count); on a database error nothing is kept.
    `name` overrides the generated "<list> - <label>" turf name.
    """
    partitions = [p for p in partitions if p.households]
    created = []
    try:
        all_ids = [vid for p in partitions for vid in p.voter_ids]
        stale = _bump_previous_turfs(voter_list.id, all_ids)
        if stale:
            logger.info('Reassigning voters away from turf(s) %s', sorted(stale))

        for i, partition in enumerate(partitions, start=1):
            voter_ids = partition.voter_ids
            label = partition.name or f'Turf {i}'
            turf = Turf(
                list_id=voter_list.id,
                name=name or f'{voter_list.name} - {label}',
                description=description or f'Auto-generated turf with {partition.door_count} doors',
                boundary=partition.boundary,
                center_lat=partition.center[0],
                center_lng=partition.center[1],
                voter_count=len(voter_ids),
                door_count=partition.door_count,
                estimated_time_minutes=partition.door_count * MINUTES_PER_DOOR,
                settings=dict(settings),
            )
            db.session.add(turf)
            db.session.flush()
            _assign_voters(turf, voter_ids)
            created.append(turf)

        # voter_count and door_count stay as recorded at creation
        emptied = _emptied_turfs(stale)
        if emptied:
            logger.warning('Turf(s) %s lost every voter to list %s; their counts are now stale',
                           emptied, voter_list.id)

        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Turf creation failed for list %s; rolled back %d turf(s)',
                         voter_list.id, len(partitions))
        return [], len(partitions)

    logger.info('Created %d turf(s) for list %s', len(created), voter_list.id)
    return created, 0


def get_route(turf, max_doors=None):
    """Cached route for a turf, computing and storing it when missing or stale.

    Returns None when the turf has more doors than max_doors.
    """
    cached = turf.route_data
    if cached and cached.get('membership_version') == turf.membership_version:
        return cached

    households = load_turf_households(turf)
    if not households:
        return {'route': [], 'distance': 0, 'estimated_duration': 0}
    if max_doors and len(households) > max_doors:
        logger.warning('Turf %s has %d doors, over the routing cap of %d',
                       turf.id, len(households), max_doors)
        return None

    route_data = nearest_neighbor_route(households).to_dict()
    route_data['membership_version'] = turf.membership_version
    turf.route_data = route_data
    db.session.commit()
    return route_data


def clear_route_cache(list_id=None):
    query = Turf.query.filter(Turf.route_data.isnot(None))
    if list_id is not None:
        query = query.filter(Turf.list_id == list_id)
    turfs = query.all()
    for turf in turfs:
        turf.route_data = None
    db.session.commit()
    return len(turfs)


def delete_turf(turf):
    """Clear every member's turf assignment, then remove the turf row."""
    ListVoter.query.filter(ListVoter.turf_id == turf.id).update(
        {ListVoter.turf_id: None}, synchronize_session=False)
    db.session.delete(turf)
    db.session.commit()
