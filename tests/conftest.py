# tests/conftest.py
import os

# Must be set before app is imported; app configures itself at import time.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.setdefault('LOG_LEVEL', 'WARNING')

import pytest

from app import app as flask_app
from models import db, Voter, VoterList, ListVoter, Turf

# Four doors on a ~1 km square in Asheville.
SQUARE = [
    (35.60, -82.55),
    (35.61, -82.55),
    (35.60, -82.56),
    (35.61, -82.56),
]


@pytest.fixture
def app():
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_list(app):
    """Create a list with voters. Each voter is a dict of ncid, household_id,
    lat, lng and optional precinct."""
    def _make(name, voters):
        with app.app_context():
            voter_list = VoterList(name=name, voter_count=len(voters))
            db.session.add(voter_list)
            db.session.flush()
            for i, v in enumerate(voters):
                db.session.add(Voter(
                    ncid=v['ncid'],
                    first_name=v.get('first_name', 'Pat'),
                    last_name=v.get('last_name', v['ncid']),
                    street_address=v.get('street_address'),
                    city='Asheville',
                    precinct_name=v.get('precinct'),
                    latitude=v.get('lat'),
                    longitude=v.get('lng'),
                ))
                db.session.add(ListVoter(
                    list_id=voter_list.id,
                    ncid=v['ncid'],
                    sort_order=i,
                    household_id=v.get('household_id'),
                ))
            db.session.commit()
            return voter_list.id
    return _make


@pytest.fixture
def square_list(make_list):
    """Four households on the square, two voters in each of the first two."""
    voters = []
    for i, (lat, lng) in enumerate(SQUARE):
        voters.append({'ncid': f'AA{i}0', 'household_id': f'H{i}', 'lat': lat, 'lng': lng,
                       'precinct': 'P1' if lng == -82.55 else 'P2'})
        if i < 2:
            voters.append({'ncid': f'AA{i}1', 'household_id': f'H{i}', 'lat': lat, 'lng': lng,
                           'precinct': 'P1' if lng == -82.55 else 'P2'})
    return make_list('Square', voters)


@pytest.fixture
def turf_members(app):
    def _members(turf_id):
        with app.app_context():
            return sorted(lv.ncid for lv in ListVoter.query.filter_by(turf_id=turf_id))
    return _members


@pytest.fixture
def get_turf(app):
    def _get(turf_id):
        with app.app_context():
            turf = db.session.get(Turf, turf_id)
            if turf is None:
                return None
            return {'membership_version': turf.membership_version,
                    'route_data': turf.route_data}
    return _get

