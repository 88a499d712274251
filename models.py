"""Database models for the turf cutter."""

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Voter(db.Model):
    __tablename__ = 'voters'

    ncid = db.Column(db.String(20), primary_key=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    street_address = db.Column(db.String(300))
    city = db.Column(db.String(100))
    zip_code = db.Column(db.String(10))
    party = db.Column(db.String(10))
    precinct_name = db.Column(db.String(100))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)


class VoterList(db.Model):
    __tablename__ = 'lists'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    voter_count = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    members = db.relationship('ListVoter', backref='voter_list', lazy='dynamic')
    turfs = db.relationship('Turf', backref='voter_list', lazy='dynamic')


class ListVoter(db.Model):
    """List membership. Turf assignment is per list, not per voter."""
    __tablename__ = 'list_voters'

    list_id = db.Column(db.Integer, db.ForeignKey('lists.id'), primary_key=True)
    ncid = db.Column(db.String(20), db.ForeignKey('voters.ncid'), primary_key=True)
    sort_order = db.Column(db.Integer)
    household_id = db.Column(db.String(50), index=True)
    turf_id = db.Column(db.Integer, db.ForeignKey('turfs.id'), index=True)
    contact_status = db.Column(db.String(50))

    voter = db.relationship('Voter')


class Turf(db.Model):
    __tablename__ = 'turfs'

    id = db.Column(db.Integer, primary_key=True)
    list_id = db.Column(db.Integer, db.ForeignKey('lists.id'), nullable=False)
    name = db.Column(db.String(255))
    description = db.Column(db.Text)
    boundary = db.Column(db.JSON(none_as_null=True))
    center_lat = db.Column(db.Float)
    center_lng = db.Column(db.Float)
    voter_count = db.Column(db.Integer, default=0)
    door_count = db.Column(db.Integer, default=0)
    estimated_time_minutes = db.Column(db.Integer)
    route_data = db.Column(db.JSON(none_as_null=True))
    settings = db.Column(db.JSON, default=dict)
    membership_version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def center(self):
        if self.center_lat is None or self.center_lng is None:
            return None
        return {'lat': self.center_lat, 'lng': self.center_lng}

    def to_dict(self):
        return {
            'id': self.id,
            'list_id': self.list_id,
            'list_name': self.voter_list.name if self.voter_list else None,
            'name': self.name,
            'description': self.description,
            'voter_count': self.voter_count,
            'door_count': self.door_count,
            'estimated_time_minutes': self.estimated_time_minutes,
            'settings': self.settings or {},
            'boundary': self.boundary,
            'center': self.center,
            'has_route': self.route_data is not None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
