#!/usr/bin/env python3
"""Turf cutter: Flask application for canvassing turfs."""

import logging
import os
import random

import click
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from dotenv import load_dotenv
from sqlalchemy import text

from geo import validate_polygon
from models import db, Voter, ListVoter, Turf
from turfs import (aggregate_households, cluster_households, doors_to_turf_count,
                   group_by_precinct, select_in_polygon)
from turf_store import (load_voter_points, lock_list, create_turfs, get_route,
                        delete_turf, clear_route_cache)

load_dotenv()

logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'),
                    format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = Flask(__name__)
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-change-me')
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///turfs.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['RATELIMIT_ENABLED'] = os.getenv('RATELIMIT_ENABLED', 'true').lower() in ('1', 'true', 'yes')
app.config['TURF_DOORS_PER_TURF'] = int(os.getenv('TURF_DOORS_PER_TURF', '50'))
app.config['TURF_MAX_ROUTE_DOORS'] = int(os.getenv('TURF_MAX_ROUTE_DOORS', '5000'))

db.init_app(app)
csrf = CSRFProtect(app)
limiter = Limiter(get_remote_address, app=app, default_limits=['2000 per day', '500 per hour'])

AUTO_CUT_METHODS = ('cluster', 'grid', 'precinct')


# ---------------------------------------------------------------------------
# Security headers
# ---------------------------------------------------------------------------
@app.after_request
def security_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    return response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def empty_result(message):
    return jsonify({'error': message, 'empty': True}), 422


def _positive_int(value, default):
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number >= 1 else None


def _request_payload():
    """JSON body as a dict, or None when the body is not a JSON object."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _list_id(payload):
    list_id = payload.get('list_id')
    if isinstance(list_id, bool) or not isinstance(list_id, int) or list_id < 1:
        return None
    return list_id


def run_auto_cut(voter_list, doors_per_turf, method, seed=None):
    """Partition a list into turfs. Returns (payload, status)."""
    points = load_voter_points(voter_list.id)
    if not points:
        return {'error': 'No geocoded voters in this list. Please geocode addresses first.',
                'empty': True}, 422

    if method == 'precinct':
        partitions = group_by_precinct(points)
    else:
        households = aggregate_households(points)
        rng = random.Random(seed) if seed is not None else None
        k = doors_to_turf_count(len(households), doors_per_turf)
        partitions = cluster_households(households, k, rng=rng)

    if not partitions:
        return {'error': 'No households with coordinates in this list. Nothing to cut.',
                'empty': True}, 422

    created, failed = create_turfs(
        voter_list, partitions,
        settings={'method': method, 'doors_per_turf': doors_per_turf},
    )
    if failed:
        return {'error': 'Could not save turfs; no changes were made.',
                'turfs_created': 0, 'turfs_failed': failed}, 500

    return {
        'success': True,
        'turfs_created': len(created),
        'turfs_failed': 0,
        'turfs': [t.to_dict() for t in created],
    }, 200


# =========================================================================
# API ROUTES
# =========================================================================

@app.route('/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        app.logger.error('Health check failed: %s', e)
        return jsonify({'status': 'unhealthy', 'error': str(e)}), 503
    return jsonify({'status': 'healthy'})


@csrf.exempt
@app.route('/api/turfs')
def api_turfs():
    query = Turf.query.order_by(Turf.created_at.desc(), Turf.id.desc())
    list_id = request.args.get('list_id', type=int)
    if list_id:
        query = query.filter_by(list_id=list_id)
    return jsonify([t.to_dict() for t in query.all()])


@csrf.exempt
@app.route('/api/turfs/auto-cut', methods=['POST'])
@limiter.limit('60 per hour', methods=['POST'])
def api_auto_cut():
    """Divide a list into turfs by geography or precinct."""
    payload = _request_payload()
    if payload is None:
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    list_id = _list_id(payload)
    if list_id is None:
        return jsonify({'error': 'list_id is required and must be a positive integer'}), 400

    doors_per_turf = _positive_int(payload.get('doors_per_turf'),
                                   app.config['TURF_DOORS_PER_TURF'])
    if doors_per_turf is None:
        return jsonify({'error': 'doors_per_turf must be a positive integer'}), 400

    method = payload.get('method', 'cluster')
    if method not in AUTO_CUT_METHODS:
        return jsonify({'error': f"method must be one of {', '.join(AUTO_CUT_METHODS)}"}), 400

    seed = payload.get('seed')
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        return jsonify({'error': 'seed must be an integer'}), 400

    voter_list = lock_list(list_id)
    if not voter_list:
        return jsonify({'error': 'List not found'}), 404

    body, status = run_auto_cut(voter_list, doors_per_turf, method, seed=seed)
    if status != 200:
        app.logger.warning('Auto-cut of list %s returned %s: %s', list_id, status, body['error'])
    return jsonify(body), status


@csrf.exempt
@app.route('/api/turfs/manual', methods=['POST'])
@limiter.limit('60 per hour', methods=['POST'])
def api_manual_turf():
    """Create one turf from a hand-drawn GeoJSON polygon."""
    payload = _request_payload()
    if payload is None:
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    list_id = _list_id(payload)
    polygon = payload.get('polygon')
    if list_id is None or not polygon:
        return jsonify({'error': 'list_id and polygon are required'}), 400

    error = validate_polygon(polygon)
    if error:
        return jsonify({'error': error}), 400

    voter_list = lock_list(list_id)
    if not voter_list:
        return jsonify({'error': 'List not found'}), 404

    selection = select_in_polygon(polygon, load_voter_points(list_id))
    if selection.is_empty:
        return empty_result('No voters found within the specified polygon')

    partition = selection.as_partition(polygon)
    created, failed = create_turfs(
        voter_list, [partition],
        settings={'method': 'manual'},
        name=payload.get('name') or f'{voter_list.name} - Manual Turf',
        description=payload.get('description') or f'Manually drawn turf with {partition.door_count} doors',
    )
    if failed:
        return jsonify({'error': 'Could not save turf; no changes were made.',
                        'turfs_created': 0, 'turfs_failed': failed}), 500
    return jsonify(created[0].to_dict())


@csrf.exempt
@app.route('/api/turfs/<int:turf_id>')
def api_turf(turf_id):
    turf = db.get_or_404(Turf, turf_id, description='Turf not found')
    return jsonify(turf.to_dict())


@csrf.exempt
@app.route('/api/turfs/<int:turf_id>/voters')
def api_turf_voters(turf_id):
    turf = db.get_or_404(Turf, turf_id, description='Turf not found')
    limit = min(request.args.get('limit', 100, type=int), 1000)
    offset = request.args.get('offset', 0, type=int)

    rows = (db.session.query(ListVoter, Voter)
            .join(Voter, ListVoter.ncid == Voter.ncid)
            .filter(ListVoter.list_id == turf.list_id, ListVoter.turf_id == turf.id)
            .order_by(ListVoter.sort_order.is_(None), ListVoter.sort_order, ListVoter.ncid)
            .limit(limit).offset(offset).all())

    voters = [{
        'ncid': v.ncid,
        'sort_order': lv.sort_order,
        'household_id': lv.household_id,
        'contact_status': lv.contact_status,
        'first_name': v.first_name,
        'last_name': v.last_name,
        'street_address': v.street_address,
        'city': v.city,
        'party': v.party,
        'lat': v.latitude,
        'lng': v.longitude,
    } for lv, v in rows]
    return jsonify({'voters': voters})


@csrf.exempt
@app.route('/api/turfs/<int:turf_id>/route')
def api_turf_route(turf_id):
    """Walking order for a turf, computed once and cached on the turf."""
    turf = db.get_or_404(Turf, turf_id, description='Turf not found')
    route = get_route(turf, max_doors=app.config['TURF_MAX_ROUTE_DOORS'])
    if route is None:
        return empty_result(
            f"Turf has more than {app.config['TURF_MAX_ROUTE_DOORS']} doors; "
            'split it before requesting a route.')
    return jsonify(route)


@csrf.exempt
@app.route('/api/turfs/<int:turf_id>', methods=['DELETE'])
def api_delete_turf(turf_id):
    turf = db.get_or_404(Turf, turf_id, description='Turf not found')
    delete_turf(turf)
    app.logger.info('Deleted turf %s', turf_id)
    return jsonify({'success': True})


# =========================================================================
# ERROR HANDLERS
# =========================================================================

@app.errorhandler(404)
def not_found(e):
    return jsonify({'error': e.description or 'Not found'}), 404


@app.errorhandler(500)
def server_error(e):
    app.logger.error('Unhandled error: %s', e)
    return jsonify({'error': 'Internal server error'}), 500


# =========================================================================
# CLI COMMANDS
# =========================================================================

@app.cli.command('auto-cut')
@click.argument('list_id', type=int)
@click.option('--doors-per-turf', type=click.IntRange(min=1), default=None,
              help='Target doors per turf.')
@click.option('--method', type=click.Choice(AUTO_CUT_METHODS), default='cluster')
@click.option('--seed', type=int, default=None, help='Seed for reproducible clustering.')
def auto_cut_command(list_id, doors_per_turf, method, seed):
    """Cut turfs for a list from the command line."""
    voter_list = lock_list(list_id)
    if not voter_list:
        raise click.ClickException(f'List {list_id} not found')
    if doors_per_turf is None:
        doors_per_turf = app.config['TURF_DOORS_PER_TURF']
    body, status = run_auto_cut(voter_list, doors_per_turf, method, seed=seed)
    if status != 200:
        raise click.ClickException(body['error'])
    for turf in body['turfs']:
        print(f"  {turf['name']}: {turf['door_count']} doors, {turf['voter_count']} voters")
    print(f"Done. Created {body['turfs_created']} turf(s).")


@app.cli.command('clear-route-cache')
@click.option('--list-id', type=int, default=None)
def clear_route_cache_command(list_id):
    """Drop cached walk routes so they are recomputed on next request."""
    cleared = clear_route_cache(list_id)
    print(f'Cleared {cleared} cached route(s).')


# ---------------------------------------------------------------------------
# DB Init
# ---------------------------------------------------------------------------
def init_db():
    db.create_all()


with app.app_context():
    init_db()

if __name__ == '__main__':
    app.run(host='127.0.0.1', port=5011, debug=True)
