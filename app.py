import json
import os
from io import BytesIO
from typing import Callable, List, Optional

from flask import Flask, jsonify, request, send_file, session, url_for

from services.backend_client import BackendClient, BackendError, BackendNotConfigured, BackendUnauthorized
from services.booking_ledger import (
    BookingLedger,
    BookingNotFound,
    InvalidStatus,
    MutationInFlight,
    MutationRejected,
)
from services.booking_normaliser import normalise_bookings
from services.booking_stats import compute_stats
from services.dashboard import Notice, load_dashboard
from services.manifest import export_csv, filter_bookings, manifest_filename, sort_records_by_recency

app = Flask(__name__)
app.secret_key = os.environ.get('FLASK_SECRET_KEY', 'tourdesk-dev-secret')
app.extensions['booking_ledger'] = BookingLedger()

USERS_PER_PAGE = 8
TRIP_REQUIRED = ('title', 'price')
BLOG_REQUIRED = ('title', 'image')
BLOG_DEFAULTS = {'author': 'Command HQ', 'category': 'Expedition', 'readTime': '5 min'}


def get_backend() -> BackendClient:
    return BackendClient.from_env(token=session.get('token'))


def get_ledger() -> BookingLedger:
    return app.extensions['booking_ledger']


def _request_data() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict(flat=True)


def _respond(payload: dict, notices: List[Notice], status: int = 200):
    body = dict(payload)
    body['notices'] = [notice.as_dict() for notice in notices]
    return jsonify(body), status


def refresh_bookings(client: BackendClient) -> List[Notice]:
    """Reload the ledger from the backend; keep the stale snapshot on failure."""
    try:
        records = client.fetch_bookings()
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        app.logger.warning('Booking fetch failed: %s', exc)
        return [Notice('error', 'Failed to load manifest.')]
    get_ledger().replace(normalise_bookings(sort_records_by_recency(records)))
    return []


def _bookings_payload(snapshot) -> dict:
    search = request.args.get('q', '')
    status = request.args.get('status', 'all')
    filtered = filter_bookings(snapshot, search=search, status=status)
    return {
        'bookings': [booking.as_view() for booking in filtered],
        'stats': compute_stats(snapshot).as_dict(),
    }


def _run_mutation(booking_id: str, mutate: Callable[[], tuple], *, success: str, failure: str):
    ledger = get_ledger()
    notices: List[Notice] = []
    try:
        ledger.find(booking_id)
    except BookingNotFound:
        notices.extend(refresh_bookings(get_backend()))

    try:
        snapshot = mutate()
    except InvalidStatus as exc:
        return _respond({'error': str(exc)}, notices + [Notice('error', str(exc))], 400)
    except BookingNotFound:
        return _respond({'error': 'Booking not found.'}, notices + [Notice('error', 'Booking not found.')], 404)
    except MutationInFlight as exc:
        return _respond({'error': str(exc)}, notices + [Notice('warning', str(exc))], 409)
    except MutationRejected as exc:
        if isinstance(exc.__cause__, BackendUnauthorized):
            raise exc.__cause__
        notices.append(Notice('error', failure))
        return _respond(_bookings_payload(exc.snapshot), notices, 502)

    notices.append(Notice('success', success))
    return _respond(_bookings_payload(snapshot), notices)


@app.route('/login', methods=['POST'])
def login():
    data = _request_data()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    if not email or not password:
        return _respond({'error': 'Email and password are required.'}, [Notice('error', 'Email and password are required.')], 400)

    try:
        payload = get_backend().login(email, password)
    except BackendUnauthorized:
        return _respond({'error': 'Login failed.'}, [Notice('error', 'Login failed.')], 401)
    except BackendError as exc:
        app.logger.warning('Login call failed: %s', exc)
        return _respond({'error': 'Login failed.'}, [Notice('error', 'Backend unavailable.')], 502)

    session['token'] = payload['token']
    session['admin_email'] = payload.get('adminEmail') or email
    return _respond({'adminEmail': session['admin_email']}, [Notice('success', 'Logged in.')])


@app.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return _respond({}, [Notice('success', 'Logged out.')])


@app.route('/')
@app.route('/dashboard')
def dashboard():
    view = load_dashboard(get_backend())
    return jsonify(view.as_dict())


@app.route('/bookings')
def bookings():
    notices = refresh_bookings(get_backend())
    return _respond(_bookings_payload(get_ledger().bookings), notices)


@app.route('/bookings/export.csv')
def bookings_export():
    refresh_bookings(get_backend())
    search = request.args.get('q', '')
    status = request.args.get('status', 'all')
    content = export_csv(filter_bookings(get_ledger().bookings, search=search, status=status))
    return send_file(
        BytesIO(content.encode('utf-8')),
        mimetype='text/csv',
        as_attachment=True,
        download_name=manifest_filename(),
    )


@app.route('/bookings/<booking_id>/status', methods=['POST', 'PUT'])
def booking_status(booking_id: str):
    new_status = (_request_data().get('status') or '').strip().lower()
    client = get_backend()
    return _run_mutation(
        booking_id,
        lambda: get_ledger().set_status(
            booking_id, new_status, lambda: client.update_booking_status(booking_id, new_status)
        ),
        success=f'Booking marked as {new_status}',
        failure='Update failed.',
    )


@app.route('/bookings/<booking_id>', methods=['DELETE'])
def booking_delete(booking_id: str):
    client = get_backend()
    return _run_mutation(
        booking_id,
        lambda: get_ledger().delete(booking_id, lambda: client.delete_booking(booking_id)),
        success='Record permanently erased.',
        failure='Deletion failed.',
    )


def _load_list(key: str, loader: Callable[[], list], failure: str):
    try:
        items = loader()
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        app.logger.warning('%s fetch failed: %s', key, exc)
        return _respond({key: []}, [Notice('error', failure)])
    return _respond({key: items}, [])


def _send_change(send: Callable[[], None], *, key: str, success: str, failure: str, status: int = 200):
    try:
        send()
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        app.logger.warning('Backend change failed: %s', exc)
        return _respond({key: False}, [Notice('error', failure)], 502)
    return _respond({key: True}, [Notice('success', success)], status)


def _delete_item(remove: Callable[[], None], *, success: str, failure: str):
    return _send_change(remove, key='deleted', success=success, failure=failure)


def _missing_fields(data: dict, required) -> List[str]:
    return [name for name in required if not str(data.get(name) or '').strip()]


def _upload_files() -> list:
    return [
        (name, (upload.filename, upload.stream, upload.mimetype))
        for name, upload in request.files.items(multi=True)
        if upload and upload.filename
    ]


def _trip_fields() -> dict:
    data = _request_data()
    fields = {}
    for key, value in data.items():
        # list fields travel as JSON strings inside the multipart form
        fields[key] = json.dumps(value) if isinstance(value, (list, dict)) else value
    return fields


@app.route('/trips')
def trips():
    search = request.args.get('q', '').strip().lower()

    def load():
        items = get_backend().fetch_trips()
        if not search:
            return items
        return [
            trip for trip in items
            if isinstance(trip, dict) and search in str(trip.get('title') or '').lower()
        ]

    return _load_list('trips', load, 'Failed to load trips.')


@app.route('/trips', methods=['POST'])
def trip_create():
    fields = _trip_fields()
    missing = _missing_fields(fields, TRIP_REQUIRED)
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
        return _respond({'saved': False, 'missing': missing}, [Notice('error', message)], 400)
    return _send_change(
        lambda: get_backend().create_trip(fields, _upload_files()),
        key='saved', success='Trip created!', failure='Operation failed.', status=201,
    )


@app.route('/trips/<trip_id>', methods=['PUT'])
def trip_update(trip_id: str):
    fields = _trip_fields()
    return _send_change(
        lambda: get_backend().update_trip(trip_id, fields, _upload_files()),
        key='saved', success='Updated successfully!', failure='Operation failed.',
    )


@app.route('/trips/<trip_id>', methods=['DELETE'])
def trip_delete(trip_id: str):
    return _delete_item(lambda: get_backend().delete_trip(trip_id), success='Deleted successfully.', failure='Could not delete.')


@app.route('/users')
def users():
    try:
        limit = int(request.args.get('limit', USERS_PER_PAGE))
    except ValueError:
        limit = USERS_PER_PAGE
    limit = max(1, limit)
    page_token = request.args.get('page_token', '')
    try:
        page = get_backend().fetch_users(limit=limit, page_token=page_token)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        app.logger.warning('User fetch failed: %s', exc)
        return _respond({'users': [], 'nextPageToken': None}, [Notice('error', 'Failed to load users.')])
    return _respond({'users': page.users, 'nextPageToken': page.next_page_token}, [])


@app.route('/users/<uid>', methods=['DELETE'])
def user_delete(uid: str):
    email: Optional[str] = _request_data().get('email') or request.args.get('email')
    if email and email == session.get('admin_email'):
        return _respond({'deleted': False}, [Notice('error', 'You cannot revoke your own access.')], 400)
    return _delete_item(lambda: get_backend().delete_user(uid), success='User access revoked.', failure='Revocation failed.')


@app.route('/blogs')
def blogs():
    return _load_list('blogs', lambda: get_backend().fetch_blogs(), 'Failed to load blog posts.')


@app.route('/blogs', methods=['POST'])
def blog_create():
    post = {**BLOG_DEFAULTS, **_request_data()}
    missing = _missing_fields(post, BLOG_REQUIRED)
    if missing:
        return _respond({'saved': False, 'missing': missing}, [Notice('error', 'Title and Image are mandatory.')], 400)
    return _send_change(
        lambda: get_backend().create_blog(post),
        key='saved', success='New post published!', failure='Publishing failed.', status=201,
    )


@app.route('/blogs/<blog_id>', methods=['DELETE'])
def blog_delete(blog_id: str):
    return _delete_item(lambda: get_backend().delete_blog(blog_id), success='Post deleted.', failure='Delete failed.')


@app.errorhandler(BackendUnauthorized)
def handle_unauthorized(error):
    session.pop('token', None)
    return _respond({'error': str(error), 'login_url': url_for('login')}, [Notice('error', 'Please log in again.')], 401)


@app.errorhandler(BackendNotConfigured)
def handle_not_configured(error):
    return _respond({'error': str(error)}, [Notice('error', str(error))], 500)


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=8008, debug=True)
