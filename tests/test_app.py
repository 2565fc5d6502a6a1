import csv
import io

import pytest

import app as console
from services.backend_client import BackendError, BackendUnauthorized, UserPage
from services.booking_ledger import BookingLedger


class FakeBackend:
    def __init__(self, records):
        self.records = records
        self.fail_reads = False
        self.fail_mutations = False
        self.unauthorised = False
        self.calls = []

    def _check(self, mutation=False):
        if self.unauthorised:
            raise BackendUnauthorized('expired', status_code=401)
        if mutation and self.fail_mutations:
            raise BackendError('HTTP 500', status_code=500)
        if not mutation and self.fail_reads:
            raise BackendError('HTTP 503', status_code=503)

    def login(self, email, password):
        if password != 'secret':
            raise BackendUnauthorized('bad credentials', status_code=401)
        return {'token': 'jwt-token', 'adminEmail': email}

    def fetch_bookings(self):
        self._check()
        return [dict(record) for record in self.records]

    def count_users(self):
        self._check()
        return 42

    def update_booking_status(self, booking_id, status):
        self.calls.append(('status', booking_id, status))
        self._check(mutation=True)

    def delete_booking(self, booking_id):
        self.calls.append(('delete', booking_id))
        self._check(mutation=True)

    def fetch_trips(self):
        self._check()
        return [{'id': 't1', 'title': 'Darjeeling Escape'}, {'id': 't2', 'title': 'Goa Beaches'}]

    def create_trip(self, fields, files=None):
        self.calls.append(('create_trip', dict(fields), [name for name, _ in files or []]))
        self._check(mutation=True)

    def update_trip(self, trip_id, fields, files=None):
        self.calls.append(('update_trip', trip_id, dict(fields)))
        self._check(mutation=True)

    def create_blog(self, post):
        self.calls.append(('create_blog', dict(post)))
        self._check(mutation=True)

    def delete_trip(self, trip_id):
        self.calls.append(('delete_trip', trip_id))
        self._check(mutation=True)

    def fetch_users(self, limit=10, page_token=''):
        self.calls.append(('fetch_users', limit, page_token))
        self._check()
        return UserPage(users=[{'uid': 'u1', 'email': 'guest@example.com'}], next_page_token='next')

    def delete_user(self, uid):
        self.calls.append(('delete_user', uid))
        self._check(mutation=True)

    def fetch_blogs(self):
        self._check()
        return [{'id': 'p1', 'title': 'Monsoon in Sikkim'}]

    def delete_blog(self, blog_id):
        self.calls.append(('delete_blog', blog_id))
        self._check(mutation=True)


@pytest.fixture
def backend(raw_bookings, monkeypatch):
    fake = FakeBackend(raw_bookings)
    monkeypatch.setattr(console, 'get_backend', lambda: fake)
    console.app.extensions['booking_ledger'] = BookingLedger()
    return fake


@pytest.fixture
def client(backend):
    console.app.config['TESTING'] = True
    with console.app.test_client() as test_client:
        yield test_client


def test_bookings_are_normalised_sorted_and_counted(client):
    response = client.get('/bookings')
    body = response.get_json()

    assert response.status_code == 200
    assert [b['id'] for b in body['bookings']] == ['a3', 'a2', 'a1']
    assert body['bookings'][1]['customerName'] == 'Unknown User'
    assert body['stats']['revenue'] == 1000
    assert body['notices'] == []


def test_bookings_search_filters_rows_not_stats(client):
    body = client.get('/bookings?q=sikkim&status=pending').get_json()

    assert [b['id'] for b in body['bookings']] == ['a2']
    assert body['stats']['total'] == 3


def test_failed_read_keeps_stale_snapshot(client, backend):
    client.get('/bookings')
    backend.fail_reads = True

    body = client.get('/bookings').get_json()

    assert len(body['bookings']) == 3
    assert body['notices'][0]['level'] == 'error'


def test_status_change_is_applied(client, backend):
    client.get('/bookings')

    response = client.post('/bookings/a2/status', json={'status': 'confirmed'})
    body = response.get_json()

    assert response.status_code == 200
    assert backend.calls == [('status', 'a2', 'confirmed')]
    assert body['stats']['revenue'] == 3000
    assert body['notices'][-1] == {'level': 'success', 'message': 'Booking marked as confirmed'}


def test_rejected_status_change_rolls_back(client, backend):
    client.get('/bookings')
    before = console.get_ledger().bookings
    backend.fail_mutations = True

    response = client.post('/bookings/a2/status', json={'status': 'confirmed'})
    body = response.get_json()

    assert response.status_code == 502
    assert console.get_ledger().bookings is before
    assert body['stats']['revenue'] == 1000
    assert body['notices'][-1]['level'] == 'error'


def test_status_change_loads_ledger_when_empty(client, backend):
    response = client.post('/bookings/a1/status', json={'status': 'cancelled'})

    assert response.status_code == 200
    assert console.get_ledger().find('a1').status == 'cancelled'


def test_status_change_validation(client):
    client.get('/bookings')

    assert client.post('/bookings/a2/status', json={'status': 'refunded'}).status_code == 400
    assert client.post('/bookings/zz/status', json={'status': 'confirmed'}).status_code == 404


def test_delete_booking_and_rollback(client, backend):
    client.get('/bookings')

    assert client.delete('/bookings/a1').status_code == 200
    assert [b.id for b in console.get_ledger().bookings] == ['a3', 'a2']

    backend.fail_mutations = True
    response = client.delete('/bookings/a2')

    assert response.status_code == 502
    assert [b.id for b in console.get_ledger().bookings] == ['a3', 'a2']


def test_export_csv_download(client):
    response = client.get('/bookings/export.csv?status=confirmed')
    rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))

    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'tourdesk_manifest_' in response.headers['Content-Disposition']
    assert rows[0][0] == 'ID'
    assert [row[0] for row in rows[1:]] == ['a1']


def test_dashboard(client):
    body = client.get('/dashboard').get_json()

    assert body['totalUsers'] == 42
    assert body['stats']['total'] == 3


def test_unauthorised_backend_asks_for_login(client, backend):
    backend.unauthorised = True

    response = client.get('/bookings')

    assert response.status_code == 401
    assert response.get_json()['login_url'] == '/login'


def test_login_stores_token_in_session(client):
    response = client.post('/login', json={'email': 'admin@example.com', 'password': 'secret'})

    assert response.status_code == 200
    with client.session_transaction() as flask_session:
        assert flask_session['token'] == 'jwt-token'
        assert flask_session['admin_email'] == 'admin@example.com'

    assert client.post('/login', json={'email': 'admin@example.com', 'password': 'nope'}).status_code == 401
    assert client.post('/login', json={'email': ''}).status_code == 400


def test_trips_search_and_delete(client, backend):
    body = client.get('/trips?q=goa').get_json()

    assert [trip['id'] for trip in body['trips']] == ['t2']
    assert client.delete('/trips/t1').status_code == 200
    assert ('delete_trip', 't1') in backend.calls


def test_list_failure_returns_empty_with_notice(client, backend):
    backend.fail_reads = True

    body = client.get('/blogs').get_json()

    assert body['blogs'] == []
    assert body['notices'][0]['message'] == 'Failed to load blog posts.'


def test_users_page_and_self_revocation_guard(client, backend):
    client.post('/login', json={'email': 'admin@example.com', 'password': 'secret'})

    body = client.get('/users').get_json()
    assert body['nextPageToken'] == 'next'

    refused = client.delete('/users/u0', json={'email': 'admin@example.com'})
    assert refused.status_code == 400
    assert ('delete_user', 'u0') not in backend.calls

    assert client.delete('/users/u1', json={'email': 'guest@example.com'}).status_code == 200


def test_failed_delete_reports_error(client, backend):
    backend.fail_mutations = True

    response = client.delete('/blogs/p1')

    assert response.status_code == 502
    assert response.get_json()['deleted'] is False


def test_users_limit_is_clamped_to_one(client, backend):
    client.get('/users?limit=0')
    client.get('/users?limit=-5')
    client.get('/users?limit=abc')

    limits = [call[1] for call in backend.calls if call[0] == 'fetch_users']
    assert limits == [1, 1, console.USERS_PER_PAGE]


def test_create_trip_requires_title_and_price(client, backend):
    response = client.post('/trips', data={'title': 'Spiti Valley'})

    assert response.status_code == 400
    assert response.get_json()['missing'] == ['price']
    assert not [call for call in backend.calls if call[0] == 'create_trip']


def test_create_trip_sends_fields_and_images(client, backend):
    response = client.post(
        '/trips',
        data={'title': 'Spiti Valley', 'price': '18000', 'images': (io.BytesIO(b'jpeg'), 'spiti.jpg')},
        content_type='multipart/form-data',
    )

    assert response.status_code == 201
    assert response.get_json()['notices'] == [{'level': 'success', 'message': 'Trip created!'}]
    name, fields, files = backend.calls[-1]
    assert name == 'create_trip'
    assert fields == {'title': 'Spiti Valley', 'price': '18000'}
    assert files == ['images']


def test_create_trip_encodes_list_fields_from_json(client, backend):
    client.post('/trips', json={'title': 'Goa', 'price': 9000, 'highlights': ['beach', 'fort']})

    fields = backend.calls[-1][1]
    assert fields['highlights'] == '["beach", "fort"]'
    assert fields['price'] == 9000


def test_update_trip_and_failure(client, backend):
    response = client.put('/trips/t1', json={'price': '21000'})

    assert response.status_code == 200
    assert backend.calls[-1] == ('update_trip', 't1', {'price': '21000'})

    backend.fail_mutations = True
    failed = client.put('/trips/t1', json={'price': '22000'})

    assert failed.status_code == 502
    assert failed.get_json()['saved'] is False
    assert failed.get_json()['notices'][0]['message'] == 'Operation failed.'


def test_create_blog_applies_defaults(client, backend):
    response = client.post('/blogs', json={'title': 'Monsoon trails', 'image': 'https://img.test/m.jpg'})

    assert response.status_code == 201
    name, post = backend.calls[-1]
    assert name == 'create_blog'
    assert post['author'] == 'Command HQ'
    assert post['category'] == 'Expedition'
    assert post['title'] == 'Monsoon trails'


def test_create_blog_requires_title_and_image(client, backend):
    response = client.post('/blogs', json={'title': 'No picture', 'author': 'Asha'})

    assert response.status_code == 400
    assert response.get_json()['missing'] == ['image']
    assert backend.calls == []
