import pytest

from tests.conftest import OWNER, build_app


def login(client, user_id):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id


@pytest.fixture
def owner_client(client):
    login(client, OWNER)
    return client


def create_book(client, **fields):
    payload = {'title': 'Dune', 'author': 'Frank Herbert', 'category': 'Sci-Fi', 'rating': 4.5, 'quantity': 1}
    payload.update(fields)
    resp = client.post('/books/new', json=payload)
    assert resp.status_code == 201
    return resp.get_json()


def test_requests_without_identity_are_rejected(client):
    resp = client.put('/book/1/borrow', json={'returnDate': '2030-01-15'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'unauthorized'
    assert client.get('/books/borrowed').status_code == 401


def test_health_and_security_headers(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.headers['X-Frame-Options'] == 'DENY'
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'


def test_borrow_list_and_return(owner_client):
    book = create_book(owner_client, quantity=1)
    assert book['owner_email'] == OWNER

    login(owner_client, 'alice@example.com')
    resp = owner_client.put(f"/book/{book['id']}/borrow", json={'returnDate': '01/15/2030', 'name': 'Alice'})
    assert resp.status_code == 201
    loan = resp.get_json()
    assert loan['borrower_id'] == 'alice@example.com'
    assert loan['return_date'] == '2030-01-15'

    resp = owner_client.get('/books/borrowed')
    borrowed = resp.get_json()
    assert len(borrowed) == 1
    assert borrowed[0]['title'] == 'Dune'
    assert borrowed[0]['borrower_name'] == 'Alice'
    assert borrowed[0]['quantity'] == 0

    login(owner_client, 'bob@example.com')
    resp = owner_client.put(f"/book/{book['id']}/borrow", json={'returnDate': '2030-01-20'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'out_of_stock'

    login(owner_client, 'alice@example.com')
    resp = owner_client.put(f"/book/{book['id']}/return")
    assert resp.status_code == 200
    assert resp.get_json() == {'success': True}
    assert owner_client.get(f"/book/{book['id']}").get_json()['quantity'] == 1

    resp = owner_client.put(f"/book/{book['id']}/return")
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_double_borrow_and_limit_errors(owner_client):
    ids = [create_book(owner_client, title=f'Book {i}', quantity=2)['id'] for i in range(4)]
    login(owner_client, 'alice@example.com')
    owner_client.put(f'/book/{ids[0]}/borrow', json={'returnDate': '2030-01-15'})

    resp = owner_client.put(f'/book/{ids[0]}/borrow', json={'returnDate': '2030-01-15'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'already_borrowed'

    for book_id in ids[1:3]:
        assert owner_client.put(f'/book/{book_id}/borrow', json={'returnDate': '2030-01-15'}).status_code == 201
    resp = owner_client.put(f'/book/{ids[3]}/borrow', json={'returnDate': '2030-01-15'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'borrow_limit_exceeded'


def test_borrow_requires_a_valid_return_date(owner_client):
    book = create_book(owner_client)
    resp = owner_client.put(f"/book/{book['id']}/borrow", json={'returnDate': 'next week'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'invalid_request'
    resp = owner_client.put(f"/book/{book['id']}/borrow", json={})
    assert resp.status_code == 400


def test_borrow_missing_book(owner_client):
    resp = owner_client.put('/book/999/borrow', json={'returnDate': '2030-01-15'})
    assert resp.status_code == 404


def test_edit_and_delete_are_owner_only(owner_client):
    book = create_book(owner_client)

    login(owner_client, 'mallory@example.com')
    assert owner_client.put(f"/book/{book['id']}/edit", json={'title': 'Mine'}).status_code == 403
    resp = owner_client.delete(f"/book/{book['id']}")
    assert resp.status_code == 403
    assert resp.get_json()['error'] == 'forbidden'

    login(owner_client, OWNER)
    resp = owner_client.put(f"/book/{book['id']}/edit", json={'title': 'Children of Dune', 'email': OWNER, 'id': book['id']})
    assert resp.status_code == 200
    assert resp.get_json()['title'] == 'Children of Dune'

    resp = owner_client.put(f"/book/{book['id']}/edit", json={'quantity': -3})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'invalid_field'

    resp = owner_client.delete(f"/book/{book['id']}")
    assert resp.status_code == 200
    assert resp.get_json()['deleted'] is True
    assert owner_client.get(f"/book/{book['id']}").status_code == 404


def test_delete_with_loans_is_refused(owner_client):
    book = create_book(owner_client, quantity=2)
    login(owner_client, 'alice@example.com')
    owner_client.put(f"/book/{book['id']}/borrow", json={'returnDate': '2030-01-15'})

    login(owner_client, OWNER)
    resp = owner_client.delete(f"/book/{book['id']}")
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'has_outstanding_loans'


def test_overlong_text_fields_are_rejected(owner_client):
    resp = owner_client.post('/books/new', json={'title': 'x' * 201, 'quantity': 1})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'invalid_field'

    book = create_book(owner_client)
    resp = owner_client.put(f"/book/{book['id']}/edit", json={'category': 'y' * 81})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'invalid_field'
    assert owner_client.get(f"/book/{book['id']}").get_json()['category'] == 'Sci-Fi'


def test_unknown_route_is_json(client):
    resp = client.get('/nope')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_storage_failure_maps_to_503():
    app = build_app('memory')
    client = app.test_client()
    login(client, OWNER)
    book = create_book(client, quantity=1)

    app.extensions['borrowing_engine'].unit_of_work.fail_next_commit()
    resp = client.put(f"/book/{book['id']}/borrow", json={'returnDate': '2030-01-15'})
    assert resp.status_code == 503
    assert resp.get_json()['error'] == 'storage_failure'
    assert client.get(f"/book/{book['id']}").get_json()['quantity'] == 1
