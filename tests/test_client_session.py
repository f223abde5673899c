from datetime import date
from unittest.mock import MagicMock

import pytest

from client import ApiClient, AuthenticationInProgress, AuthState, SessionContext, TokenStore, describe_error
from conftest import PASSWORD, add_car, register
from errors import Conflict, Unauthorized, ValidationFailed

USER = {"id": "u1", "name": "Rick", "email": "rick@example.com", "role": "user"}


def fake_response(status, payload):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    return resp


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "token")


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def api(store, http):
    return ApiClient("http://api.test", SessionContext(store), http=http)


def logged_in(api, http, user=USER):
    http.request.return_value = fake_response(200, {"success": True, "token": "tok", "user": user})
    api.login("rick@example.com", PASSWORD)


def test_login_persists_token_and_attaches_it(api, http, store):
    logged_in(api, http)

    assert api.session.state == AuthState.AUTHENTICATED
    assert api.session.is_authenticated
    assert store.load() == "tok"

    http.request.return_value = fake_response(200, {"success": True, "bookings": []})
    api.my_bookings()
    headers = http.request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer tok"


def test_login_does_not_send_a_stale_token(api, http):
    logged_in(api, http)
    logged_in(api, http)
    assert "Authorization" not in http.request.call_args.kwargs["headers"]


def test_rejected_login_clears_everything(api, http, store):
    store.save("old")
    api.session.restore()
    http.request.return_value = fake_response(401, {"success": False, "message": "Invalid email or password"})

    with pytest.raises(Unauthorized) as exc:
        api.login("rick@example.com", "bad")

    assert exc.value.message == "Invalid email or password"
    assert api.session.state == AuthState.FAILED
    assert api.session.token is None
    assert api.session.user is None
    assert store.load() is None


def test_network_failure_during_login_fails_authentication(api, http):
    http.request.side_effect = ConnectionError("down")
    with pytest.raises(ConnectionError):
        api.login("rick@example.com", PASSWORD)
    assert api.session.state == AuthState.FAILED

    http.request.side_effect = None
    logged_in(api, http)
    assert api.session.state == AuthState.AUTHENTICATED


def test_only_one_authentication_in_flight(store):
    session = SessionContext(store)
    session.begin_authentication()
    with pytest.raises(AuthenticationInProgress):
        session.begin_authentication()
    session.complete_authentication("tok", USER)
    session.begin_authentication()
    session.fail_authentication()


def test_unauthorized_response_expires_session(api, http, store):
    logged_in(api, http, user={**USER, "role": "owner"})
    api.session.cars = [{"id": "c1"}]

    http.request.return_value = fake_response(401, {"success": False, "message": "Token expired. Please log in again."})
    with pytest.raises(Unauthorized):
        api.owner_bookings()

    assert api.session.state == AuthState.ANONYMOUS
    assert api.session.token is None
    assert api.session.user is None
    assert api.session.cars == []
    assert not api.session.is_owner
    assert store.load() is None


def test_logout_clears_owner_state(api, http, store):
    logged_in(api, http, user={**USER, "role": "owner"})
    assert api.session.is_owner

    api.logout()

    assert api.session.state == AuthState.ANONYMOUS
    assert not api.session.is_owner
    assert store.load() is None


def test_resume_with_valid_token(api, http, store):
    store.save("tok")
    http.request.return_value = fake_response(200, {"success": True, "user": USER})

    assert api.resume() == USER
    assert api.session.state == AuthState.AUTHENTICATED
    assert http.request.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"


def test_resume_with_expired_token(api, http, store):
    store.save("tok")
    http.request.return_value = fake_response(401, {"success": False, "message": "Token expired"})

    assert api.resume() is None
    assert api.session.state == AuthState.ANONYMOUS
    assert store.load() is None


def test_network_failure_during_resume_releases_authentication(api, http, store):
    store.save("tok")
    http.request.side_effect = ConnectionError("down")

    with pytest.raises(ConnectionError):
        api.resume()
    assert api.session.state == AuthState.FAILED

    http.request.side_effect = None
    logged_in(api, http)
    assert api.session.state == AuthState.AUTHENTICATED


def test_superseded_car_fetch_is_discarded(store):
    session = SessionContext(store)
    first = session.begin_cars_fetch()
    second = session.begin_cars_fetch()

    assert not session.apply_cars(first, [{"id": "old"}])
    assert session.apply_cars(second, [{"id": "new"}])
    assert session.cars == [{"id": "new"}]

    third = session.begin_cars_fetch()
    session.cancel_cars_fetch()
    assert not session.apply_cars(third, [{"id": "late"}])
    assert session.cars == [{"id": "new"}]


def test_fetch_cars_maps_filters(api, http):
    http.request.return_value = fake_response(200, {"success": True, "cars": [{"id": "c1"}]})

    assert api.fetch_cars(location="Lisbon", fuel_type="electric", max_price=90, brand=None) == [{"id": "c1"}]
    assert http.request.call_args.kwargs["params"] == {"location": "Lisbon", "fuelType": "electric", "maxPrice": 90}
    assert api.session.cars == [{"id": "c1"}]


def test_booking_errors_are_distinct(api, http):
    logged_in(api, http)

    http.request.return_value = fake_response(409, {"success": False, "message": "These dates are unavailable"})
    with pytest.raises(Conflict) as conflict:
        api.book("c1", date(2024, 3, 4), date(2024, 3, 6))

    http.request.return_value = fake_response(400, {
        "success": False, "message": "Validation failed",
        "errors": [{"field": "returnDate", "message": "Return date must be on or after the pickup date"}],
    })
    with pytest.raises(ValidationFailed) as invalid:
        api.book("c1", date(2024, 3, 10), date(2024, 3, 8))

    assert describe_error(conflict.value).startswith("Dates unavailable")
    assert "returnDate" in describe_error(invalid.value)
    assert describe_error(Unauthorized()).startswith("Please log in")
    assert api.session.state == AuthState.AUTHENTICATED


def test_end_to_end_against_app(client, tmp_path):
    owner_token, _ = register(client, "owner@example.com", role="owner")
    car = add_car(client, owner_token)

    api = ApiClient("", SessionContext(TokenStore(tmp_path / "token")), http=client)
    api.register("Rick Renter", "rick@example.com", PASSWORD)

    assert api.booked_dates(car["id"]) == []
    booking = api.book(car["id"], date(2024, 3, 1), date(2024, 3, 5))
    assert booking["price"] == 500
    assert api.booked_dates(car["id"]) == [(date(2024, 3, 1), date(2024, 3, 5))]

    with pytest.raises(Conflict):
        api.book(car["id"], date(2024, 3, 5), date(2024, 3, 6))

    api.cancel_booking(booking["id"])
    assert api.my_bookings()[0]["status"] == "cancelled"
    assert api.booked_dates(car["id"]) == []
