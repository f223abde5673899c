"""
Client for the car rental API, usable as a library and as a CLI.

``SessionContext`` is the single owner of the authentication state (token,
user and the last fetched car list). It is passed explicitly to ``ApiClient``;
nothing here is module-global.

States::

    anonymous --login/register--> authenticating --ok--> authenticated
                                                 \\--rejected--> authentication-failed
    authenticated --logout / any 401--> anonymous
"""
import argparse
import json
import logging
import os
import sys
import threading
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

from errors import ApiError, Conflict, Unauthorized, ValidationFailed, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_HOST = os.getenv("CARRENTAL_API_URL", "http://localhost:8000")
DEFAULT_TOKEN_FILE = Path(os.getenv("CARRENTAL_TOKEN_FILE", str(Path.home() / ".carrental" / "token")))


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "authentication-failed"


class AuthenticationInProgress(RuntimeError):
    pass


class TokenStore:
    """Keeps the token on disk so a session survives restarts."""

    def __init__(self, path=None):
        self.path = Path(path) if path else DEFAULT_TOKEN_FILE

    def load(self) -> Optional[str]:
        try:
            return self.path.read_text().strip() or None
        except FileNotFoundError:
            return None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token)
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SessionContext:
    def __init__(self, store: Optional[TokenStore] = None):
        self.store = store or TokenStore()
        self.state = AuthState.ANONYMOUS
        self.token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        self.cars: List[Dict[str, Any]] = []
        self._auth_lock = threading.Lock()
        self._lock = threading.RLock()
        self._cars_generation = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED and bool(self.token and self.user)

    @property
    def is_owner(self) -> bool:
        return bool(self.user and self.user.get("role") == "owner")

    def restore(self) -> Optional[str]:
        token = self.store.load()
        if token:
            with self._lock:
                self.token = token
        return token

    def begin_authentication(self) -> None:
        if not self._auth_lock.acquire(blocking=False):
            raise AuthenticationInProgress("An authentication attempt is already in progress")
        with self._lock:
            self.state = AuthState.AUTHENTICATING

    def complete_authentication(self, token: str, user: Dict[str, Any]) -> None:
        try:
            with self._lock:
                self.token = token
                self.user = user
                self.store.save(token)
                self.state = AuthState.AUTHENTICATED
        finally:
            self._auth_lock.release()

    def fail_authentication(self) -> None:
        try:
            with self._lock:
                self._clear()
                self.state = AuthState.FAILED
        finally:
            self._auth_lock.release()

    def logout(self) -> None:
        with self._lock:
            self._clear()
            self.state = AuthState.ANONYMOUS

    def expire(self) -> None:
        logger.info("Session expired, please log in again")
        self.logout()

    def update_user(self, user: Dict[str, Any]) -> None:
        with self._lock:
            if self.token:
                self.user = user

    def begin_cars_fetch(self) -> int:
        with self._lock:
            self._cars_generation += 1
            return self._cars_generation

    def cancel_cars_fetch(self) -> None:
        with self._lock:
            self._cars_generation += 1

    def apply_cars(self, generation: int, cars: List[Dict[str, Any]]) -> bool:
        """Store a fetch result unless a newer fetch or a cancel superseded it."""
        with self._lock:
            if generation != self._cars_generation:
                return False
            self.cars = cars
            return True

    def _clear(self) -> None:
        self.token = None
        self.user = None
        self.cars = []
        self._cars_generation += 1
        self.store.clear()


class ApiClient:
    def __init__(self, base_url: str = DEFAULT_HOST, session: Optional[SessionContext] = None,
                 http: Optional[requests.Session] = None, timeout: float = 15):
        self.base_url = base_url.rstrip("/")
        self.session = session or SessionContext()
        self.http = http or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, *, body: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None, auth: bool = True) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        token = self.session.token if auth else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        resp = self.http.request(method, self.base_url + path, headers=headers, json=body,
                                 params=params, timeout=self.timeout)
        failed = resp.status_code >= 400
        try:
            payload = resp.json()
        except ValueError:
            payload = {"success": not failed, "message": resp.text or f"HTTP {resp.status_code}"}

        if resp.status_code == 401 and token and self.session.state == AuthState.AUTHENTICATED:
            self.session.expire()
        if failed or not payload.get("success", False):
            status = resp.status_code if failed else 400
            raise error_for_status(status, payload.get("message"), payload.get("errors"))
        return payload

    # ----- authentication -----
    def _authenticate(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.session.begin_authentication()
        try:
            payload = self._request("POST", path, body=body, auth=False)
            token, user = payload["token"], payload["user"]
        except Exception:
            self.session.fail_authentication()
            raise
        self.session.complete_authentication(token, user)
        return user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._authenticate("/api/user/login", {"email": email, "password": password})

    def register(self, name: str, email: str, password: str, role: str = "user") -> Dict[str, Any]:
        return self._authenticate("/api/user/register",
                                  {"name": name, "email": email, "password": password, "role": role})

    def resume(self) -> Optional[Dict[str, Any]]:
        """Revalidate a token persisted by an earlier run."""
        token = self.session.restore()
        if not token:
            return None
        self.session.begin_authentication()
        try:
            user = self._request("GET", "/api/user/data")["user"]
        except ApiError:
            self.session.fail_authentication()
            self.session.logout()
            return None
        except Exception:
            self.session.fail_authentication()
            raise
        self.session.complete_authentication(token, user)
        return user

    def logout(self) -> None:
        self.session.logout()

    def fetch_user(self) -> Dict[str, Any]:
        user = self._request("GET", "/api/user/data")["user"]
        self.session.update_user(user)
        return user

    def change_role(self) -> Dict[str, Any]:
        user = self._request("POST", "/api/owner/change-role")["user"]
        self.session.update_user(user)
        return user

    # ----- cars -----
    def fetch_cars(self, **filters) -> List[Dict[str, Any]]:
        names = {"fuel_type": "fuelType", "min_price": "minPrice", "max_price": "maxPrice"}
        params = {names.get(k, k): v for k, v in filters.items() if v is not None}
        generation = self.session.begin_cars_fetch()
        cars = self._request("GET", "/api/user/cars", params=params, auth=False)["cars"]
        self.session.apply_cars(generation, cars)
        return cars

    def booked_dates(self, car_id: str) -> List[Tuple[date, date]]:
        bookings = self._request("GET", f"/api/public-bookings/car/{car_id}", auth=False)["bookings"]
        return [(date.fromisoformat(b["pickupDate"]), date.fromisoformat(b["returnDate"])) for b in bookings]

    def available_cars(self, location: str, pickup_date: date, return_date: date) -> List[Dict[str, Any]]:
        body = {"location": location, "pickupDate": pickup_date.isoformat(), "returnDate": return_date.isoformat()}
        return self._request("POST", "/api/bookings/check-availability", body=body, auth=False)["cars"]

    def add_car(self, **car) -> Dict[str, Any]:
        return self._request("POST", "/api/owner/add-car", body=car)["car"]

    def my_cars(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/owner/cars")["cars"]

    def toggle_car(self, car_id: str) -> Dict[str, Any]:
        return self._request("POST", "/api/owner/toggle-car", body={"carId": car_id})["car"]

    # ----- bookings -----
    def book(self, car_id: str, pickup_date: date, return_date: date) -> Dict[str, Any]:
        body = {"carId": car_id, "pickupDate": pickup_date.isoformat(), "returnDate": return_date.isoformat()}
        return self._request("POST", "/api/bookings", body=body)["booking"]

    def my_bookings(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/bookings/user")["bookings"]

    def owner_bookings(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/bookings/owner")["bookings"]

    def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/bookings/{booking_id}/cancel")["booking"]

    def change_booking_status(self, booking_id: str, status: str) -> Dict[str, Any]:
        body = {"bookingId": booking_id, "status": status}
        return self._request("POST", "/api/bookings/change-status", body=body)["booking"]


def describe_error(error: ApiError) -> str:
    """One line telling the user what to fix."""
    if isinstance(error, Conflict):
        return f"Dates unavailable: {error.message}"
    if isinstance(error, Unauthorized):
        return f"Please log in: {error.message}"
    if isinstance(error, ValidationFailed):
        details = "; ".join(f"{e.get('field')}: {e.get('message')}" for e in error.errors)
        return f"Invalid request: {details or error.message}"
    return error.message


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Car rental marketplace client")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Backend base URL")
    parser.add_argument("--token-file", default=None, help="Where the session token is kept")
    sub = parser.add_subparsers(dest="command", required=True)

    reg = sub.add_parser("register", help="Create an account")
    reg.add_argument("--name", required=True)
    reg.add_argument("--email", required=True)
    reg.add_argument("--password", required=True)
    reg.add_argument("--owner", action="store_true", help="Register as a car owner")

    login = sub.add_parser("login", help="Authenticate and keep the token")
    login.add_argument("--email", required=True)
    login.add_argument("--password", required=True)

    sub.add_parser("logout", help="Forget the stored token")
    sub.add_parser("whoami", help="Show the logged in user")

    cars = sub.add_parser("cars", help="List available cars")
    cars.add_argument("--location")
    cars.add_argument("--category")

    dates = sub.add_parser("dates", help="Show booked dates of a car")
    dates.add_argument("--car", required=True)

    book = sub.add_parser("book", help="Book a car")
    book.add_argument("--car", required=True)
    book.add_argument("--pickup", required=True, type=date.fromisoformat)
    book.add_argument("--return", dest="return_date", required=True, type=date.fromisoformat)

    sub.add_parser("bookings", help="List my bookings")

    cancel = sub.add_parser("cancel", help="Cancel one of my bookings")
    cancel.add_argument("--booking", required=True)

    args = parser.parse_args(argv)
    api = ApiClient(args.host, SessionContext(TokenStore(args.token_file)))

    try:
        if args.command == "register":
            result = api.register(args.name, args.email, args.password, "owner" if args.owner else "user")
        elif args.command == "login":
            result = api.login(args.email, args.password)
        elif args.command == "logout":
            api.logout()
            result = {"message": "Logged out"}
        else:
            api.resume()
            if args.command == "whoami":
                result = api.session.user
            elif args.command == "cars":
                result = api.fetch_cars(location=args.location, category=args.category)
            elif args.command == "dates":
                result = [[s.isoformat(), e.isoformat()] for s, e in api.booked_dates(args.car)]
            elif args.command == "book":
                result = api.book(args.car, args.pickup, args.return_date)
            elif args.command == "bookings":
                result = api.my_bookings()
            else:
                result = api.cancel_booking(args.booking)
    except ApiError as e:
        print(describe_error(e), file=sys.stderr)
        sys.exit(1)
    except requests.RequestException as e:
        print(f"Network error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
