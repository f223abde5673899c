"""
Booking service: availability, creation and status changes.

Double booking is prevented twice. The conflict predicate rejects a request
against the bookings read from the database, and the unique (car, day) index
on ``booking_days`` rejects the loser of two concurrent requests that both
passed that read.
"""

import logging
import re
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from availability import MAX_RENTAL_DAYS, DateRange, first_conflict, occupied_days, rental_price
from database import (BOOKINGS, BOOKING_DAYS, CARS, USERS, create_document, now_utc,
                      parse_object_id, to_date, to_datetime)
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from schemas import BookingOut, CarOut

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
BOOKING_STATUSES = (PENDING, CONFIRMED, CANCELLED)

INITIAL_BOOKING_STATUS = PENDING

# (current, requested) -> parties allowed to make the change
STATUS_TRANSITIONS = {
    (PENDING, CONFIRMED): {"owner"},
    (PENDING, CANCELLED): {"owner", "renter"},
    (CONFIRMED, CANCELLED): {"owner", "renter"},
}


def _active(car_filter) -> Dict[str, Any]:
    return {"car": car_filter, "status": {"$ne": CANCELLED}}


def _range(doc: Dict[str, Any]) -> DateRange:
    return DateRange(to_date(doc["pickup_date"]), to_date(doc["return_date"]))


def active_bookings(db, car_id) -> List[Dict[str, Any]]:
    car_oid = parse_object_id(car_id)
    if car_oid is None:
        return []
    return list(db[BOOKINGS].find(_active(car_oid)).sort("pickup_date", 1))


def booked_ranges(db, car_id) -> List[DateRange]:
    """Non-cancelled booked ranges of a car, ordered by pickup date.

    Unknown or malformed car ids yield an empty list.
    """
    car_oid = parse_object_id(car_id)
    if car_oid is None:
        return []
    cursor = db[BOOKINGS].find(_active(car_oid), {"pickup_date": 1, "return_date": 1}).sort("pickup_date", 1)
    return [_range(doc) for doc in cursor]


def claim_days(db, car_oid: ObjectId, booking_id: ObjectId, dates: DateRange) -> None:
    try:
        for day in occupied_days(dates):
            db[BOOKING_DAYS].insert_one({"car": car_oid, "day": day.isoformat(), "booking": booking_id})
    except DuplicateKeyError:
        release_days(db, booking_id)
        logger.warning(f"Concurrent booking won the dates {dates} for car {car_oid}")
        raise Conflict("These dates are unavailable: the car was just booked for an overlapping period")
    except Exception:
        release_days(db, booking_id)
        raise


def release_days(db, booking_id: ObjectId) -> None:
    db[BOOKING_DAYS].delete_many({"booking": booking_id})


def create_booking(db, renter: Dict[str, Any], car_id: str, pickup_date: date, return_date: date) -> Dict[str, Any]:
    dates = DateRange(pickup_date, return_date)
    if not dates.is_valid:
        raise ValidationFailed.for_field("returnDate", "Return date must be on or after the pickup date")
    if dates.length > MAX_RENTAL_DAYS:
        raise ValidationFailed.for_field("returnDate", f"A rental cannot be longer than {MAX_RENTAL_DAYS} days")

    car_oid = parse_object_id(car_id)
    car = db[CARS].find_one({"_id": car_oid}) if car_oid else None
    if not car:
        raise NotFound("Car not found")
    if not car.get("is_available", True):
        raise ValidationFailed.for_field("carId", "This car is not available for booking")
    if car.get("owner") == renter["_id"]:
        raise Forbidden("You cannot book your own car")

    clash = first_conflict(dates, booked_ranges(db, car_oid))
    if clash:
        logger.info(f"Rejected booking {dates} for car {car_oid}: overlaps {clash}")
        raise Conflict(f"These dates are unavailable: the car is already booked from {clash}")

    booking_id = ObjectId()
    claim_days(db, car_oid, booking_id, dates)
    booking = {
        "car": car_oid,
        "user": renter["_id"],
        "owner": car.get("owner"),
        "pickup_date": to_datetime(dates.start),
        "return_date": to_datetime(dates.end),
        "price": rental_price(car.get("price_per_day", 0), dates),
        "status": INITIAL_BOOKING_STATUS,
    }
    try:
        create_document(db, BOOKINGS, booking, _id=booking_id)
    except PyMongoError:
        release_days(db, booking_id)
        raise
    db[CARS].update_one({"_id": car_oid}, {"$inc": {"total_bookings": 1}})

    logger.info(f"Booking {booking_id} created for car {car_oid} {dates} by user {renter['_id']}")
    return db[BOOKINGS].find_one({"_id": booking_id})


def change_status(db, booking_id: str, status: str, actor: Dict[str, Any], acting_as: str) -> Dict[str, Any]:
    """Move a booking along STATUS_TRANSITIONS.

    ``acting_as`` is "owner" (owner of the booked car) or "renter".
    """
    oid = parse_object_id(booking_id)
    booking = db[BOOKINGS].find_one({"_id": oid}) if oid else None
    if not booking:
        raise NotFound("Booking not found")

    party = booking.get("owner") if acting_as == "owner" else booking.get("user")
    if party != actor["_id"]:
        raise Forbidden("You are not allowed to change this booking")

    current = booking.get("status", PENDING)
    if status == current:
        return booking
    if acting_as not in STATUS_TRANSITIONS.get((current, status), ()):
        raise ValidationFailed.for_field("status", f"Cannot change a {current} booking to {status}")

    updated = db[BOOKINGS].find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": {"status": status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Booking was changed by someone else, please reload")
    if status == CANCELLED:
        release_days(db, oid)

    logger.info(f"Booking {oid} {current} -> {status} by {acting_as} {actor['_id']}")
    return updated


def _cars_by_id(db, ids) -> Dict[ObjectId, Dict[str, Any]]:
    ids = list({i for i in ids if i is not None})
    if not ids:
        return {}
    return {c["_id"]: c for c in db[CARS].find({"_id": {"$in": ids}})}


def user_bookings(db, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    docs = list(db[BOOKINGS].find({"user": user["_id"]}).sort("created_at", -1))
    cars = _cars_by_id(db, (d.get("car") for d in docs))
    items = []
    for doc in docs:
        out = BookingOut.from_doc(doc)
        car = cars.get(doc.get("car"))
        out.car = CarOut.from_doc(car).dump() if car else None
        items.append(out.dump())
    return items


def owner_bookings(db, owner: Dict[str, Any]) -> List[Dict[str, Any]]:
    docs = list(db[BOOKINGS].find({"owner": owner["_id"]}).sort("created_at", -1))
    cars = _cars_by_id(db, (d.get("car") for d in docs))
    renter_ids = list({d.get("user") for d in docs if d.get("user") is not None})
    renters = {
        u["_id"]: {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
        for u in db[USERS].find({"_id": {"$in": renter_ids}}, {"name": 1, "email": 1})
    } if renter_ids else {}
    items = []
    for doc in docs:
        out = BookingOut.from_doc(doc)
        car = cars.get(doc.get("car"))
        out.car = CarOut.from_doc(car).dump() if car else None
        out.user = renters.get(doc.get("user"))
        items.append(out.dump())
    return items


def owner_car_bookings(db, owner: Dict[str, Any], car_id: str) -> List[Dict[str, Any]]:
    car_oid = parse_object_id(car_id)
    car = db[CARS].find_one({"_id": car_oid}) if car_oid else None
    if not car:
        raise NotFound("Car not found")
    if car.get("owner") != owner["_id"]:
        raise Forbidden("You do not own this car")
    return [BookingOut.from_doc(doc).dump() for doc in active_bookings(db, car_oid)]


def available_cars(db, location: str, dates: DateRange, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Cars at ``location`` that are listed and free for the whole range."""
    query = {
        "location": {"$regex": f"^{re.escape(location.strip())}$", "$options": "i"},
        "is_available": True,
    }
    cars = list(db[CARS].find(query).sort("created_at", -1))
    if not cars:
        return []

    taken = defaultdict(list)
    for doc in db[BOOKINGS].find(_active({"$in": [c["_id"] for c in cars]}),
                                 {"car": 1, "pickup_date": 1, "return_date": 1}):
        taken[doc["car"]].append(_range(doc))

    free = [c for c in cars if first_conflict(dates, taken[c["_id"]]) is None]
    if limit:
        free = free[:limit]
    return [CarOut.from_doc(c).dump() for c in free]
