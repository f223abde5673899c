import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from database import CARS, create_document, now_utc, parse_object_id
from errors import Forbidden, NotFound
from schemas import CarIn, CarOut

logger = logging.getLogger(__name__)

SORTS = {
    "newest": ("created_at", -1),
    "price_asc": ("price_per_day", 1),
    "price_desc": ("price_per_day", -1),
    "rating": ("rating", -1),
}


def list_cars(
    db,
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    transmission: Optional[str] = None,
    fuel_type: Optional[str] = None,
    seats: Optional[int] = None,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "newest",
    limit: int = 50,
) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {"is_available": True}
    if q:
        pattern = re.escape(q)
        filt["$or"] = [
            {"brand": {"$regex": pattern, "$options": "i"}},
            {"model": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        filt["category"] = category
    if brand:
        filt["brand"] = brand
    if transmission:
        filt["transmission"] = transmission
    if fuel_type:
        filt["fuel_type"] = fuel_type
    if seats:
        filt["seating_capacity"] = {"$gte": seats}
    if location:
        filt["location"] = {"$regex": f"^{re.escape(location)}$", "$options": "i"}
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        filt["price_per_day"] = price_cond

    sort_spec = SORTS.get(sort, SORTS["newest"])
    cursor = db[CARS].find(filt).sort([sort_spec]).limit(limit)
    return [CarOut.from_doc(d).dump() for d in cursor]


def add_car(db, owner: Dict[str, Any], car: CarIn) -> Dict[str, Any]:
    data = car.model_dump()
    data.update({"owner": owner["_id"], "is_available": True, "rating": 0, "total_bookings": 0})
    car_id = create_document(db, CARS, data)
    logger.info(f"Owner {owner['_id']} listed car {car_id} ({car.brand} {car.model})")
    return db[CARS].find_one({"_id": parse_object_id(car_id)})


def owner_cars(db, owner: Dict[str, Any]) -> List[Dict[str, Any]]:
    cursor = db[CARS].find({"owner": owner["_id"]}).sort("created_at", -1)
    return [CarOut.from_doc(d).dump() for d in cursor]


def toggle_car(db, owner: Dict[str, Any], car_id: str) -> Dict[str, Any]:
    oid = parse_object_id(car_id)
    car = db[CARS].find_one({"_id": oid}) if oid else None
    if not car:
        raise NotFound("Car not found")
    if car.get("owner") != owner["_id"]:
        raise Forbidden("You do not own this car")
    updated = db[CARS].find_one_and_update(
        {"_id": oid},
        {"$set": {"is_available": not car.get("is_available", True), "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info(f"Car {oid} availability set to {updated['is_available']}")
    return updated
