import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from auth import get_current_user, hash_password, issue_token, require_owner, verify_password
from availability import DateRange
from bookings import available_cars, booked_ranges, change_status, create_booking, owner_bookings, \
    owner_car_bookings, user_bookings
from cars import add_car, list_cars, owner_cars, toggle_car
from config import Config, setup_logging
from database import USERS, create_document, ensure_indexes, get_db, now_utc
from errors import ApiError, Unauthorized, ValidationFailed
from schemas import AvailabilitySearchIn, BookedRange, BookingIn, BookingOut, CarIn, CarOut, ChangeStatusIn, \
    LoginIn, RegisterIn, ToggleCarIn, UserOut

setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Car Rental API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
)


def ok(message: str = "Success", **data) -> Dict[str, Any]:
    return {"success": True, "message": message, **data}


# ---------- Middleware & error handling ----------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed:.1f}ms")
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        message = str(err.get("msg", "Invalid value")).replace("Value error, ", "")
        errors.append({"field": field, "message": message})
    return JSONResponse(status_code=400, content=ValidationFailed(errors=errors).to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        message = f"Route {request.url.path} not found"
        logger.warning(f"404 - {message}")
    else:
        message = str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal Server Error"})


# ---------- Health ----------
@app.get("/")
def read_root():
    return ok(
        "Car Rental API Server is running",
        version=app.version,
        endpoints={
            "health": "/health",
            "users": "/api/user",
            "owners": "/api/owner",
            "bookings": "/api/bookings",
            "publicBookings": "/api/public-bookings",
        },
    )


@app.get("/health")
def health():
    return ok("Server is healthy", timestamp=now_utc().isoformat())


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected & Working",
        "database_url": "✅ Set" if Config.DATABASE_URL else "❌ Not Set",
        "database_name": db.name if db is not None else None,
        "collections": []
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# ---------- Users ----------
def _session_payload(db, user: Dict[str, Any], message: str) -> Dict[str, Any]:
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"last_login": now_utc()}})
    user = db[USERS].find_one({"_id": user["_id"]})
    return ok(message, user=UserOut.from_doc(user).dump(), token=issue_token(user["_id"]))


@app.post("/api/user/register", status_code=201)
def register_user(payload: RegisterIn, db=Depends(get_db)):
    if db[USERS].find_one({"email": payload.email}):
        raise ValidationFailed.for_field("email", "User with this email already exists")
    try:
        user_id = create_document(db, USERS, {
            "name": payload.name,
            "email": payload.email,
            "password": hash_password(payload.password),
            "role": payload.role,
            "image": "",
            "is_active": True,
            "last_login": None,
        })
    except DuplicateKeyError:
        raise ValidationFailed.for_field("email", "User with this email already exists")
    user = db[USERS].find_one({"email": payload.email})
    logger.info(f"New user registered: {payload.email} ({user_id})")
    return _session_payload(db, user, "User registered successfully")


@app.post("/api/user/login")
def login_user(payload: LoginIn, db=Depends(get_db)):
    user = db[USERS].find_one({"email": payload.email})
    if not user or not user.get("is_active", True) or not verify_password(user["password"], payload.password):
        logger.info(f"Failed login for {payload.email}")
        raise Unauthorized("Invalid email or password")
    logger.info(f"User logged in: {payload.email}")
    return _session_payload(db, user, "Login successful")


@app.get("/api/user/data")
def get_user_data(user=Depends(get_current_user)):
    return ok("User data retrieved successfully", user=UserOut.from_doc(user).dump())


@app.get("/api/user/cars")
def get_cars(
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    transmission: Optional[str] = None,
    fuel_type: Optional[str] = Query(None, alias="fuelType"),
    seats: Optional[int] = Query(None, ge=1),
    location: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort: str = Query("newest", description="newest|price_asc|price_desc|rating"),
    limit: int = Query(50, ge=1, le=200),
    db=Depends(get_db),
):
    cars = list_cars(db, q=q, category=category, brand=brand, transmission=transmission,
                     fuel_type=fuel_type, seats=seats, location=location,
                     min_price=min_price, max_price=max_price, sort=sort, limit=limit)
    return ok("Cars retrieved successfully", cars=cars)


# ---------- Owner ----------
@app.post("/api/owner/change-role")
def change_role(user=Depends(get_current_user), db=Depends(get_db)):
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"role": "owner", "updated_at": now_utc()}})
    user = db[USERS].find_one({"_id": user["_id"]}, {"password": 0})
    logger.info(f"User {user['_id']} is now an owner")
    return ok("Now you can list cars", user=UserOut.from_doc(user).dump())


@app.post("/api/owner/add-car", status_code=201)
def owner_add_car(payload: CarIn, owner=Depends(require_owner), db=Depends(get_db)):
    car = add_car(db, owner, payload)
    return ok("Car added", car=CarOut.from_doc(car).dump())


@app.get("/api/owner/cars")
def owner_list_cars(owner=Depends(require_owner), db=Depends(get_db)):
    return ok("Cars retrieved successfully", cars=owner_cars(db, owner))


@app.post("/api/owner/toggle-car")
def owner_toggle_car(payload: ToggleCarIn, owner=Depends(require_owner), db=Depends(get_db)):
    car = toggle_car(db, owner, payload.car_id)
    return ok("Availability toggled", car=CarOut.from_doc(car).dump())


@app.get("/api/owner/bookings/car/{car_id}")
def owner_bookings_for_car(car_id: str, owner=Depends(require_owner), db=Depends(get_db)):
    return ok("Bookings retrieved successfully", bookings=owner_car_bookings(db, owner, car_id))


# ---------- Bookings ----------
@app.get("/api/public-bookings/car/{car_id}")
def public_car_bookings(car_id: str, db=Depends(get_db)):
    ranges = [BookedRange(pickup_date=r.start, return_date=r.end).dump() for r in booked_ranges(db, car_id)]
    return ok("Booked dates retrieved successfully", bookings=ranges)


@app.post("/api/bookings", status_code=201)
def create_booking_route(payload: BookingIn, user=Depends(get_current_user), db=Depends(get_db)):
    booking = create_booking(db, user, payload.car_id, payload.pickup_date, payload.return_date)
    return ok("Booking created", booking=BookingOut.from_doc(booking).dump())


@app.post("/api/bookings/check-availability")
def check_availability(payload: AvailabilitySearchIn, db=Depends(get_db)):
    cars = available_cars(db, payload.location, DateRange(payload.pickup_date, payload.return_date))
    return ok("Available cars retrieved successfully", cars=cars)


@app.get("/api/bookings/user")
def get_user_bookings(user=Depends(get_current_user), db=Depends(get_db)):
    return ok("Bookings retrieved successfully", bookings=user_bookings(db, user))


@app.get("/api/bookings/owner")
def get_owner_bookings(owner=Depends(require_owner), db=Depends(get_db)):
    return ok("Bookings retrieved successfully", bookings=owner_bookings(db, owner))


@app.post("/api/bookings/change-status")
def change_booking_status(payload: ChangeStatusIn, owner=Depends(require_owner), db=Depends(get_db)):
    booking = change_status(db, payload.booking_id, payload.status, owner, acting_as="owner")
    return ok("Status updated", booking=BookingOut.from_doc(booking).dump())


@app.post("/api/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    booking = change_status(db, booking_id, "cancelled", user, acting_as="renter")
    return ok("Booking cancelled", booking=BookingOut.from_doc(booking).dump())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
