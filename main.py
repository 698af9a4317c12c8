import logging
import os
from typing import Optional, List

from fastapi import FastAPI, HTTPException, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from jose import JWTError

from availability import AvailabilityEngine
from database import MemoryStore, db, create_document, get_documents
from errors import BookingError
from schemas import (
    User as UserSchema,
    ParkingSpot as SpotSchema,
    Booking as BookingSchema,
    SpotType,
)
from security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------------
# App & Security Config
# ----------------------------------------------------------------------------
app = FastAPI(title="ParkSmart API", description="Parking spot booking backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# ----------------------------------------------------------------------------
# Helpers & Models
# ----------------------------------------------------------------------------
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    is_admin: bool
    is_active: bool
    booking_count: Optional[int] = None


class RegisterOut(UserOut):
    access_token: str
    token_type: str = "bearer"


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)


class UpdateUserPayload(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    is_active: bool
    is_admin: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=6)


class UserStatusPayload(BaseModel):
    is_active: bool


class SpotPayload(BaseModel):
    spot_number: str = Field(..., min_length=1)
    level: int = Field(..., ge=1)
    type: SpotType = "STANDARD"
    price_per_hour: float = Field(..., ge=0)
    is_available: bool = True


class CreateBookingPayload(BaseModel):
    spot_id: int
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    duration: int = Field(..., ge=1, description="Whole hours")


def get_store() -> MemoryStore:
    return db


def get_engine(store: MemoryStore = Depends(get_store)) -> AvailabilityEngine:
    return AvailabilityEngine(store)


def get_user_by_email(store: MemoryStore, email: str):
    email = email.lower()
    for user in store.find("user"):
        if user["email"].lower() == email:
            return user
    return None


def user_out(user: dict, booking_count: Optional[int] = None) -> UserOut:
    return UserOut(
        id=user["id"],
        name=user["name"],
        email=user["email"],
        is_admin=user["is_admin"],
        is_active=user["is_active"],
        booking_count=booking_count,
    )


async def get_current_user(token: str = Depends(oauth2_scheme), store: MemoryStore = Depends(get_store)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise credentials_exception

    user = store.get("user", user_id)
    if user is None:
        raise credentials_exception
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="This account has been deactivated")
    return user


def require_admin(user):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")


async def get_current_admin(current_user=Depends(get_current_user)):
    require_admin(current_user)
    return current_user


# ----------------------------------------------------------------------------
# Root & Health
# ----------------------------------------------------------------------------
@app.get("/")
def read_root():
    return {"message": "ParkSmart Backend Running"}


# ----------------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------------
@app.post("/auth/register", response_model=RegisterOut, status_code=201)
def register(payload: RegisterPayload, store: MemoryStore = Depends(get_store)):
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        is_admin=False,
        is_active=True,
    )
    with store.lock_for("email"):
        if get_user_by_email(store, payload.email):
            raise HTTPException(status_code=409, detail="A user with this email already exists")
        user_id = create_document("user", user, store=store)
    logger.info("Registered user %s", user_id)
    return RegisterOut(
        **user_out(store.get("user", user_id)).model_dump(),
        access_token=create_access_token({"sub": str(user_id)}),
    )


@app.post("/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), store: MemoryStore = Depends(get_store)):
    user = get_user_by_email(store, form_data.username)
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="This account has been deactivated")

    access_token = create_access_token({"sub": str(user["id"])})
    return Token(access_token=access_token)


@app.get("/auth/me", response_model=UserOut)
def me(current_user=Depends(get_current_user)):
    return user_out(current_user)


# ----------------------------------------------------------------------------
# Parking Spots
# ----------------------------------------------------------------------------
@app.get("/parking/spots")
def list_spots(
    date: Optional[str] = None,
    start_time: Optional[str] = None,
    duration: Optional[int] = Query(None),
    store: MemoryStore = Depends(get_store),
    engine: AvailabilityEngine = Depends(get_engine),
):
    if date and start_time and duration is not None:
        return engine.get_available_spots(date, start_time, duration)
    return store.find("spot")


# ----------------------------------------------------------------------------
# Booking Endpoints
# ----------------------------------------------------------------------------
@app.post("/bookings", status_code=201)
def create_booking(
    payload: CreateBookingPayload,
    current_user=Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
):
    return engine.create_booking(
        current_user["id"], payload.spot_id, payload.date, payload.start_time, payload.duration
    )


@app.get("/bookings/me")
def my_bookings(
    current_user=Depends(get_current_user),
    store: MemoryStore = Depends(get_store),
    engine: AvailabilityEngine = Depends(get_engine),
):
    items = get_documents("booking", {"user_id": current_user["id"]}, store=store)
    return [engine.enrich(b) for b in items]


@app.delete("/bookings/{booking_id}")
def cancel_booking(
    booking_id: int,
    current_user=Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
):
    engine.cancel_booking(booking_id, current_user)
    return {"message": "Booking cancelled successfully"}


# ----------------------------------------------------------------------------
# Admin Dashboard
# ----------------------------------------------------------------------------
@app.get("/admin/dashboard")
def admin_dashboard(current_user=Depends(get_current_admin), engine: AvailabilityEngine = Depends(get_engine)):
    return engine.get_dashboard_stats()


@app.get("/admin/bookings")
def admin_list_bookings(
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
    engine: AvailabilityEngine = Depends(get_engine),
):
    return [engine.enrich(b) for b in store.find("booking")]


@app.delete("/admin/bookings/{booking_id}")
def admin_cancel_booking(
    booking_id: int,
    current_user=Depends(get_current_admin),
    engine: AvailabilityEngine = Depends(get_engine),
):
    engine.cancel_booking(booking_id, current_user)
    return {"message": "Booking cancelled successfully"}


@app.get("/admin/spots")
def admin_list_spots(current_user=Depends(get_current_admin), store: MemoryStore = Depends(get_store)):
    return store.find("spot")


def _spot_number_taken(store: MemoryStore, spot_number: str, exclude_id: Optional[int] = None) -> bool:
    return any(s["id"] != exclude_id for s in store.find("spot", {"spot_number": spot_number}))


@app.post("/admin/spots", status_code=201)
def admin_create_spot(
    payload: SpotPayload,
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
):
    with store.lock_for("spot_number"):
        if _spot_number_taken(store, payload.spot_number):
            raise HTTPException(status_code=409, detail="A spot with this number already exists")
        spot_id = create_document("spot", SpotSchema(**payload.model_dump()), store=store)
    logger.info("Spot %s (%s) created", spot_id, payload.spot_number)
    return store.get("spot", spot_id)


@app.put("/admin/spots/{spot_id}")
def admin_update_spot(
    spot_id: int,
    payload: SpotPayload,
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
):
    if store.get("spot", spot_id) is None:
        raise HTTPException(status_code=404, detail="Parking spot not found")
    with store.lock_for("spot_number"):
        if _spot_number_taken(store, payload.spot_number, exclude_id=spot_id):
            raise HTTPException(status_code=409, detail="A spot with this number already exists")
        return store.update("spot", spot_id, payload.model_dump())


@app.delete("/admin/spots/{spot_id}")
def admin_delete_spot(
    spot_id: int,
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
):
    with store.spot_lock(spot_id):
        if store.get("spot", spot_id) is None:
            raise HTTPException(status_code=404, detail="Parking spot not found")
        if store.count("booking", {"spot_id": spot_id}):
            raise HTTPException(status_code=400, detail="Cannot delete spot with existing bookings")
        store.delete("spot", spot_id)
    logger.info("Spot %s deleted", spot_id)
    return {"message": "Parking spot deleted successfully"}


@app.get("/admin/users", response_model=List[UserOut])
def admin_list_users(current_user=Depends(get_current_admin), store: MemoryStore = Depends(get_store)):
    return [user_out(u, store.count("booking", {"user_id": u["id"]})) for u in store.find("user")]


@app.put("/admin/users/{user_id}", response_model=UserOut)
def admin_update_user(
    user_id: int,
    payload: UpdateUserPayload,
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
):
    if store.get("user", user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    changes = payload.model_dump(exclude={"password"}, exclude_none=True)
    if payload.password:
        changes["password_hash"] = get_password_hash(payload.password)

    with store.lock_for("email"):
        existing = get_user_by_email(store, payload.email)
        if existing and existing["id"] != user_id:
            raise HTTPException(status_code=409, detail="A user with this email already exists")
        updated = store.update("user", user_id, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user_out(updated)


@app.patch("/admin/users/{user_id}/status", response_model=UserOut)
def admin_set_user_status(
    user_id: int,
    payload: UserStatusPayload,
    current_user=Depends(get_current_admin),
    store: MemoryStore = Depends(get_store),
):
    if store.get("user", user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    if current_user["id"] == user_id and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    logger.info("User %s is_active=%s", user_id, payload.is_active)
    return user_out(store.update("user", user_id, {"is_active": payload.is_active}))


# ----------------------------------------------------------------------------
# Schema exposure for DB viewer
# ----------------------------------------------------------------------------
@app.get("/schema")
def get_schema():
    return {
        "user": UserSchema.model_json_schema(),
        "spot": SpotSchema.model_json_schema(),
        "booking": BookingSchema.model_json_schema(),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
