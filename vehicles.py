import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import require_roles
from database import create_document, get_db, parse_object_id, populate, serialize_doc, utcnow
from finance import vehicle_statistics
from listing import DEFAULT_VEHICLE_LIMIT, Page, vehicle_filter, vehicle_sort
from schemas import ApiModel, FuelType, Transmission, Vehicle, VehicleType, role_of

logger = logging.getLogger("rental.vehicles")

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

SELLER_FIELDS = ["name", "email", "phone"]


class VehicleUpdate(ApiModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = Field(None, ge=1900, le=2100)
    license_plate: Optional[str] = None
    type: Optional[VehicleType] = None
    fuel_type: Optional[FuelType] = None
    transmission: Optional[Transmission] = None
    seats: Optional[int] = Field(None, ge=1)
    price_per_day: Optional[float] = Field(None, gt=0)
    location: Optional[str] = None
    is_available: Optional[bool] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None


def _with_seller(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    populate(db, docs, "seller_id", "user", SELLER_FIELDS, target="seller")
    return [serialize_doc(d) for d in docs]


def _owned_vehicle(db: Database, vehicle_id: str, user: Dict[str, Any], action: str) -> Dict[str, Any]:
    vehicle = db["vehicle"].find_one({"_id": parse_object_id(vehicle_id, "vehicle id")})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    if role_of(user) != "admin" and vehicle.get("seller_id") != user["_id"]:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this vehicle")
    return vehicle


def _plate_taken(db: Database, plate: str, exclude_id=None) -> bool:
    filt: Dict[str, Any] = {"license_plate": plate}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    return db["vehicle"].find_one(filt, {"_id": 1}) is not None


@router.get("/featured")
def featured_vehicles(limit: int = Query(6, ge=1), db: Database = Depends(get_db)):
    cursor = db["vehicle"].find({"is_available": True, "images": {"$exists": True, "$ne": []}}) \
        .sort([("created_at", -1)]).limit(limit)
    return {"vehicles": _with_seller(db, list(cursor)), "message": "Featured vehicles retrieved successfully"}


@router.get("/stats")
def vehicle_stats(db: Database = Depends(get_db)):
    return vehicle_statistics(db)


@router.get("")
def list_vehicles(
    type: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    fuel_type: Optional[str] = Query(None, alias="fuelType"),
    transmission: Optional[str] = None,
    seats: Optional[str] = None,
    available: Optional[Literal["true", "false", "all"]] = None,
    page: int = 1,
    limit: int = DEFAULT_VEHICLE_LIMIT,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    db: Database = Depends(get_db),
):
    window = Page.build(page, limit, DEFAULT_VEHICLE_LIMIT)
    filt = vehicle_filter(
        available=available, type=type, location=location, fuel_type=fuel_type,
        transmission=transmission, seats=seats, min_price=min_price, max_price=max_price,
    )

    cursor = db["vehicle"].find(filt).sort(vehicle_sort(sort_by, sort_order)).skip(window.skip).limit(window.limit)
    vehicles = _with_seller(db, list(cursor))
    total = db["vehicle"].count_documents(filt)
    available_count = db["vehicle"].count_documents({**filt, "is_available": True})

    return {
        "vehicles": vehicles,
        "totalPages": window.total_pages(total),
        "currentPage": window.page,
        "total": total,
        "availableCount": available_count,
        "showing": len(vehicles),
        "filters": {
            "type": type,
            "location": location,
            "minPrice": min_price,
            "maxPrice": max_price,
            "fuelType": fuel_type,
            "transmission": transmission,
            "seats": seats,
            "available": available,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        },
    }


@router.get("/seller/my-vehicles")
def my_vehicles(seller_id: Optional[str] = Query(None, alias="sellerId"),
                user: dict = Depends(require_roles("seller", "admin")), db: Database = Depends(get_db)):
    if role_of(user) == "admin":
        owner = parse_object_id(seller_id, "seller id")
    else:
        owner = user["_id"]
    cursor = db["vehicle"].find({"seller_id": owner}).sort([("created_at", -1)])
    return [serialize_doc(d) for d in cursor]


@router.get("/{vehicle_id}")
def get_vehicle(vehicle_id: str, db: Database = Depends(get_db)):
    doc = db["vehicle"].find_one({"_id": parse_object_id(vehicle_id, "vehicle id")})
    if not doc:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return _with_seller(db, [doc])[0]


@router.post("", status_code=201)
def add_vehicle(payload: Vehicle, user: dict = Depends(require_roles("seller", "admin")),
                db: Database = Depends(get_db)):
    if _plate_taken(db, payload.license_plate):
        raise HTTPException(status_code=400, detail="A vehicle with this license plate already exists")
    data = payload.model_dump()
    data["seller_id"] = user["_id"]
    try:
        vehicle_id = create_document(db, "vehicle", data)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="A vehicle with this license plate already exists")
    logger.info(f"vehicle {vehicle_id} added by {user['_id']}")
    vehicle = db["vehicle"].find_one({"_id": parse_object_id(vehicle_id)})
    return {"message": "Vehicle added successfully", "vehicle": serialize_doc(vehicle)}


@router.put("/{vehicle_id}")
def update_vehicle(vehicle_id: str, payload: VehicleUpdate, user: dict = Depends(require_roles("seller", "admin")),
                   db: Database = Depends(get_db)):
    vehicle = _owned_vehicle(db, vehicle_id, user, "update")
    update = payload.model_dump(exclude_none=True)
    if "license_plate" in update and _plate_taken(db, update["license_plate"], vehicle["_id"]):
        raise HTTPException(status_code=400, detail="A vehicle with this license plate already exists")
    update["updated_at"] = utcnow()
    try:
        db["vehicle"].update_one({"_id": vehicle["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="A vehicle with this license plate already exists")
    updated = db["vehicle"].find_one({"_id": vehicle["_id"]})
    return {"message": "Vehicle updated successfully", "vehicle": serialize_doc(updated)}


@router.delete("/{vehicle_id}")
def delete_vehicle(vehicle_id: str, user: dict = Depends(require_roles("seller", "admin")),
                   db: Database = Depends(get_db)):
    vehicle = _owned_vehicle(db, vehicle_id, user, "delete")
    db["vehicle"].delete_one({"_id": vehicle["_id"]})
    logger.info(f"vehicle {vehicle['_id']} deleted by {user['_id']}")
    return {"message": "Vehicle deleted successfully"}
