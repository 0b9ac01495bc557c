import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import EmailStr, Field
from pymongo.database import Database

from auth import require_roles
from database import create_document, get_db, parse_object_id, populate, serialize_doc, utcnow
from schemas import ApiModel, Branch

logger = logging.getLogger("rental.branches")

router = APIRouter(prefix="/branches", tags=["branches"])

MANAGER_FIELDS = ["name", "email", "role"]
MANAGER_ROLES = ("branch-manager", "admin")


class BranchIn(Branch):
    manager: Optional[str] = Field(None, description="User id of the branch manager")


class BranchUpdate(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    opening_hours: Optional[str] = None
    services: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    established_date: Optional[datetime] = None
    manager: Optional[str] = None
    is_active: Optional[bool] = None


class BranchStatus(ApiModel):
    is_active: bool


def _check_manager(db: Database, manager: str):
    mgr = db["user"].find_one({"_id": parse_object_id(manager, "manager id")}, {"role": 1})
    if not mgr:
        raise HTTPException(status_code=404, detail="Manager not found")
    if mgr.get("role") not in MANAGER_ROLES:
        raise HTTPException(status_code=400, detail="Manager must be a branch-manager or admin")
    return mgr["_id"]


def _with_manager(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    populate(db, [doc], "manager_id", "user", MANAGER_FIELDS, target="manager")
    return serialize_doc(doc)


def _load_branch(db: Database, branch_id: str) -> Dict[str, Any]:
    branch = db["branch"].find_one({"_id": parse_object_id(branch_id, "branch id")})
    if not branch:
        raise HTTPException(status_code=404, detail="Branch not found")
    return branch


@router.post("", status_code=201)
def create_branch(payload: BranchIn, user: dict = Depends(require_roles("admin", "branch-manager")),
                  db: Database = Depends(get_db)):
    data = payload.model_dump(exclude={"manager"})
    data["manager_id"] = _check_manager(db, payload.manager) if payload.manager else None
    data["created_by"] = user["_id"]
    branch_id = create_document(db, "branch", data)
    logger.info(f"branch {branch_id} created by {user['_id']}")
    return {"message": "Branch created successfully", "branch": _with_manager(db, _load_branch(db, branch_id))}


@router.get("")
def list_branches(db: Database = Depends(get_db)):
    docs = list(db["branch"].find().sort([("created_at", -1)]))
    populate(db, docs, "manager_id", "user", MANAGER_FIELDS, target="manager")
    return [serialize_doc(d) for d in docs]


@router.get("/{branch_id}")
def get_branch(branch_id: str, db: Database = Depends(get_db)):
    return _with_manager(db, _load_branch(db, branch_id))


@router.put("/{branch_id}")
def update_branch(branch_id: str, payload: BranchUpdate,
                  user: dict = Depends(require_roles("admin", "branch-manager")), db: Database = Depends(get_db)):
    branch = _load_branch(db, branch_id)
    update = payload.model_dump(exclude={"manager"}, exclude_none=True)
    if payload.manager:
        update["manager_id"] = _check_manager(db, payload.manager)
    update["updated_at"] = utcnow()
    db["branch"].update_one({"_id": branch["_id"]}, {"$set": update})
    return {"message": "Branch updated successfully", "branch": _with_manager(db, _load_branch(db, branch_id))}


@router.put("/{branch_id}/status")
def update_branch_status(branch_id: str, payload: BranchStatus,
                         user: dict = Depends(require_roles("admin", "branch-manager")),
                         db: Database = Depends(get_db)):
    branch = _load_branch(db, branch_id)
    db["branch"].update_one({"_id": branch["_id"]}, {"$set": {"is_active": payload.is_active, "updated_at": utcnow()}})
    return {"message": "Branch status updated successfully",
            "branch": _with_manager(db, _load_branch(db, branch_id))}


@router.delete("/{branch_id}")
def delete_branch(branch_id: str, user: dict = Depends(require_roles("admin", "branch-manager")),
                  db: Database = Depends(get_db)):
    branch = _load_branch(db, branch_id)
    db["branch"].delete_one({"_id": branch["_id"]})
    logger.info(f"branch {branch['_id']} deleted by {user['_id']}")
    return {"message": "Branch deleted successfully"}
