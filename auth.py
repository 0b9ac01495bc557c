import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, Optional, Union

import bcrypt
import jwt
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import Discriminator, EmailStr, Field, Tag
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, parse_object_id, serialize_doc
from schemas import AdminUser, ApiModel, BranchManagerUser, CustomerUser, SellerUser, role_of

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-secret")
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

logger = logging.getLogger("rental.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


# Security helpers

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user_id: str, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.lower().startswith("bearer "):
        return None
    return header.split(" ", 1)[1].strip()


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token is not valid")
    user = db["user"].find_one({"_id": parse_object_id(payload["sub"], "token subject")}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=401, detail="Token is not valid")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")
    return user


def require_roles(*roles: str):
    """Dependency factory: the current user must hold one of `roles`."""
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if role_of(user) not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return user
    return dependency


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": role_of(user),
        "phone": user.get("phone"),
        "address": user.get("address"),
    }


# Request models

class Credentials(ApiModel):
    password: str = Field(..., min_length=6)


class CustomerRegistration(CustomerUser, Credentials):
    pass


class SellerRegistration(SellerUser, Credentials):
    pass


class BranchManagerRegistration(BranchManagerUser, Credentials):
    pass


class AdminRegistration(AdminUser, Credentials):
    pass


Registration = Annotated[
    Union[
        Annotated[CustomerRegistration, Tag("customer")],
        Annotated[SellerRegistration, Tag("seller")],
        Annotated[BranchManagerRegistration, Tag("branch-manager")],
        Annotated[AdminRegistration, Tag("admin")],
    ],
    Discriminator(role_of),
]


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class ProfileUpdate(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    license_number: Optional[str] = None
    branch_location: Optional[str] = None


# Routes

@router.post("/register", status_code=201)
def register(payload: Registration, db: Database = Depends(get_db)):
    email = str(payload.email).lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")

    user_data = payload.model_dump(exclude={"password"})
    user_data["email"] = email
    user_data["password_hash"] = hash_password(payload.password)
    try:
        user_id = create_document(db, "user", user_data)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    user = db["user"].find_one({"_id": parse_object_id(user_id)})
    logger.info(f"registered user {user_id} role={payload.role}")

    return {
        "message": "User registered successfully",
        "token": create_access_token(user_id, payload.role),
        "user": public_user(user),
    }


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": str(payload.email).lower()})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=400, detail="Account is deactivated")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    return {
        "message": "Login successful",
        "token": create_access_token(str(user["_id"]), role_of(user)),
        "user": public_user(user),
    }


@router.get("/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return serialize_doc(user)


@router.put("/profile")
def update_profile(payload: ProfileUpdate, user: Dict[str, Any] = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    update = payload.model_dump(include={"name", "phone", "address"}, exclude_none=True)
    # role specific fields only apply to their own role
    role = role_of(user)
    if role == "customer" and payload.license_number:
        update["license_number"] = payload.license_number
    if role == "branch-manager" and payload.branch_location:
        update["branch_location"] = payload.branch_location

    if update:
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    updated = db["user"].find_one({"_id": user["_id"]}, {"password_hash": 0})
    return {"message": "Profile updated successfully", "user": serialize_doc(updated)}
