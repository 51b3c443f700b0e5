from datetime import datetime, timezone

from bson import ObjectId
from fastapi import APIRouter, HTTPException, Response, status

from app.core import config
from app.core.security import create_token, hash_password, verify_password
from app.db.mongo import USERS, get_db
from app.models.schemas import UserCreate, UserLogin

router = APIRouter()


def _public(user: dict) -> dict:
    return {"id": str(user["_id"]), "name": user.get("name"), "email": user["email"], "role": user.get("role", "user")}


def _set_cookie(response: Response, token: str):
    response.set_cookie(
        "jwt",
        token,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: UserCreate, response: Response):
    users = get_db()[USERS]
    email = payload.email.lower()
    if users.find_one({"email": email}):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    user = {
        "_id": ObjectId(),
        "name": payload.name,
        "email": email,
        "password": hash_password(payload.password),
        "role": "user",
        "orders": [],
        "cart": [],
        "createdAt": datetime.now(timezone.utc),
    }
    users.insert_one(user)
    token = create_token(str(user["_id"]), user["role"])
    _set_cookie(response, token)
    return {"success": True, "token": token, "user": _public(user)}


@router.post("/login")
def login(payload: UserLogin, response: Response):
    user = get_db()[USERS].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_token(str(user["_id"]), user.get("role", "user"))
    _set_cookie(response, token)
    return {"success": True, "token": token, "user": _public(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("jwt")
    return {"success": True}
