from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core import config

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    # seeded or imported users may have no usable hash
    if not hashed:
        return False
    try:
        return pwd_ctx.verify(plain, hashed)
    except ValueError:
        return False


def create_token(user_id: str, role: str = "user", expires_minutes: Optional[int] = None) -> str:
    """Session token for a storefront user; ``sub`` is the user's ObjectId."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, config.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises ``jose.JWTError`` for bad signatures and expired tokens."""
    return jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])


def user_id_from_token(token: str) -> ObjectId:
    claims = decode_token(token)
    sub = claims.get("sub")
    if not sub or not ObjectId.is_valid(sub):
        raise JWTError("token subject is not a user id")
    return ObjectId(sub)
