import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, now_utc, serialize_doc
from errors import Conflict, Forbidden, InvalidCredential, Unauthenticated, ValidationFailed
from schemas import User

logger = logging.getLogger(__name__)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def check_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            errors=[{"field": "password", "message": f"at least {MIN_PASSWORD_LENGTH} characters"}],
        )


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({"sub": user_id, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


def configured_admin_email() -> Optional[str]:
    email = os.getenv("ADMIN_EMAIL")
    return email.lower() if email else None


def _token_response(user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = str(user["_id"])
    return {
        "access_token": create_access_token(user_id),
        "token_type": "bearer",
        "user": {
            "id": user_id,
            "name": user.get("name"),
            "email": user.get("email"),
            "is_admin": bool(user.get("is_admin")),
        },
    }


# Accounts

def signup(db, name: str, email: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
    email = email.lower()
    check_password_strength(password)
    if email == configured_admin_email():
        raise Conflict("This email is reserved for admin use")
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists")

    user = User(name=name, email=email, password_hash=hash_password(password), phone=phone)
    try:
        user_id = create_document("user", user, database=db)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("New user signed up with id %s", user_id)
    return _token_response({"_id": user_id, "name": user.name, "email": user.email, "is_admin": False})


def login(db, email: str, password: str) -> Dict[str, Any]:
    email = email.lower()
    if email == configured_admin_email():
        raise InvalidCredential("Please use admin login portal")
    user = db["user"].find_one({"email": email, "is_admin": False})
    if not user or not verify_password(password, user.get("password_hash")):
        raise InvalidCredential("Invalid credentials")
    logger.info("User %s logged in", user["_id"])
    return _token_response(user)


def admin_login(db, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.lower(), "is_admin": True})
    if not user or not verify_password(password, user.get("password_hash")):
        raise InvalidCredential("Invalid admin credentials")
    logger.info("Admin %s logged in", user["_id"])
    return _token_response(user)


def bootstrap_admin(db, email: Optional[str] = None, password: Optional[str] = None,
                    name: Optional[str] = None) -> bool:
    """Create the configured admin account if it does not exist yet.

    Runs once at startup. The insert is a single upsert keyed on the email,
    so concurrent runs (several workers starting together) end up with one
    account, and an existing account is never modified. Returns True when
    the account was created by this call.
    """
    email = (email or os.getenv("ADMIN_EMAIL") or "").lower()
    password = password or os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set, skipping admin bootstrap")
        return False

    admin = User(
        name=name or os.getenv("ADMIN_NAME", "Administrator"),
        email=email,
        password_hash=hash_password(password),
        phone=os.getenv("ADMIN_PHONE", "+1234567890"),
        is_admin=True,
    ).model_dump(exclude={"email"})
    admin["created_at"] = now_utc()
    admin["updated_at"] = now_utc()

    try:
        result = db["user"].update_one({"email": email}, {"$setOnInsert": admin}, upsert=True)
    except DuplicateKeyError:
        # Lost the race against another worker's upsert
        logger.info("Admin user already exists")
        return False

    if result.upserted_id is None:
        existing = db["user"].find_one({"email": email}, {"is_admin": 1})
        if existing and not existing.get("is_admin"):
            logger.warning("Admin email %s belongs to a regular account; not promoting it", email)
        else:
            logger.info("Admin user already exists")
        return False
    logger.info("Admin user created for %s", email)
    return True


def admin_info(db) -> Dict[str, Any]:
    email = configured_admin_email()
    setup_complete = bool(email and db["user"].find_one({"email": email, "is_admin": True}, {"_id": 1}))
    return {"admin_email": email, "setup_complete": setup_complete}


# Dependencies

def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Access denied. No token provided.")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise Unauthenticated("Invalid token")
    return user_id


def require_admin(user_id: str = Depends(get_current_user_id), db=Depends(get_db)) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": ObjectId(user_id)}, {"password_hash": 0, "cart": 0, "wishlist": 0})
    if not user:
        raise Unauthenticated("User not found")
    if not user.get("is_admin"):
        raise Forbidden("Access denied. Admin rights required.")
    return serialize_doc(user)
