"""
Account-scoped operations: cart, wishlist, profile, password, preferences.

The cart and wishlist are arrays embedded on the user document. Every
mutation here is a single conditional update against that document, so
requests from several tabs of the same user cannot overwrite each other's
changes.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import check_password_strength, configured_admin_email, hash_password, verify_password
from catalog import products_by_id, require_product
from database import now_utc, serialize_doc, to_object_id
from errors import Conflict, InvalidCredential, NotFound, ServerFault, ValidationFailed
from schemas import Address, CartItem, Preferences

logger = logging.getLogger(__name__)

MAX_CART_ATTEMPTS = 5

PROFILE_PROJECTION = {"password_hash": 0, "cart": 0, "wishlist": 0, "checkout_order_id": 0}


def _require_user(db, user_id: str, projection: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": to_object_id(user_id)}, projection)
    if not user:
        raise NotFound("User not found")
    return user


def _check_variant(product: Dict[str, Any], size: Optional[str], color: Optional[str]) -> None:
    if not product.get("is_active", True):
        raise ValidationFailed("Product is not available")
    errors = []
    if product.get("sizes") and size not in product["sizes"]:
        errors.append({"field": "size", "message": f"must be one of {product['sizes']}"})
    if product.get("colors") and color not in product["colors"]:
        errors.append({"field": "color", "message": f"must be one of {product['colors']}"})
    if errors:
        raise ValidationFailed("Size or color not offered for this product", errors=errors)


# Cart

def add_to_cart(db, user_id: str, product_id: str, quantity: int = 1,
                size: Optional[str] = None, color: Optional[str] = None) -> None:
    """Add `quantity` of a (product, size, color) line to the user's cart.

    An existing line with the same key is incremented in place with a
    positional $inc. Otherwise a new line is pushed, guarded so the push only
    applies while no matching line exists. If both conditional writes miss,
    another request created the line in between and the increment is tried
    again.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationFailed(
            "Quantity must be a positive integer",
            errors=[{"field": "quantity", "message": "must be a positive integer"}],
        )
    uid = to_object_id(user_id)
    product = require_product(db, product_id)
    _check_variant(product, size, color)

    line_key = {"product_id": str(product["_id"]), "size": size, "color": color}
    for _ in range(MAX_CART_ATTEMPTS):
        res = db["user"].update_one(
            {"_id": uid, "cart": {"$elemMatch": line_key}},
            {"$inc": {"cart.$.quantity": quantity}, "$set": {"updated_at": now_utc()}},
        )
        if res.matched_count:
            return

        line = CartItem(id=str(ObjectId()), quantity=quantity, **line_key).model_dump()
        res = db["user"].update_one(
            {"_id": uid, "$nor": [{"cart": {"$elemMatch": line_key}}]},
            {"$push": {"cart": line}, "$set": {"updated_at": now_utc()}},
        )
        if res.matched_count:
            return

        if not db["user"].find_one({"_id": uid}, {"_id": 1}):
            raise NotFound("User not found")

    logger.error("Cart update for user %s kept conflicting after %d attempts", user_id, MAX_CART_ATTEMPTS)
    raise ServerFault("Could not update cart, please retry")


def get_cart(db, user_id: str) -> List[Dict[str, Any]]:
    cart = _require_user(db, user_id, {"cart": 1}).get("cart", [])
    products = products_by_id(db, [line["product_id"] for line in cart])
    return [{**line, "product": products.get(line["product_id"])} for line in cart]


def remove_from_cart(db, user_id: str, line_id: str) -> None:
    res = db["user"].update_one(
        {"_id": to_object_id(user_id)},
        {"$pull": {"cart": {"id": line_id}}, "$set": {"updated_at": now_utc()}},
    )
    if not res.matched_count:
        raise NotFound("User not found")


# Wishlist

def add_to_wishlist(db, user_id: str, product_id: str) -> None:
    uid = to_object_id(user_id)
    product = require_product(db, product_id)
    res = db["user"].update_one({"_id": uid}, {"$addToSet": {"wishlist": str(product["_id"])}})
    if not res.matched_count:
        raise NotFound("User not found")


def get_wishlist(db, user_id: str) -> List[Dict[str, Any]]:
    wishlist = _require_user(db, user_id, {"wishlist": 1}).get("wishlist", [])
    products = products_by_id(db, wishlist)
    return [products[pid] for pid in wishlist if pid in products]


def remove_from_wishlist(db, user_id: str, product_id: str) -> None:
    res = db["user"].update_one({"_id": to_object_id(user_id)}, {"$pull": {"wishlist": product_id}})
    if not res.matched_count:
        raise NotFound("User not found")


# Profile

def get_profile(db, user_id: str) -> Dict[str, Any]:
    user = _require_user(db, user_id, PROFILE_PROJECTION)
    return {
        "id": str(user["_id"]),
        "name": user.get("name") or "",
        "email": user.get("email") or "",
        "phone": user.get("phone") or "",
        "is_admin": bool(user.get("is_admin")),
        "address": Address(**(user.get("address") or {})).model_dump(),
        "preferences": Preferences(**(user.get("preferences") or {})).model_dump(),
        "created_at": user.get("created_at"),
    }


def update_profile(db, user_id: str, name: Optional[str] = None, email: Optional[str] = None,
                   phone: Optional[str] = None, address: Optional[Address] = None) -> Dict[str, Any]:
    uid = to_object_id(user_id)
    current = _require_user(db, user_id, {"email": 1})

    updates: Dict[str, Any] = {}
    if name is not None:
        updates["name"] = name
    if phone is not None:
        updates["phone"] = phone
    if address is not None:
        updates["address"] = address.model_dump()
    if email is not None:
        email = email.lower()
        if email == configured_admin_email() and email != current.get("email"):
            raise Conflict("This email is reserved for admin use")
        if db["user"].find_one({"email": email, "_id": {"$ne": uid}}, {"_id": 1}):
            raise Conflict("Email already exists")
        updates["email"] = email
    updates["updated_at"] = now_utc()

    try:
        user = db["user"].find_one_and_update(
            {"_id": uid}, {"$set": updates},
            projection=PROFILE_PROJECTION, return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise Conflict("Email already exists")
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


def change_password(db, user_id: str, current_password: str, new_password: str) -> None:
    user = _require_user(db, user_id, {"password_hash": 1})
    check_password_strength(new_password)
    if not verify_password(current_password, user.get("password_hash")):
        raise InvalidCredential("Current password is incorrect")

    # Only replace the hash that was verified
    res = db["user"].update_one(
        {"_id": user["_id"], "password_hash": user["password_hash"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()}},
    )
    if not res.matched_count:
        raise Conflict("Password was changed by another request, please retry")
    logger.info("Password changed for user %s", user_id)


def update_preferences(db, user_id: str, changes: Dict[str, Optional[bool]]) -> Dict[str, bool]:
    """Overwrite the supplied preference flags, keeping the others."""
    updates = {f"preferences.{k}": v for k, v in changes.items() if v is not None}
    updates["updated_at"] = now_utc()
    user = db["user"].find_one_and_update(
        {"_id": to_object_id(user_id)}, {"$set": updates},
        projection={"preferences": 1}, return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFound("User not found")
    return Preferences(**(user.get("preferences") or {})).model_dump()


def delete_account(db, user_id: str) -> None:
    res = db["user"].delete_one({"_id": to_object_id(user_id)})
    if not res.deleted_count:
        raise NotFound("User not found")
    logger.info("Account %s deleted", user_id)


def list_customers(db) -> List[Dict[str, Any]]:
    cursor = db["user"].find({"is_admin": False}, {"password_hash": 0}).sort("created_at", -1)
    return [serialize_doc(u) for u in cursor]
