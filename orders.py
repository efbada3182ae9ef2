"""
Order lifecycle

Status graph:

    Pending -> Processing -> Shipped -> Delivered
       |            |
       +------------+--> Cancelled

Forward moves may skip states (Pending -> Shipped is allowed). Delivered
and Cancelled are terminal. Re-applying the current status is a no-op.

Placing an order first claims the cart lines by writing the new order id to
the user's checkout_order_id, then inserts the order, removes the claimed
lines from the cart and decrements stock. If a step after the insert fails,
the order is kept with cart_cleared or stock_applied still False and
reconcile_cart_clears() finishes the job later, so a crash can leave a stale
cart but never loses an order. Stock lines are not tracked one by one: a
crash in the middle of the stock step can apply the first lines twice.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from catalog import products_by_id
from database import now_utc, serialize_doc, to_object_id
from errors import Conflict, InvalidTransition, NotFound, ValidationFailed
from schemas import ORDER_STATUSES, Address, Order, OrderItem

logger = logging.getLogger(__name__)

MAX_STOCK_ATTEMPTS = 5


TRANSITIONS = {
    "Pending": {"Processing", "Shipped", "Delivered", "Cancelled"},
    "Processing": {"Shipped", "Delivered", "Cancelled"},
    "Shipped": {"Delivered"},
    "Delivered": set(),
    "Cancelled": set(),
}


def can_transition(current: str, new: str) -> bool:
    return new == current or new in TRANSITIONS.get(current, set())


def _serialize_order(order: Dict[str, Any], products: Dict[str, Dict[str, Any]],
                     users: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Any]:
    out = serialize_doc(order)
    out.pop("cart_line_ids", None)
    out["items"] = [{**item, "product": products.get(item["product_id"])} for item in order.get("items", [])]
    if users is not None:
        out["user"] = users.get(order["user_id"])
    return out


def _users_by_id(db, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    oids = [ObjectId(uid) for uid in set(user_ids) if ObjectId.is_valid(uid)]
    if not oids:
        return {}
    cursor = db["user"].find({"_id": {"$in": oids}}, {"name": 1, "email": 1})
    return {str(u["_id"]): serialize_doc(u) for u in cursor}


def _populate(db, orders: List[Dict[str, Any]], with_users: bool = False) -> List[Dict[str, Any]]:
    products = products_by_id(db, [item["product_id"] for o in orders for item in o.get("items", [])])
    users = _users_by_id(db, [o["user_id"] for o in orders]) if with_users else None
    return [_serialize_order(o, products, users) for o in orders]


def _release_claim(db, order: Dict[str, Any]) -> None:
    db["user"].update_one(
        {"_id": ObjectId(order["user_id"]), "checkout_order_id": str(order["_id"])},
        {"$unset": {"checkout_order_id": ""}},
    )


def _clear_cart(db, order: Dict[str, Any]) -> bool:
    try:
        db["user"].update_one(
            {"_id": ObjectId(order["user_id"])},
            {"$pull": {"cart": {"id": {"$in": order.get("cart_line_ids", [])}}}, "$set": {"updated_at": now_utc()}},
        )
        _release_claim(db, order)
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"cart_cleared": True}})
    except PyMongoError:
        logger.exception("Clearing cart for order %s failed; left for reconcile", order["_id"])
        return False
    order["cart_cleared"] = True
    return True


def _decrement_stock(db, product_id: str, quantity: int) -> None:
    pid = ObjectId(product_id)
    for _ in range(MAX_STOCK_ATTEMPTS):
        res = db["product"].update_one({"_id": pid, "stock": {"$gte": quantity}}, {"$inc": {"stock": -quantity}})
        if res.matched_count:
            return
        # Only clamp while stock is still short, so a restock in between is not lost
        res = db["product"].update_one({"_id": pid, "stock": {"$lt": quantity}}, {"$set": {"stock": 0}})
        if res.matched_count:
            logger.warning("Stock for product %s below %d, clamped to 0", product_id, quantity)
            return
        if not db["product"].find_one({"_id": pid}, {"_id": 1}):
            logger.warning("Product %s no longer exists, stock not updated", product_id)
            return
    logger.error("Stock update for product %s kept conflicting after %d attempts", product_id, MAX_STOCK_ATTEMPTS)


def _apply_stock(db, order: Dict[str, Any]) -> bool:
    try:
        for item in order.get("items", []):
            _decrement_stock(db, item["product_id"], item["quantity"])
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"stock_applied": True}})
    except PyMongoError:
        logger.exception("Stock update for order %s failed; left for reconcile", order["_id"])
        return False
    order["stock_applied"] = True
    return True


def create_order(db, user_id: str, total_amount: float, shipping_address: Address, payment_method: str,
                 notes: Optional[str] = None, promo_code: Optional[str] = None,
                 discount: float = 0) -> Dict[str, Any]:
    """Turn the user's current cart into a Pending order.

    The cart lines are claimed on the user document before the order is
    inserted. A second checkout of the same lines, or one started while
    another is still running, fails with Conflict instead of placing a
    duplicate order.
    """
    uid = to_object_id(user_id)
    user = db["user"].find_one({"_id": uid}, {"cart": 1})
    if not user:
        raise NotFound("User not found")
    cart = user.get("cart", [])
    if not cart:
        raise ValidationFailed("Cart is empty")

    products = products_by_id(db, [line["product_id"] for line in cart])
    missing = [
        {"field": f"cart.{i}.product_id", "message": "product no longer exists"}
        for i, line in enumerate(cart) if line["product_id"] not in products
    ]
    if missing:
        raise ValidationFailed("Some products in the cart are no longer available", errors=missing)

    items = [
        OrderItem(
            product_id=line["product_id"],
            quantity=line["quantity"],
            size=line.get("size"),
            color=line.get("color"),
            price=products[line["product_id"]]["price"],
        )
        for line in cart
    ]
    try:
        order = Order(
            user_id=user_id,
            ordered_at=now_utc(),
            items=items,
            subtotal=round(sum(i.price * i.quantity for i in items), 2),
            total_amount=total_amount,
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
            promo_code=promo_code,
            discount=discount,
        )
    except ValidationError as exc:
        raise ValidationFailed(
            "Invalid order",
            errors=[{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in exc.errors()],
        )
    doc = order.model_dump()
    doc["_id"] = ObjectId()
    doc["cart_line_ids"] = [line["id"] for line in cart]
    doc["updated_at"] = doc["ordered_at"]

    # Every snapshotted line must still be in the cart and no other checkout may hold it
    claim = db["user"].update_one(
        {
            "_id": uid,
            "checkout_order_id": None,
            "$and": [{"cart.id": line_id} for line_id in doc["cart_line_ids"]],
        },
        {"$set": {"checkout_order_id": str(doc["_id"])}},
    )
    if not claim.matched_count:
        raise Conflict("Cart changed or is already being checked out, please retry")

    try:
        db["order"].insert_one(doc)
    except PyMongoError:
        _release_claim(db, doc)
        raise
    logger.info("Order %s placed by user %s with %d lines", doc["_id"], user_id, len(items))

    _clear_cart(db, doc)
    _apply_stock(db, doc)
    return _serialize_order(doc, products)


def get_user_orders(db, user_id: str) -> List[Dict[str, Any]]:
    orders = list(db["order"].find({"user_id": user_id}).sort("ordered_at", -1))
    return _populate(db, orders)


def get_all_orders(db) -> List[Dict[str, Any]]:
    orders = list(db["order"].find().sort("ordered_at", -1))
    return _populate(db, orders, with_users=True)


def update_order_status(db, order_id: str, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise ValidationFailed(
            "Invalid order status",
            errors=[{"field": "status", "message": f"must be one of {list(ORDER_STATUSES)}"}],
        )
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFound("Order not found")

    current = order.get("status", "Pending")
    if not can_transition(current, status):
        raise InvalidTransition(f"Cannot change order status from {current} to {status}")
    if status != current:
        # Compare-and-set on the status the check was made against
        order = db["order"].find_one_and_update(
            {"_id": oid, "status": current},
            {"$set": {"status": status, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if not order:
            raise InvalidTransition("Order status was changed by another request, please retry")
        logger.info("Order %s moved from %s to %s", order_id, current, status)
    return _populate(db, [order], with_users=True)[0]


def reconcile_cart_clears(db) -> int:
    """Finish orders whose placement stopped half way.

    Clears the cart and applies the stock decrement for orders still missing
    either step, and drops checkout claims whose order was never inserted.
    Meant to run at startup, before requests are served. Returns the number
    of orders repaired.
    """
    repaired = 0
    for order in list(db["order"].find({"$or": [{"cart_cleared": False}, {"stock_applied": False}]})):
        done = True
        if not order.get("cart_cleared", True):
            done = _clear_cart(db, order) and done
        if not order.get("stock_applied", True):
            done = _apply_stock(db, order) and done
        if done:
            repaired += 1

    for user in list(db["user"].find({"checkout_order_id": {"$ne": None}}, {"checkout_order_id": 1})):
        order_id = user["checkout_order_id"]
        if not db["order"].find_one({"_id": ObjectId(order_id)}, {"_id": 1}):
            db["user"].update_one(
                {"_id": user["_id"], "checkout_order_id": order_id}, {"$unset": {"checkout_order_id": ""}}
            )
            logger.info("Dropped stale checkout claim %s for user %s", order_id, user["_id"])

    if repaired:
        logger.info("Finished placement for %d previously placed orders", repaired)
    return repaired
