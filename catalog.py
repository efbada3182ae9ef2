import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ReturnDocument

from database import create_document, now_utc, serialize_doc, to_object_id
from errors import NotFound, ValidationFailed
from schemas import Product, ProductUpdate

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "name": "Boys Athletic T-Shirt",
        "description": "Comfortable moisture-wicking athletic t-shirt perfect for sports and casual wear",
        "price": 25.99,
        "category": "T-Shirts",
        "sizes": ["S", "M", "L", "XL"],
        "colors": ["Blue", "Red", "Black", "White"],
        "image": "https://via.placeholder.com/400x400/0080ff/ffffff?text=Athletic+T-Shirt",
        "stock": 50,
        "brand": "SportMax",
    },
    {
        "name": "Boys Basketball Shorts",
        "description": "Lightweight basketball shorts with elastic waistband and side pockets",
        "price": 19.99,
        "category": "Shorts",
        "sizes": ["XS", "S", "M", "L", "XL"],
        "colors": ["Black", "Navy", "Gray"],
        "image": "https://via.placeholder.com/400x400/333333/ffffff?text=Basketball+Shorts",
        "stock": 40,
        "brand": "CourtKing",
    },
    {
        "name": "Boys Running Tracksuit",
        "description": "Complete tracksuit set with jacket and pants, perfect for training",
        "price": 65.99,
        "category": "Tracksuits",
        "sizes": ["S", "M", "L", "XL", "XXL"],
        "colors": ["Navy/White", "Black/Red", "Gray/Blue"],
        "image": "https://via.placeholder.com/400x400/000080/ffffff?text=Running+Tracksuit",
        "stock": 25,
        "brand": "RunFast",
    },
    {
        "name": "Boys Soccer Cleats",
        "description": "Professional soccer cleats with excellent grip and comfort",
        "price": 89.99,
        "category": "Shoes",
        "sizes": ["6", "7", "8", "9", "10", "11"],
        "colors": ["Black/White", "Blue/Yellow", "Red/Black"],
        "image": "https://via.placeholder.com/400x400/228B22/ffffff?text=Soccer+Cleats",
        "stock": 30,
        "brand": "KickPro",
    },
    {
        "name": "Boys Sports Water Bottle",
        "description": "BPA-free sports water bottle with easy-grip design",
        "price": 12.99,
        "category": "Accessories",
        "sizes": ["One Size"],
        "colors": ["Blue", "Green", "Red", "Black"],
        "image": "https://via.placeholder.com/400x400/87CEEB/000000?text=Water+Bottle",
        "stock": 100,
        "brand": "HydroSport",
    },
]


def _validation_failed(exc: ValidationError) -> ValidationFailed:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]) or "product", "message": err["msg"]}
        for err in exc.errors()
    ]
    return ValidationFailed("Invalid product", errors=errors)


def require_product(db, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFound("Product not found")
    return product


def products_by_id(db, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Resolve product id strings to serialized products; unknown ids are left out."""
    oids = [ObjectId(pid) for pid in set(product_ids) if ObjectId.is_valid(pid)]
    if not oids:
        return {}
    return {str(p["_id"]): serialize_doc(p) for p in db["product"].find({"_id": {"$in": oids}})}


def list_products(db, category: Optional[str] = None, include_inactive: bool = False) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if not include_inactive:
        query["is_active"] = {"$ne": False}
    return [serialize_doc(p) for p in db["product"].find(query).sort("created_at", -1)]


def get_product(db, product_id: str) -> Dict[str, Any]:
    return serialize_doc(require_product(db, product_id))


def create_product(db, data: Product) -> Dict[str, Any]:
    product_id = create_document("product", data, database=db)
    logger.info("Product %s created: %s", product_id, data.name)
    return get_product(db, product_id)


def update_product(db, product_id: str, data: ProductUpdate) -> Dict[str, Any]:
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No fields to update")
    current = require_product(db, product_id)

    # Re-check the whole record so an update cannot leave an active product unorderable
    merged = {k: v for k, v in current.items() if k in Product.model_fields}
    merged.update(changes)
    try:
        Product(**merged)
    except ValidationError as exc:
        raise _validation_failed(exc)

    changes["updated_at"] = now_utc()
    product = db["product"].find_one_and_update(
        {"_id": current["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise NotFound("Product not found")
    logger.info("Product %s updated: %s", product_id, sorted(changes))
    return serialize_doc(product)


def delete_product(db, product_id: str) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if not res.deleted_count:
        raise NotFound("Product not found")
    logger.info("Product %s deleted", product_id)


def seed_products(db) -> int:
    if db["product"].count_documents({}) > 0:
        logger.info("Products already exist, skipping seed")
        return 0
    for sample in SAMPLE_PRODUCTS:
        create_product(db, Product(**sample))
    logger.info("%d sample products seeded", len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)
