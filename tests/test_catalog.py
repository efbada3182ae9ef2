import pytest
from bson import ObjectId
from pydantic import ValidationError

import catalog
from errors import NotFound, ValidationFailed
from schemas import Product, ProductUpdate


@pytest.mark.parametrize("overrides", [
    {"price": 0},
    {"price": -5},
    {"stock": -1},
    {"category": "Hats"},
    {"sizes": ["XXXL"]},
    {"sizes": []},
    {"colors": []},
])
def test_product_schema_rejects_invalid_data(overrides):
    data = {"name": "Tee", "price": 10.0, "category": "T-Shirts", "sizes": ["M"], "colors": ["Red"]}
    data.update(overrides)
    with pytest.raises(ValidationError):
        Product(**data)


def test_inactive_product_may_lack_variants():
    product = Product(name="Draft", price=10.0, category="Accessories", is_active=False)
    assert product.sizes == []


def test_product_accepts_client_field_names():
    product = Product(**{"name": "Tee", "price": 10, "category": "Shorts", "sizes": ["M"],
                         "colors": ["Red"], "isActive": False})
    assert product.is_active is False


def test_create_and_get_product(db, product):
    fetched = catalog.get_product(db, product["id"])
    assert fetched["name"] == "Boys Athletic T-Shirt"
    assert fetched["price"] == 25.0
    assert fetched["is_active"] is True
    assert "_id" not in fetched
    assert fetched["created_at"] is not None
    assert fetched["updated_at"] is not None


def test_get_product_unknown_and_malformed_ids(db):
    with pytest.raises(NotFound):
        catalog.get_product(db, str(ObjectId()))
    with pytest.raises(ValidationFailed):
        catalog.get_product(db, "not-an-id")


def test_list_products_hides_inactive(db, product, other_product):
    catalog.update_product(db, other_product["id"], ProductUpdate(is_active=False))

    assert [p["id"] for p in catalog.list_products(db)] == [product["id"]]
    assert len(catalog.list_products(db, include_inactive=True)) == 2


def test_list_products_by_category(db, product, other_product):
    assert [p["name"] for p in catalog.list_products(db, category="Shorts")] == ["Boys Basketball Shorts"]


def test_update_product_is_partial(db, product):
    updated = catalog.update_product(db, product["id"], ProductUpdate(price=30.0, stock=3))
    assert updated["price"] == 30.0
    assert updated["stock"] == 3
    assert updated["colors"] == ["Red", "Blue"]


def test_update_product_without_fields(db, product):
    with pytest.raises(ValidationFailed):
        catalog.update_product(db, product["id"], ProductUpdate())


def test_update_cannot_make_active_product_unorderable(db, product):
    with pytest.raises(ValidationFailed) as exc:
        catalog.update_product(db, product["id"], ProductUpdate(colors=[]))
    assert exc.value.errors
    assert catalog.get_product(db, product["id"])["colors"] == ["Red", "Blue"]


def test_update_unknown_product(db):
    with pytest.raises(NotFound):
        catalog.update_product(db, str(ObjectId()), ProductUpdate(price=1.0))


def test_delete_product(db, product):
    catalog.delete_product(db, product["id"])
    with pytest.raises(NotFound):
        catalog.get_product(db, product["id"])
    with pytest.raises(NotFound):
        catalog.delete_product(db, product["id"])


def test_seed_products_only_into_empty_catalog(db):
    assert catalog.seed_products(db) == len(catalog.SAMPLE_PRODUCTS)
    assert catalog.seed_products(db) == 0
    assert db["product"].count_documents({}) == len(catalog.SAMPLE_PRODUCTS)


def test_products_by_id_ignores_unknown_ids(db, product):
    found = catalog.products_by_id(db, [product["id"], str(ObjectId()), "garbage"])
    assert list(found) == [product["id"]]
