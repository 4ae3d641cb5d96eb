import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

import repositories

from errors import NotFoundError, ValidationError


@pytest.fixture
def shop(users, products):
    user_id = users.insert({"name": "kelvin", "email": "kelvin@gmail.com", "telno": 743423232})
    laptop = products.insert({"name": "Laptop", "category": "Electronics", "price": 1200, "stock": 10})
    phone = products.insert({"name": "Smartphone", "category": "Electronics", "price": 800, "stock": 20})
    return {"user": user_id, "laptop": laptop, "phone": phone}


# ----------------------
# Users
# ----------------------

def test_user_email_is_unique_ignoring_case(users):
    users.insert({"name": "Gravin", "email": "gravin@gmail.com"})

    with pytest.raises(ValidationError):
        users.insert({"name": "Other Gravin", "email": "Gravin@Gmail.com"})


def test_user_lookup_by_email(users):
    users.insert({
        "name": "Kimber",
        "email": "kimber@gmail.com",
        "address": {"street": "1 Moi Avenue", "city": "Nairobi", "zip": "00100"},
    })

    user = users.by_email(" KIMBER@gmail.com ")

    assert user["name"] == "Kimber"
    assert user["address"]["city"] == "Nairobi"
    with pytest.raises(NotFoundError):
        users.by_email("nobody@gmail.com")


def test_user_rejects_bad_email(users):
    with pytest.raises(ValidationError):
        users.insert({"name": "kelvin", "email": "not-an-email"})


def test_user_phone_stored_as_text(users):
    users.insert({"name": "kelvin", "email": "kelvin@gmail.com", "telno": 743423232})

    assert users.find()[0]["telno"] == "743423232"


# ----------------------
# Products
# ----------------------

def test_product_stock_cannot_go_negative(products):
    with pytest.raises(ValidationError):
        products.insert({"name": "Headphones", "category": "Electronics", "price": 100, "stock": -1})

    product_id = products.insert({"name": "Headphones", "category": "Electronics", "price": 100, "stock": 50})
    with pytest.raises(ValidationError):
        products.update_one({"_id": product_id}, {"stock": -5})
    assert products.get(product_id)["stock"] == 50


def test_products_in_category(products):
    products.insert({"name": "Laptop", "category": "Electronics", "price": 1200})
    products.insert({"name": "Mug", "category": "Kitchen", "price": 5})

    assert [p["name"] for p in products.in_category("Kitchen")] == ["Mug"]


# ----------------------
# Orders
# ----------------------

def test_order_total_computed_from_product_prices(orders, shop):
    order_id = orders.insert({
        "userId": shop["user"],
        "products": [
            {"productId": shop["laptop"], "quantity": 1},
            {"productId": shop["phone"], "quantity": 2},
        ],
    })

    order = orders.get(order_id)
    assert order["totalAmount"] == 2800.0
    assert [line["price"] for line in order["products"]] == [1200.0, 800.0]
    assert order["status"] == "Processing"


def test_order_keeps_caller_prices_when_consistent(orders, shop):
    order_id = orders.insert({
        "userId": shop["user"],
        "products": [{"productId": shop["phone"], "quantity": 2, "price": 750}],
        "totalAmount": 1500,
        "status": "Shipped",
    })

    order = orders.get(order_id)
    assert order["totalAmount"] == 1500.0
    assert order["status"] == "Shipped"


def test_order_total_mismatch_rejected(orders, shop):
    with pytest.raises(ValidationError):
        orders.insert({
            "userId": shop["user"],
            "products": [{"productId": shop["laptop"], "quantity": 1}],
            "totalAmount": 99,
        })
    assert orders.count() == 0


def test_order_requires_known_user_and_products(orders, shop):
    with pytest.raises(ValidationError):
        orders.insert({"userId": str(ObjectId()), "products": [{"productId": shop["laptop"], "quantity": 1}]})
    with pytest.raises(ValidationError):
        orders.insert({"userId": shop["user"], "products": [{"productId": str(ObjectId()), "quantity": 1}]})
    with pytest.raises(ValidationError):
        orders.insert({"userId": 1, "products": [{"productId": shop["laptop"], "quantity": 1}]})
    with pytest.raises(ValidationError):
        orders.insert({"userId": shop["user"], "products": []})


def test_order_status_must_be_known(orders, shop):
    order_id = orders.insert({"userId": shop["user"], "products": [{"productId": shop["laptop"], "quantity": 1}]})

    assert orders.update_one({"_id": order_id}, {"status": "Delivered"}) == 1
    assert orders.get(order_id)["status"] == "Delivered"
    with pytest.raises(ValidationError):
        orders.update_one({"_id": order_id}, {"status": "Lost"})


def test_order_total_follows_new_lines(orders, shop):
    order_id = orders.insert({"userId": shop["user"], "products": [{"productId": shop["laptop"], "quantity": 1}]})

    orders.update_one({"_id": order_id}, {"products": [{"productId": shop["phone"], "quantity": 3, "price": 800}]})

    assert orders.get(order_id)["totalAmount"] == 2400.0


def test_orders_by_user(orders, users, shop):
    other = users.insert({"name": "Gravin", "email": "gravin@gmail.com"})
    line = [{"productId": shop["phone"], "quantity": 1}]
    first = orders.insert({"userId": shop["user"], "products": line})
    orders.insert({"userId": other, "products": line})
    second = orders.insert({"userId": shop["user"], "products": line})

    assert [str(o["_id"]) for o in orders.by_user(shop["user"])] == [second, first]
    with pytest.raises(ValidationError):
        orders.by_user("bogus")


def test_find_user_by_email_in_any_case(users):
    users.insert({"name": "kelvin", "email": "kelvin@gmail.com"})

    assert len(users.find({"email": " Kelvin@Gmail.com "})) == 1


@pytest.fixture
def drop_after_first_write(monkeypatch, no_sleep):
    real_create = repositories.create_document
    written = []

    def write_then_drop(*args, **kwargs):
        new_id = real_create(*args, **kwargs)
        written.append(new_id)
        if len(written) == 1:
            raise AutoReconnect("connection reset after write")
        return new_id

    monkeypatch.setattr(repositories, "create_document", write_then_drop)
    return written


def test_retried_insert_writes_once(products, drop_after_first_write):
    new_id = products.insert({"name": "Laptop", "category": "Electronics", "price": 1200, "stock": 10})

    assert products.count() == 1
    assert drop_after_first_write == [new_id]


def test_retried_insert_of_unique_document_is_not_a_duplicate(users, drop_after_first_write):
    new_id = users.insert({"name": "Gravin", "email": "gravin@gmail.com"})

    assert users.count() == 1
    assert users.by_email("gravin@gmail.com")["_id"] == ObjectId(new_id)
