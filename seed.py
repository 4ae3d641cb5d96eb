"""
Demo data for a fresh database: five books, three users, three products
and two orders referencing them.
"""

import logging
from typing import Any, Dict

from pymongo.database import Database

from repositories import BookRepository, OrderRepository, ProductRepository, UserRepository

logger = logging.getLogger(__name__)

BOOKS = [
    {"title": "To kill you", "author": "James redington", "publisherYear": 2001, "genre": "Fiction", "ISBN": "2343-4224-2424-42424"},
    {"title": "The well", "author": " Gearge Maten", "publisherYear": 2024, "genre": "action", "ISBN": "2323-324-34232-424"},
    {"title": "the catcher", "author": "Kelvin", "publishedYear": 2025, "genre": "Classy", "ISBN": "12323-989-3443-34352"},
    {"title": "Dolls House", "author": "julien banier", "publishedYear": 2018, "genre": "Marriage", "ISBN": "644-4532-35454-343"},
    {"title": "Chozi la kheri", "author": "Ken walibora", "PublishedYear": 2012, "genre": "Fiction", "ISBN": "53453- 4546 -34534-2214"},
]

USERS = [
    {"name": "kelvin", "email": "kelvin@gmail.com", "telno": 743423232},
    {"name": "Gravin", "email": "gravin@gmail.com", "telno": 742323989},
    {"name": "Kimber", "email": "kimber@gmail.com", "telno": 749894392},
]

PRODUCTS = [
    {"name": "Laptop", "category": "Electronics", "price": 1200, "stock": 10},
    {"name": "Smartphone", "category": "Electronics", "price": 800, "stock": 20},
    {"name": "Headphones", "category": "Electronics", "price": 100, "stock": 50},
]


def seed_demo_data(db: Database) -> Dict[str, Any]:
    books = BookRepository(db)
    if books.count() > 0:
        return {"status": "exists", "books": books.count()}

    book_ids = books.insert_batch(BOOKS)
    user_ids = UserRepository(db).insert_batch(USERS)
    product_ids = ProductRepository(db).insert_batch(PRODUCTS)

    orders = [
        {
            "userId": user_ids[0],
            "products": [
                {"productId": product_ids[0], "quantity": 1},
                {"productId": product_ids[1], "quantity": 2},
            ],
            "status": "Shipped",
        },
        {
            "userId": user_ids[1],
            "products": [{"productId": product_ids[1], "quantity": 1}],
            "status": "Processing",
        },
    ]
    order_ids = OrderRepository(db).insert_batch(orders)

    logger.info("Seeded %d books, %d users, %d products, %d orders", len(book_ids), len(user_ids), len(product_ids), len(order_ids))
    return {
        "status": "seeded",
        "books": len(book_ids),
        "users": len(user_ids),
        "products": len(product_ids),
        "orders": len(order_ids),
    }
