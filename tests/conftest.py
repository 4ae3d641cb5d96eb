import mongomock
import pytest

import database
from repositories import BookRepository, OrderRepository, ProductRepository, UserRepository


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    yield client["library_test"]
    client.close()


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(database.time, "sleep", sleeps.append)
    monkeypatch.setenv("DATABASE_RETRIES", "3")
    monkeypatch.setenv("DATABASE_RETRY_BACKOFF", "0.5")
    return sleeps


@pytest.fixture
def sample_books():
    return [
        {"title": "To kill you", "author": "James redington", "publishedYear": 2001, "genre": "Fiction", "ISBN": "2343-4224-2424-42424"},
        {"title": "The well", "author": "Gearge Maten", "publishedYear": 2024, "genre": "action", "ISBN": "2323-324-34232-424"},
        {"title": "the catcher", "author": "Kelvin", "publishedYear": 2025, "genre": "Classy", "ISBN": "12323-989-3443-34352"},
        {"title": "Dolls House", "author": "julien banier", "publishedYear": 2018, "genre": "Marriage", "ISBN": "644-4532-35454-343"},
        {"title": "Chozi la kheri", "author": "Ken walibora", "publishedYear": 2012, "genre": "Fiction", "ISBN": "53453-4546-34534-2214"},
    ]


@pytest.fixture
def books(db):
    return BookRepository(db)


@pytest.fixture
def library(books, sample_books):
    books.insert_batch(sample_books)
    return books


@pytest.fixture
def users(db):
    return UserRepository(db)


@pytest.fixture
def products(db):
    return ProductRepository(db)


@pytest.fixture
def orders(db):
    return OrderRepository(db)
