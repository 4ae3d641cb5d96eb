import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import close_db, get_db
from errors import StoreError
from indexes import apply_indexes
from reports import average_published_year, count_by_genre, top_rated_book
from repositories import BookRepository, OrderRepository, ProductRepository, UserRepository, exact_match
from schemas import ISBN_ALIASES, PUBLISHED_YEAR_ALIASES, Address, Book as BookSchema, Order as OrderSchema, OrderLine, OrderStatus
from schemas import Product as ProductSchema, User as UserSchema
from seed import seed_demo_data

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # server selection and retry backoff block, so keep them off the event loop
    try:
        await run_in_threadpool(lambda: apply_indexes(get_db()))
    except StoreError as e:
        logger.warning("Index setup skipped: %s", e.message)
    yield
    close_db()


app = FastAPI(title="Library & Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# ----------------------
# Utility helpers
# ----------------------

def serialize(doc: dict) -> dict:
    if not doc:
        return doc
    d = {**doc}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    # Convert datetime/date to isoformat for JSON
    for k, v in list(d.items()):
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d

def parse_sort(sort: Optional[str], default: str) -> List:
    field = sort or default
    if field.startswith("-"):
        return [(field[1:], DESCENDING)]
    return [(field, ASCENDING)]

def book_repo(db: Database = Depends(get_db)) -> BookRepository:
    return BookRepository(db)

def user_repo(db: Database = Depends(get_db)) -> UserRepository:
    return UserRepository(db)

def product_repo(db: Database = Depends(get_db)) -> ProductRepository:
    return ProductRepository(db)

def order_repo(db: Database = Depends(get_db)) -> OrderRepository:
    return OrderRepository(db)

# ----------------------
# Health & Schema
# ----------------------

@app.get("/")
def read_root():
    return {"message": "Library & Shop Backend is running"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = get_db()
        response["database"] = "✅ Available"
        response["database_name"] = getattr(db, "name", "✅ Connected")
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except StoreError as e:
        response["database"] = f"❌ Error: {e.message[:50]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    return response

@app.get("/schema")
def get_schema():
    # Return JSON schema-like description for viewer tools
    return {
        "books": BookSchema.model_json_schema(),
        "users": UserSchema.model_json_schema(),
        "products": ProductSchema.model_json_schema(),
        "orders": OrderSchema.model_json_schema(),
    }

# ----------------------
# Pydantic request models
# ----------------------

class UpdateBook(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    publishedYear: Optional[int] = Field(None, validation_alias=PUBLISHED_YEAR_ALIASES)
    genre: Optional[str] = None
    ISBN: Optional[str] = Field(None, validation_alias=ISBN_ALIASES)
    rating: Optional[float] = None

class UpdateUser(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    telno: Optional[str] = None
    address: Optional[Address] = None

class UpdateProduct(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = None

class UpdateOrder(BaseModel):
    products: Optional[List[OrderLine]] = None
    totalAmount: Optional[float] = None
    status: Optional[OrderStatus] = None

def changes(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(mode="json", exclude_none=True)

# ----------------------
# Books Endpoints
# ----------------------

@app.post("/books")
def create_book(book: BookSchema, repo: BookRepository = Depends(book_repo)):
    new_id = repo.insert(book)
    return serialize(repo.get(new_id))

@app.post("/books/batch")
def create_books(books: List[Dict[str, Any]], repo: BookRepository = Depends(book_repo)):
    # all or nothing: one invalid book rejects the batch
    ids = repo.insert_batch(books)
    return {"inserted": len(ids), "ids": ids}

@app.get("/books")
def list_books(
    q: Optional[str] = Query(None, description="Search title, author or genre"),
    author: Optional[str] = None,
    genre: Optional[str] = None,
    published_after: Optional[int] = Query(None, description="Only books published after this year"),
    sort: Optional[str] = Query(None, description="Field to sort by, prefix with - for descending"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    repo: BookRepository = Depends(book_repo),
):
    if q:
        return [serialize(d) for d in repo.search(q, limit=limit)]
    filter_dict: Dict[str, Any] = {}
    if author:
        filter_dict["author"] = exact_match(author)
    if genre:
        filter_dict["genre"] = genre
    if published_after is not None:
        filter_dict["publishedYear"] = {"$gt": published_after}
    docs = repo.find(filter_dict, sort=parse_sort(sort, "title"), limit=limit)
    return [serialize(d) for d in docs]

@app.get("/books/{book_id}")
def get_book(book_id: str, repo: BookRepository = Depends(book_repo)):
    return serialize(repo.get(book_id))

@app.put("/books/{book_id}")
def update_book(book_id: str, payload: UpdateBook, repo: BookRepository = Depends(book_repo)):
    update = changes(payload)
    if update and repo.update_one({"_id": book_id}, update) == 0:
        raise HTTPException(status_code=404, detail="Book not found")
    return serialize(repo.get(book_id))

@app.delete("/books/{book_id}")
def delete_book(book_id: str, repo: BookRepository = Depends(book_repo)):
    if repo.delete_one({"_id": book_id}) == 0:
        raise HTTPException(status_code=404, detail="Book not found")
    return {"status": "deleted", "id": book_id}

@app.delete("/books")
def delete_books_by_genre(genre: str = Query(..., min_length=1), repo: BookRepository = Depends(book_repo)):
    return {"status": "deleted", "deleted": repo.delete_many({"genre": genre})}

# ----------------------
# Users Endpoints
# ----------------------

@app.post("/users")
def create_user(user: UserSchema, repo: UserRepository = Depends(user_repo)):
    new_id = repo.insert(user)
    return serialize(repo.get(new_id))

@app.get("/users")
def list_users(repo: UserRepository = Depends(user_repo)):
    return [serialize(d) for d in repo.find(sort=[("name", ASCENDING)])]

@app.get("/users/by-email")
def get_user_by_email(email: str, repo: UserRepository = Depends(user_repo)):
    return serialize(repo.by_email(email))

@app.get("/users/{user_id}")
def get_user(user_id: str, repo: UserRepository = Depends(user_repo)):
    return serialize(repo.get(user_id))

@app.put("/users/{user_id}")
def update_user(user_id: str, payload: UpdateUser, repo: UserRepository = Depends(user_repo)):
    update = changes(payload)
    if update and repo.update_one({"_id": user_id}, update) == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize(repo.get(user_id))

@app.delete("/users/{user_id}")
def delete_user(user_id: str, repo: UserRepository = Depends(user_repo)):
    if repo.delete_one({"_id": user_id}) == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"status": "deleted", "id": user_id}

# ----------------------
# Products Endpoints
# ----------------------

@app.post("/products")
def create_product(product: ProductSchema, repo: ProductRepository = Depends(product_repo)):
    new_id = repo.insert(product)
    return serialize(repo.get(new_id))

@app.get("/products")
def list_products(category: Optional[str] = None, repo: ProductRepository = Depends(product_repo)):
    docs = repo.in_category(category) if category else repo.find(sort=[("name", ASCENDING)])
    return [serialize(d) for d in docs]

@app.get("/products/{product_id}")
def get_product(product_id: str, repo: ProductRepository = Depends(product_repo)):
    return serialize(repo.get(product_id))

@app.put("/products/{product_id}")
def update_product(product_id: str, payload: UpdateProduct, repo: ProductRepository = Depends(product_repo)):
    update = changes(payload)
    if update and repo.update_one({"_id": product_id}, update) == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize(repo.get(product_id))

@app.delete("/products/{product_id}")
def delete_product(product_id: str, repo: ProductRepository = Depends(product_repo)):
    if repo.delete_one({"_id": product_id}) == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"status": "deleted", "id": product_id}

# ----------------------
# Orders Endpoints
# ----------------------

@app.post("/orders")
def create_order(order: Dict[str, Any], repo: OrderRepository = Depends(order_repo)):
    new_id = repo.insert(order)
    return serialize(repo.get(new_id))

@app.get("/orders")
def list_orders(
    user_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    repo: OrderRepository = Depends(order_repo),
):
    if user_id and status is None:
        docs = repo.by_user(user_id)
    else:
        filt: Dict[str, Any] = {}
        if user_id:
            filt["userId"] = user_id
        if status is not None:
            filt["status"] = status.value
        docs = repo.find(filt, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return [serialize(d) for d in docs]

@app.get("/orders/{order_id}")
def get_order(order_id: str, repo: OrderRepository = Depends(order_repo)):
    return serialize(repo.get(order_id))

@app.put("/orders/{order_id}")
def update_order(order_id: str, payload: UpdateOrder, repo: OrderRepository = Depends(order_repo)):
    update = changes(payload)
    if update and repo.update_one({"_id": order_id}, update) == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize(repo.get(order_id))

@app.delete("/orders/{order_id}")
def delete_order(order_id: str, repo: OrderRepository = Depends(order_repo)):
    if repo.delete_one({"_id": order_id}) == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"status": "deleted", "id": order_id}

# ----------------------
# Reports
# ----------------------

@app.get("/reports/genres")
def genre_report(db: Database = Depends(get_db)):
    return count_by_genre(db)

@app.get("/reports/average-year")
def average_year_report(db: Database = Depends(get_db)):
    return {"averagePublishedYear": average_published_year(db)}

@app.get("/reports/top-rated")
def top_rated_report(db: Database = Depends(get_db)):
    book = top_rated_book(db)
    if book is None:
        raise HTTPException(status_code=404, detail="No rated books")
    return serialize(book)

# ----------------------
# Seed (Demo Data)
# ----------------------

@app.post("/seed")
def seed(db: Database = Depends(get_db)):
    return seed_demo_data(db)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
