"""
Database Schemas for the Library & Shop service

Each Pydantic model represents a MongoDB collection.
Collection name is the plural lowercase of the class name:
- Book -> "books"
- User -> "users"
- Product -> "products"
- Order -> "orders"

Stored field names are the model field names (camelCase). Misspelled
variants found in older data (publisherYear, PublishedYear) are accepted
on input and stored under the canonical name.
"""

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

# accepted input spellings, shared with the update request models
PUBLISHED_YEAR_ALIASES = AliasChoices("publishedYear", "publisherYear", "PublishedYear", "published_year")
ISBN_ALIASES = AliasChoices("ISBN", "isbn")


def collapse_whitespace(v: str) -> str:
    return "".join(v.split())


class Book(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Author name")
    publishedYear: int = Field(
        ...,
        ge=0,
        le=9999,
        validation_alias=PUBLISHED_YEAR_ALIASES,
        description="Year of publication",
    )
    genre: str = Field(..., min_length=1, description="Genre")
    ISBN: str = Field(..., min_length=1, validation_alias=ISBN_ALIASES, description="ISBN identifier")
    rating: Optional[float] = Field(None, ge=0, le=5, description="Average rating out of 5")

    @field_validator("ISBN")
    @classmethod
    def collapse_isbn(cls, v: str) -> str:
        return collapse_whitespace(v)


class Address(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: str
    city: str
    state: Optional[str] = None
    zip: str


class User(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, description="Full name")
    username: Optional[str] = Field(None, description="Login handle")
    email: EmailStr = Field(..., description="Email address, unique per user")
    telno: Optional[str] = Field(None, description="Phone number")
    address: Optional[Address] = Field(None, description="Postal address")

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("telno", mode="before")
    @classmethod
    def telno_as_text(cls, v):
        # older records store phone numbers as integers
        if isinstance(v, int):
            return str(v)
        return v


class Product(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., ge=0, description="Unit price")
    description: Optional[str] = Field(None, description="Product description")
    category: str = Field(..., min_length=1, description="Product category")
    stock: int = Field(0, ge=0, description="Units in stock")


class OrderStatus(str, Enum):
    pending = "Pending"
    processing = "Processing"
    shipped = "Shipped"
    delivered = "Delivered"
    cancelled = "Cancelled"


class OrderLine(BaseModel):
    productId: str = Field(..., description="Product ObjectId as string")
    quantity: int = Field(..., ge=1, description="Units ordered")
    price: Optional[float] = Field(None, ge=0, description="Unit price at time of order")


class Order(BaseModel):
    userId: str = Field(..., description="User ObjectId as string")
    products: List[OrderLine] = Field(..., min_length=1, description="Ordered lines")
    totalAmount: Optional[float] = Field(None, ge=0, description="Sum of quantity * price over all lines")
    status: OrderStatus = Field(OrderStatus.processing, description="Fulfilment status")

    @model_validator(mode="after")
    def check_total(self):
        # lines without a price are filled in by the repository before the total can be known
        if any(line.price is None for line in self.products):
            return self
        computed = round(sum(line.quantity * line.price for line in self.products), 2)
        if self.totalAmount is not None and abs(self.totalAmount - computed) > 0.01:
            raise ValueError(f"totalAmount {self.totalAmount} does not match line items ({computed})")
        self.totalAmount = computed
        return self
