"""
Collection repositories.

Each repository wraps one MongoDB collection behind insert / find /
update / delete calls, validating documents with the matching schema
before anything is written.

Contracts worth knowing:
- insert_batch validates the whole batch first; one bad document means
  nothing is written.
- update_one / update_many apply $set semantics and return how many
  documents matched. Filters that match nothing return 0.
- Unique fields (Book.ISBN, User.email) are checked before writing.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import AliasChoices, BaseModel
from pydantic import ValidationError as SchemaValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import BulkWriteError, DuplicateKeyError

from database import create_document, get_documents, now_utc, retry_on_disconnect
from errors import NotFoundError, ValidationError
from schemas import Book, Order, Product, User, collapse_whitespace

logger = logging.getLogger(__name__)

# set by the store layer, never validated or patched
SYSTEM_FIELDS = ("_id", "createdAt", "updatedAt")

LOGICAL_OPERATORS = ("$or", "$and", "$nor")


def to_object_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid ID format: {id_str!r}")


def exact_match(text: str) -> Dict[str, str]:
    """Whole-value match ignoring case and surrounding whitespace."""
    return {"$regex": f"^{re.escape(text.strip())}$", "$options": "i"}


def as_document(doc: Any) -> Dict[str, Any]:
    if isinstance(doc, BaseModel):
        return doc.model_dump(mode="json", exclude_none=True)
    return dict(doc)


def field_aliases(schema: Type[BaseModel]) -> Dict[str, str]:
    """Map every accepted input spelling of a field to its stored name."""
    aliases = {}
    for name, info in schema.model_fields.items():
        if isinstance(info.validation_alias, AliasChoices):
            for choice in info.validation_alias.choices:
                if isinstance(choice, str):
                    aliases[choice] = name
    return aliases


def schema_errors(exc: SchemaValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]


class Repository:
    collection_name: str = ""
    schema: Type[BaseModel] = BaseModel
    unique_fields: tuple = ()
    # field -> the value cleanup its schema validator applies
    normalizers: Dict[str, Callable[[str], str]] = {}

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]
        self.aliases = field_aliases(self.schema)

    @property
    def label(self) -> str:
        return self.schema.__name__

    # ----------------------
    # Shape
    # ----------------------

    def canonical(self, mapping: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Rename aliased keys, turn an id string into an ObjectId and
        clean plain string values the way the schema cleans them on insert."""
        out = {}
        for key, value in (mapping or {}).items():
            if key in LOGICAL_OPERATORS and isinstance(value, list):
                out[key] = [self.canonical(clause) if isinstance(clause, dict) else clause for clause in value]
                continue
            if key == "id":
                key = "_id"
            key = self.aliases.get(key, key)
            if key == "_id" and not isinstance(value, dict):
                value = to_object_id(value)
            elif isinstance(value, str) and key in self.schema.model_fields:
                value = self.normalize(key, value)
            out[key] = value
        return out

    def normalize(self, field: str, value: str) -> str:
        if self.schema.model_config.get("str_strip_whitespace"):
            value = value.strip()
        cleanup = self.normalizers.get(field)
        return cleanup(value) if cleanup else value

    def validate(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        try:
            model = self.schema.model_validate(doc)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid {self.label.lower()}", schema_errors(e)) from e
        return model.model_dump(mode="json", exclude_none=True)

    def prepare(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Turn caller input into the document to insert."""
        return self.validate(doc)

    def merge(self, doc: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        merged = {k: v for k, v in doc.items() if k not in SYSTEM_FIELDS}
        merged.update(patch)
        return merged

    def check_unique(self, doc: Dict[str, Any], exclude_id: Optional[ObjectId] = None):
        for field in self.unique_fields:
            if doc.get(field) is None:
                continue
            query: Dict[str, Any] = {field: doc[field]}
            if exclude_id is not None:
                query["_id"] = {"$ne": exclude_id}
            if self.collection.find_one(query, {"_id": 1}) is not None:
                raise ValidationError(
                    f"{self.label} with {field} {doc[field]!r} already exists",
                    [{"loc": [field], "msg": "duplicate value"}],
                )

    def _patch(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        patch = self.canonical(patch)
        if not patch:
            raise ValidationError("Nothing to update")
        unknown = sorted(k for k in patch if k not in self.schema.model_fields)
        if unknown:
            raise ValidationError(
                f"Unknown {self.label.lower()} field(s): {', '.join(unknown)}",
                [{"loc": [k], "msg": "unknown field"} for k in unknown],
            )
        return patch

    # ----------------------
    # Create
    # ----------------------

    def insert(self, doc: Any) -> str:
        # the id is fixed before the first attempt so a retry can recognise its own earlier write
        return self._insert(as_document(doc), ObjectId())

    @retry_on_disconnect
    def _insert(self, doc: Dict[str, Any], new_id: ObjectId) -> str:
        if self._stored([new_id]):
            return str(new_id)
        data = self.prepare(doc)
        self.check_unique(data)
        data["_id"] = new_id
        try:
            create_document(self.db, self.collection_name, data)
        except DuplicateKeyError as e:
            if self._stored([new_id]):
                return str(new_id)
            raise ValidationError(f"Duplicate {self.label.lower()}: {e.details or e}") from e
        logger.info("Inserted %s %s", self.label, new_id)
        return str(new_id)

    def insert_batch(self, docs: Iterable[Any]) -> List[str]:
        docs = [as_document(doc) for doc in docs]
        return self._insert_batch(docs, [ObjectId() for _ in docs])

    @retry_on_disconnect
    def _insert_batch(self, docs: List[Dict[str, Any]], new_ids: List[ObjectId]) -> List[str]:
        # an earlier attempt may have stored part of the batch before the connection dropped
        stored = self._stored(new_ids)
        pending = []
        problems = []
        seen: Dict[str, Dict[Any, int]] = {field: {} for field in self.unique_fields}
        for index, (doc, new_id) in enumerate(zip(docs, new_ids)):
            try:
                data = self.prepare(doc)
                self.check_unique(data, exclude_id=new_id)
            except ValidationError as e:
                problems.append({"index": index, "msg": e.message, "errors": e.details})
                continue
            for field in self.unique_fields:
                value = data.get(field)
                if value is None:
                    continue
                if value in seen[field]:
                    problems.append({"index": index, "msg": f"{field} {value!r} repeats document {seen[field][value]}"})
                else:
                    seen[field][value] = index
            if new_id not in stored:
                pending.append({**data, "_id": new_id})

        if problems:
            raise ValidationError(f"{len(problems)} problem(s) in batch of {len(docs)}; nothing inserted", problems)

        if pending:
            stamp = now_utc()
            for data in pending:
                data["createdAt"] = stamp
                data["updatedAt"] = stamp
            try:
                self.collection.insert_many(pending)
            except BulkWriteError as e:
                raise ValidationError(f"Batch insert rejected by the store: {e.details}") from e
            logger.info("Inserted %d %s document(s)", len(pending), self.label)
        return [str(new_id) for new_id in new_ids]

    def _stored(self, ids: List[ObjectId]) -> set:
        if not ids:
            return set()
        return {doc["_id"] for doc in self.collection.find({"_id": {"$in": ids}}, {"_id": 1})}

    # ----------------------
    # Read
    # ----------------------

    @retry_on_disconnect
    def find(
        self,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[List] = None,
        limit: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if sort:
            sort = [(self.aliases.get(key, key), direction) for key, direction in sort]
        return get_documents(self.db, self.collection_name, self.canonical(filter_dict), sort, limit, skip)

    @retry_on_disconnect
    def get(self, doc_id: Any) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": to_object_id(doc_id)})
        if doc is None:
            raise NotFoundError(f"{self.label} not found")
        return doc

    @retry_on_disconnect
    def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(self.canonical(filter_dict))

    # ----------------------
    # Update
    # ----------------------

    @retry_on_disconnect
    def update_one(self, filter_dict: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> int:
        patch = self._patch(patch)
        doc = self.collection.find_one(self.canonical(filter_dict))
        if doc is None:
            return 0
        return self._write([doc], patch)

    @retry_on_disconnect
    def update_many(self, filter_dict: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> int:
        patch = self._patch(patch)
        targets = list(self.collection.find(self.canonical(filter_dict)))
        if not targets:
            return 0
        taken = [f for f in self.unique_fields if f in patch]
        if taken and len(targets) > 1:
            raise ValidationError(
                f"Cannot set unique field(s) {', '.join(taken)} on {len(targets)} documents",
                [{"loc": [f], "msg": "duplicate value"} for f in taken],
            )
        return self._write(targets, patch)

    def _write(self, targets: List[Dict[str, Any]], patch: Dict[str, Any]) -> int:
        updates = []
        for doc in targets:
            data = self.validate(self.merge(doc, patch))
            values = {k: data.get(k) for k in patch}
            # derived or normalised fields that changed along with the patch
            values.update({k: v for k, v in data.items() if doc.get(k) != v})
            changed_unique = {f: values[f] for f in self.unique_fields if f in values}
            if changed_unique:
                self.check_unique(changed_unique, exclude_id=doc["_id"])
            values["updatedAt"] = now_utc()
            updates.append((doc["_id"], values))

        # every target is validated before the first write
        matched = 0
        for doc_id, values in updates:
            try:
                matched += self.collection.update_one({"_id": doc_id}, {"$set": values}).matched_count
            except DuplicateKeyError as e:
                raise ValidationError(f"Update rejected by the store: {e.details or e}") from e
        logger.info("Updated %d %s document(s)", matched, self.label)
        return matched

    # ----------------------
    # Delete
    # ----------------------

    @retry_on_disconnect
    def delete_one(self, filter_dict: Optional[Dict[str, Any]]) -> int:
        removed = self.collection.delete_one(self.canonical(filter_dict)).deleted_count
        logger.info("Deleted %d %s document(s)", removed, self.label)
        return removed

    @retry_on_disconnect
    def delete_many(self, filter_dict: Optional[Dict[str, Any]]) -> int:
        removed = self.collection.delete_many(self.canonical(filter_dict)).deleted_count
        logger.info("Deleted %d %s document(s)", removed, self.label)
        return removed


class BookRepository(Repository):
    collection_name = "books"
    schema = Book
    unique_fields = ("ISBN",)
    normalizers = {"ISBN": collapse_whitespace}

    def by_author(self, author: str) -> List[Dict[str, Any]]:
        return self.find({"author": exact_match(author)}, sort=[("title", ASCENDING)])

    def published_after(self, year: int) -> List[Dict[str, Any]]:
        return self.find({"publishedYear": {"$gt": year}}, sort=[("publishedYear", ASCENDING)])

    def search(self, text: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on title, author or genre."""
        pattern = {"$regex": re.escape(text), "$options": "i"}
        return self.find(
            {"$or": [{"title": pattern}, {"author": pattern}, {"genre": pattern}]},
            sort=[("title", ASCENDING)],
            limit=limit,
        )


class UserRepository(Repository):
    collection_name = "users"
    schema = User
    unique_fields = ("email",)
    normalizers = {"email": str.lower}

    def by_email(self, email: str) -> Dict[str, Any]:
        found = self.find({"email": email}, limit=1)
        if not found:
            raise NotFoundError("User not found")
        return found[0]


class ProductRepository(Repository):
    collection_name = "products"
    schema = Product

    def in_category(self, category: str) -> List[Dict[str, Any]]:
        return self.find({"category": category}, sort=[("name", ASCENDING)])


class OrderRepository(Repository):
    collection_name = "orders"
    schema = Order

    def prepare(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Check references and price lines from the product catalogue where the caller left it out."""
        user_id = doc.get("userId")
        if user_id is not None:
            if self.db[UserRepository.collection_name].find_one({"_id": to_object_id(user_id)}, {"_id": 1}) is None:
                raise ValidationError(f"User {user_id} does not exist", [{"loc": ["userId"], "msg": "unknown user"}])

        products = self.db[ProductRepository.collection_name]
        lines = []
        for index, line in enumerate(doc.get("products") or []):
            if not isinstance(line, dict) or line.get("productId") is None:
                lines.append(line)
                continue
            product = products.find_one({"_id": to_object_id(line["productId"])}, {"price": 1})
            if product is None:
                raise ValidationError(
                    f"Product {line['productId']} does not exist",
                    [{"loc": ["products", index, "productId"], "msg": "unknown product"}],
                )
            if line.get("price") is None:
                line = {**line, "price": product.get("price")}
            lines.append(line)
        return self.validate({**doc, "products": lines})

    def validate(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        data = super().validate(doc)
        if "totalAmount" not in data:
            raise ValidationError("Every order line needs a price", [{"loc": ["products"], "msg": "missing price"}])
        return data

    def merge(self, doc: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        merged = super().merge(doc, patch)
        if "products" in patch and "totalAmount" not in patch:
            # recomputed from the new lines
            merged.pop("totalAmount", None)
        return merged

    def by_user(self, user_id: str) -> List[Dict[str, Any]]:
        to_object_id(user_id)
        return self.find({"userId": user_id}, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
