"""
Aggregation reports over the books collection.
"""

from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import retry_on_disconnect
from errors import EmptyResultError
from repositories import BookRepository


@retry_on_disconnect
def count_by_genre(db: Database) -> Dict[str, int]:
    pipeline = [
        {"$group": {"_id": "$genre", "totalBooks": {"$sum": 1}}},
        {"$sort": {"_id": ASCENDING}},
    ]
    rows = db[BookRepository.collection_name].aggregate(pipeline)
    return {row["_id"]: row["totalBooks"] for row in rows}


@retry_on_disconnect
def average_published_year(db: Database) -> float:
    """Mean publishedYear; books without one are left out of the mean."""
    pipeline = [
        {"$match": {"publishedYear": {"$exists": True, "$ne": None}}},
        {"$group": {"_id": None, "averagePublishedYear": {"$avg": "$publishedYear"}, "books": {"$sum": 1}}},
    ]
    rows = list(db[BookRepository.collection_name].aggregate(pipeline))
    if not rows or rows[0].get("averagePublishedYear") is None:
        raise EmptyResultError("No books with a publishedYear to average")
    return float(rows[0]["averagePublishedYear"])


@retry_on_disconnect
def top_rated_book(db: Database) -> Optional[Dict[str, Any]]:
    """Highest rated book; ties go to the earliest inserted. None when no book is rated."""
    cursor = (
        db[BookRepository.collection_name]
        .find({"rating": {"$exists": True, "$ne": None}})
        .sort([("rating", DESCENDING), ("_id", ASCENDING)])
        .limit(1)
    )
    for doc in cursor:
        return doc
    return None
