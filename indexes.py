"""
Index declarations, applied once when the app starts.

Queries return the same results with or without these; uniqueness is
also checked by the repositories before every write.
"""

import logging
from typing import List

from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.database import Database

from database import retry_on_disconnect

logger = logging.getLogger(__name__)

# (collection, keys, options)
INDEXES = [
    ("books", [("author", ASCENDING)], {}),
    ("books", [("genre", ASCENDING), ("publishedYear", DESCENDING)], {}),
    ("books", [("title", TEXT)], {}),
    ("books", [("ISBN", ASCENDING)], {"unique": True}),
    ("users", [("email", ASCENDING)], {"unique": True}),
]


@retry_on_disconnect
def apply_indexes(db: Database) -> List[str]:
    names = []
    for collection, keys, options in INDEXES:
        name = db[collection].create_index(keys, **options)
        logger.info("Index %s.%s ready", collection, name)
        names.append(name)
    return names
