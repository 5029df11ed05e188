from typing import Any, Dict, List, Optional

import pymongo
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.results import UpdateResult

from .. import config


class Repository:
    """Thin wrapper around one collection.

    Single-document operations run under STORE_TIMEOUT, listings under
    STORE_LIST_TIMEOUT and counts under STORE_AGGREGATE_TIMEOUT.
    """

    collection_name: str = ""

    def __init__(self, db: Database):
        self.db = db
        self.collection: Collection = db[self.collection_name]

    def find_one(self, query: Dict[str, Any], **kwargs) -> Optional[Dict[str, Any]]:
        with pymongo.timeout(config.STORE_TIMEOUT):
            return self.collection.find_one(query, **kwargs)

    def find_many(
        self,
        query: Dict[str, Any],
        sort: Optional[List] = None,
        limit: int = 0,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        with pymongo.timeout(config.STORE_LIST_TIMEOUT):
            cursor = self.collection.find(query, projection)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with pymongo.timeout(config.STORE_TIMEOUT):
            result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def count(self, query: Dict[str, Any]) -> int:
        with pymongo.timeout(config.STORE_AGGREGATE_TIMEOUT):
            return self.collection.count_documents(query)

    def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> UpdateResult:
        with pymongo.timeout(config.STORE_TIMEOUT):
            return self.collection.update_one(query, update, upsert=upsert)

    def delete_one(self, query: Dict[str, Any]) -> int:
        with pymongo.timeout(config.STORE_TIMEOUT):
            return self.collection.delete_one(query).deleted_count
