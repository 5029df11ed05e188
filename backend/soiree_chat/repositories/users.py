import re
from typing import Any, Dict, Iterable, List, Optional

import pymongo

from .. import config
from ..models import utcnow
from .base import Repository

USER_PROJECTION = {"email": 1, "firstname": 1, "lastname": 1, "admin": 1, "last_seen": 1}


class UserRepository(Repository):
    collection_name = "users"

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.find_one({"email": email}, projection=USER_PROJECTION)

    def find_by_emails(self, emails: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        wanted = list(set(emails))
        if not wanted:
            return {}
        users = self.find_many({"email": {"$in": wanted}}, projection=USER_PROJECTION)
        return {u["email"]: u for u in users}

    def search(
        self,
        query: str,
        limit: int,
        exclude: Optional[str] = None,
        admins_only: bool = False,
    ) -> List[Dict[str, Any]]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        conditions: List[Dict[str, Any]] = [
            {"$or": [{"firstname": pattern}, {"lastname": pattern}, {"email": pattern}]}
        ]
        if exclude:
            conditions.append({"email": {"$ne": exclude}})
        if admins_only:
            conditions.append({"admin": {"$in": [1, True]}})
        return self.find_many(
            {"$and": conditions},
            sort=[("firstname", pymongo.ASCENDING), ("lastname", pymongo.ASCENDING)],
            limit=limit,
            projection=USER_PROJECTION,
        )

    def update_last_seen(self, email: str, at=None) -> None:
        self.update_one({"email": email}, {"$set": {"last_seen": at or utcnow()}})


class TokenRepository(Repository):
    """Push device tokens registered by the outer application."""

    collection_name = "fcm_tokens"

    def tokens_for_users(self, emails: Iterable[str]) -> List[str]:
        wanted = list(set(emails))
        if not wanted:
            return []
        docs = self.find_many({"user_id": {"$in": wanted}}, projection={"token": 1})
        seen = set()
        tokens = []
        for doc in docs:
            token = doc.get("token")
            if token and token not in seen:
                seen.add(token)
                tokens.append(token)
        return tokens

    def delete_tokens(self, tokens: Iterable[str]) -> int:
        doomed = list(set(tokens))
        if not doomed:
            return 0
        with pymongo.timeout(config.STORE_LIST_TIMEOUT):
            return self.collection.delete_many({"token": {"$in": doomed}}).deleted_count
