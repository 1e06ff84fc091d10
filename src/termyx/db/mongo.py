from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .base import BaseDBManager
from ..errors import InsufficientCreditsError, TrialExhaustedError, UserNotFoundError
from ..models.audit import AuditEntry
from ..models.base import DBSerializableModel
from ..models.fraud import BlockedEmailDomain, DeviceFingerprint, IPSignupRecord
from ..models.transaction import CreditTransaction, TransactionType
from ..models.user import Plan, UserAccount


logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=DBSerializableModel)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are stored as string-based `_id` fields and mirrored in the `id`
    attribute of each Pydantic model, which keeps the rest of the system
    agnostic of MongoDB specifics.

    The atomic primitives are single conditional `find_one_and_update` calls:
    the guard lives in the filter, so the check and the write cannot be
    interleaved by another request. The transaction log written after a
    balance change is a separate, best-effort insert and is not atomic with it.
    """

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self._db = database

    @classmethod
    def from_client_uri(cls, uri: str, db_name: str) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri)
        return cls(client[db_name])

    async def ensure_indexes(self) -> None:
        await self._db[BlockedEmailDomain.collection_name].create_index("domain", unique=True)
        await self._db[DeviceFingerprint.collection_name].create_index("fingerprint_hash")
        await self._db[DeviceFingerprint.collection_name].create_index("user_id")
        await self._db[IPSignupRecord.collection_name].create_index(
            [("ip_address", 1), ("created_at", -1)]
        )
        await self._db[CreditTransaction.collection_name].create_index(
            [("user_id", 1), ("created_at", -1)]
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        # Individual document writes are atomic in MongoDB; no session here.
        yield

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _prepare_update(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            raise ValueError("Model must have id to be updated")
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        if "_id" in data and "id" not in data:
            data["id"] = str(data["_id"])
        return model_cls.model_validate(data)

    async def _insert(self, model: TModel) -> TModel:
        col = self._db[model.collection_name]
        await col.insert_one(self._prepare_insert(model))
        return model

    async def _user_exists(self, user_id: str) -> bool:
        col = self._db[UserAccount.collection_name]
        return await col.count_documents({"_id": user_id}, limit=1) > 0

    async def _log_transaction(
        self,
        user_id: str,
        amount: int,
        balance_after: int,
        transaction_type: TransactionType,
        description: str | None,
    ) -> None:
        # Runs after the balance update has committed; failures are logged only
        try:
            await self._insert(
                CreditTransaction(
                    user_id=user_id,
                    amount=amount,
                    balance_after=balance_after,
                    transaction_type=transaction_type,
                    description=description,
                )
            )
        except Exception:
            logger.exception(
                "Transaction log failed for user %s (amount %s)", user_id, amount
            )

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        return await self._insert(user)

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        col = self._db[UserAccount.collection_name]
        doc = await col.find_one({"_id": user_id})
        return self._decode(UserAccount, doc)

    async def update_user(self, user: UserAccount) -> UserAccount:
        col = self._db[UserAccount.collection_name]
        user.updated_at = datetime.utcnow()
        data = self._prepare_update(user)
        await col.replace_one({"_id": data["_id"]}, data, upsert=False)
        return user

    async def get_user_credits(self, user_id: str) -> int:
        col = self._db[UserAccount.collection_name]
        doc = await col.find_one({"_id": user_id}, {"credits": 1})
        if doc is None:
            raise UserNotFoundError(user_id)
        return int(doc.get("credits") or 0)

    # Plans
    async def add_plan(self, plan: Plan) -> Plan:
        return await self._insert(plan)

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        col = self._db[Plan.collection_name]
        doc = await col.find_one({"_id": plan_id})
        return self._decode(Plan, doc)

    # Atomic primitives
    async def deduct_credit(self, user_id: str, description: str | None = None) -> int:
        col = self._db[UserAccount.collection_name]
        doc = await col.find_one_and_update(
            {"_id": user_id, "credits": {"$gt": 0}},
            {"$inc": {"credits": -1}, "$set": {"updated_at": datetime.utcnow()}},
            projection={"credits": 1},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            if not await self._user_exists(user_id):
                raise UserNotFoundError(user_id)
            raise InsufficientCreditsError(user_id)

        new_balance = int(doc["credits"])
        await self._log_transaction(
            user_id, -1, new_balance, TransactionType.USAGE, description
        )
        return new_balance

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None = None,
    ) -> int:
        col = self._db[UserAccount.collection_name]
        doc = await col.find_one_and_update(
            {"_id": user_id},
            {"$inc": {"credits": amount}, "$set": {"updated_at": datetime.utcnow()}},
            projection={"credits": 1},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise UserNotFoundError(user_id)

        new_balance = int(doc["credits"])
        await self._log_transaction(
            user_id, amount, new_balance, transaction_type, description
        )
        return new_balance

    async def increment_free_trial_count(self, user_id: str, limit: int) -> int:
        col = self._db[UserAccount.collection_name]
        # Aggregation-pipeline update so free_trial_used derives from the new count
        doc = await col.find_one_and_update(
            {
                "_id": user_id,
                "$or": [
                    {"free_trial_documents_count": {"$lt": limit}},
                    {"free_trial_documents_count": None},
                ],
            },
            [
                {
                    "$set": {
                        "free_trial_documents_count": {
                            "$add": [{"$ifNull": ["$free_trial_documents_count", 0]}, 1]
                        },
                        "updated_at": datetime.utcnow(),
                    }
                },
                {
                    "$set": {
                        "free_trial_used": {
                            "$gte": ["$free_trial_documents_count", limit]
                        }
                    }
                },
            ],
            projection={"free_trial_documents_count": 1},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            if not await self._user_exists(user_id):
                raise UserNotFoundError(user_id)
            raise TrialExhaustedError(user_id, limit)
        return int(doc["free_trial_documents_count"])

    # Credit transactions
    async def get_transactions(
        self, user_id: str, limit: int, offset: int = 0
    ) -> List[CreditTransaction]:
        col = self._db[CreditTransaction.collection_name]
        cursor = (
            col.find({"user_id": user_id})
            .sort("created_at", -1)
            .skip(offset)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [self._decode(CreditTransaction, d) for d in docs if d is not None]  # type: ignore[misc]

    async def count_transactions(self, user_id: str) -> int:
        col = self._db[CreditTransaction.collection_name]
        return await col.count_documents({"user_id": user_id})

    # Fraud prevention
    async def get_blocked_email_domain(self, domain: str) -> Optional[BlockedEmailDomain]:
        col = self._db[BlockedEmailDomain.collection_name]
        doc = await col.find_one({"domain": domain})
        return self._decode(BlockedEmailDomain, doc)

    async def upsert_blocked_email_domain(self, entry: BlockedEmailDomain) -> bool:
        col = self._db[BlockedEmailDomain.collection_name]
        data = self._prepare_insert(entry)
        try:
            result = await col.update_one(
                {"domain": entry.domain}, {"$setOnInsert": data}, upsert=True
            )
        except DuplicateKeyError:
            return False
        return result.upserted_id is not None

    async def find_device_fingerprint(
        self, fingerprint_hash: str, exclude_user_id: str | None = None
    ) -> Optional[DeviceFingerprint]:
        col = self._db[DeviceFingerprint.collection_name]
        query: Dict[str, Any] = {"fingerprint_hash": fingerprint_hash}
        if exclude_user_id is not None:
            query["user_id"] = {"$ne": exclude_user_id}
        doc = await col.find_one(query)
        return self._decode(DeviceFingerprint, doc)

    async def add_device_fingerprint(self, fingerprint: DeviceFingerprint) -> DeviceFingerprint:
        return await self._insert(fingerprint)

    async def add_ip_signup(self, record: IPSignupRecord) -> IPSignupRecord:
        return await self._insert(record)

    async def count_ip_signups_since(self, ip_address: str, since: datetime) -> int:
        col = self._db[IPSignupRecord.collection_name]
        return await col.count_documents(
            {"ip_address": ip_address, "created_at": {"$gte": since}}
        )

    # Audit
    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        return await self._insert(entry)

    async def get_audit_entries(self, user_id: str) -> List[AuditEntry]:
        col = self._db[AuditEntry.collection_name]
        cursor = col.find({"user_id": user_id}).sort("created_at", 1)
        docs = await cursor.to_list(length=None)
        return [self._decode(AuditEntry, d) for d in docs if d is not None]  # type: ignore[misc]
