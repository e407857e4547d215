"""
MongoDB repository (motor)
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from guestdrop.models.billing import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED, Plan, Subscription, Usage
from guestdrop.models.upload import UploadRecord, UploadState, UploadToken
from guestdrop.models.user import UserInDB
from guestdrop.utils.helpers import ensure_utc, utc_now
from .base import Repository, normalize_document

logger = logging.getLogger(__name__)


class MongoRepository(Repository):

    def __init__(self, mongo_url: str, db_name: str, client: AsyncIOMotorClient = None):
        self.client = client or AsyncIOMotorClient(
            mongo_url,
            tz_aware=True,
            maxPoolSize=100,
            minPoolSize=10,
            maxIdleTimeMS=30000,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            waitQueueTimeoutMS=10000
        )
        self.db = self.client[db_name]

    async def init(self):
        """Create necessary indexes for optimal query performance"""
        await self.db.users.create_index("email", unique=True)
        await self.db.users.create_index("id", unique=True)

        await self.db.subscription_plans.create_index("name", unique=True)
        await self.db.user_subscriptions.create_index([("user_id", 1), ("created_at", -1)])
        await self.db.usage_tracking.create_index([("user_id", 1), ("subscription_id", 1)], unique=True)

        await self.db.upload_tokens.create_index("token", unique=True)
        await self.db.upload_tokens.create_index("id", unique=True)
        await self.db.upload_tokens.create_index([("user_id", 1), ("created_at", -1)])

        await self.db.uploads.create_index("id", unique=True)
        await self.db.uploads.create_index("token_id")
        await self.db.uploads.create_index([("state", 1), ("created_at", 1)])
        await self.db.uploads.create_index([("user_id", 1), ("created_at", -1)])
        logger.info("MongoDB indexes ready")

    async def close(self):
        self.client.close()

    # ============ Users ============

    async def create_user(self, email: str, name: str, password_hash: str, is_admin: bool = False) -> UserInDB:
        user = UserInDB(
            id=str(uuid.uuid4()),
            email=email.lower(),
            name=name,
            password_hash=password_hash,
            is_admin=is_admin,
            created_at=utc_now(),
        )
        await self.db.users.insert_one(user.model_dump())
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[UserInDB]:
        doc = await self.db.users.find_one({"id": user_id}, {"_id": 0})
        return UserInDB(**normalize_document(doc)) if doc else None

    async def get_user_by_email(self, email: str) -> Optional[UserInDB]:
        doc = await self.db.users.find_one({"email": email.lower()}, {"_id": 0})
        return UserInDB(**normalize_document(doc)) if doc else None

    # ============ Plans & subscriptions ============

    async def upsert_plan(self, plan: dict) -> Plan:
        fields = {k: v for k, v in plan.items() if k != "id"}
        await self.db.subscription_plans.update_one(
            {"name": plan["name"]},
            {"$set": fields, "$setOnInsert": {"id": plan.get("id") or str(uuid.uuid4()), "active": True}},
            upsert=True
        )
        return await self.get_plan_by_name(plan["name"])

    async def list_plans(self) -> List[Plan]:
        docs = await self.db.subscription_plans.find({"active": True}, {"_id": 0}).sort("price", ASCENDING).to_list(100)
        return [Plan(**doc) for doc in docs]

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        doc = await self.db.subscription_plans.find_one({"id": plan_id}, {"_id": 0})
        return Plan(**doc) if doc else None

    async def get_plan_by_name(self, name: str) -> Optional[Plan]:
        doc = await self.db.subscription_plans.find_one({"name": name, "active": True}, {"_id": 0})
        return Plan(**doc) if doc else None

    async def create_subscription(self, user_id: str, plan_id: str, now: Optional[datetime] = None) -> Subscription:
        now = now or utc_now()
        plan = await self.get_plan(plan_id)
        if not plan:
            raise ValueError(f"Plan not found: {plan_id}")

        await self.db.user_subscriptions.update_many(
            {"user_id": user_id, "status": SUBSCRIPTION_ACTIVE},
            {"$set": {"status": SUBSCRIPTION_CANCELLED}}
        )
        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            plan_id=plan_id,
            status=SUBSCRIPTION_ACTIVE,
            current_period_start=now,
            current_period_end=now + timedelta(days=plan.validity_days),
            created_at=now,
        )
        await self.db.user_subscriptions.insert_one(subscription.model_dump())
        await self.db.usage_tracking.insert_one(
            Usage(user_id=user_id, subscription_id=subscription.id).model_dump()
        )
        return subscription

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        doc = await self.db.user_subscriptions.find_one(
            {"user_id": user_id, "status": SUBSCRIPTION_ACTIVE},
            {"_id": 0},
            sort=[("created_at", DESCENDING)]
        )
        return Subscription(**normalize_document(doc)) if doc else None

    async def list_subscriptions(self, user_id: str) -> List[Subscription]:
        docs = await self.db.user_subscriptions.find(
            {"user_id": user_id}, {"_id": 0}
        ).sort("created_at", DESCENDING).to_list(100)
        return [Subscription(**normalize_document(doc)) for doc in docs]

    async def get_usage(self, user_id: str) -> Usage:
        subscription = await self.get_subscription(user_id)
        if not subscription:
            return Usage(user_id=user_id)

        doc = await self.db.usage_tracking.find_one(
            {"user_id": user_id, "subscription_id": subscription.id}, {"_id": 0}
        )
        if not doc:
            return Usage(user_id=user_id, subscription_id=subscription.id)
        return Usage(**doc)

    async def increment_usage(self, user_id: str, size: int, file_count: int = 1) -> bool:
        subscription = await self.get_subscription(user_id)
        if not subscription:
            return False

        await self.db.usage_tracking.update_one(
            {"user_id": user_id, "subscription_id": subscription.id},
            {"$inc": {"file_count": file_count, "storage_bytes_used": size}},
            upsert=True
        )
        return True

    # ============ Upload tokens ============

    async def create_token(self, token: UploadToken) -> UploadToken:
        await self.db.upload_tokens.insert_one(normalize_document(token.model_dump()))
        return token

    async def get_token_by_value(self, value: str) -> Optional[UploadToken]:
        doc = await self.db.upload_tokens.find_one({"token": value}, {"_id": 0})
        return UploadToken(**normalize_document(doc)) if doc else None

    async def get_token_by_id(self, token_id: str) -> Optional[UploadToken]:
        doc = await self.db.upload_tokens.find_one({"id": token_id}, {"_id": 0})
        return UploadToken(**normalize_document(doc)) if doc else None

    async def list_tokens(self, user_id: str) -> List[UploadToken]:
        docs = await self.db.upload_tokens.find(
            {"user_id": user_id, "deleted_at": None}, {"_id": 0}
        ).sort("created_at", DESCENDING).to_list(1000)
        return [UploadToken(**normalize_document(doc)) for doc in docs]

    async def list_expired_tokens(self, now: datetime) -> List[UploadToken]:
        docs = await self.db.upload_tokens.find(
            {"deleted_at": None, "expires_at": {"$ne": None, "$lt": ensure_utc(now)}}, {"_id": 0}
        ).to_list(None)
        return [UploadToken(**normalize_document(doc)) for doc in docs]

    async def increment_token_upload_count(self, token_id: str, count: int) -> bool:
        query = {"id": token_id}
        if count > 0:
            # Only succeed if the ceiling holds after the increment
            query["$expr"] = {"$lte": [{"$add": ["$current_uploads", count]}, "$max_uploads"]}

        result = await self.db.upload_tokens.update_one(query, {"$inc": {"current_uploads": count}})
        return result.modified_count == 1

    async def update_token(self, token_id: str, **fields) -> bool:
        if not fields:
            return False
        result = await self.db.upload_tokens.update_one(
            {"id": token_id}, {"$set": normalize_document(fields)}
        )
        return result.matched_count > 0

    async def increment_token_access(self, token_id: str) -> None:
        await self.db.upload_tokens.update_one({"id": token_id}, {"$inc": {"access_count": 1}})

    # ============ Upload records ============

    async def create_upload_record(self, record: UploadRecord) -> UploadRecord:
        await self.db.uploads.insert_one(normalize_document(record.model_dump()))
        return record

    async def delete_upload_record(self, record_id: str) -> bool:
        result = await self.db.uploads.delete_one({"id": record_id})
        return result.deleted_count > 0

    async def get_upload_record(self, record_id: str) -> Optional[UploadRecord]:
        doc = await self.db.uploads.find_one({"id": record_id}, {"_id": 0})
        return UploadRecord(**normalize_document(doc)) if doc else None

    async def list_records_by_state(self, state: UploadState, limit: Optional[int] = None) -> List[UploadRecord]:
        cursor = self.db.uploads.find(
            {"state": UploadState(state).value}, {"_id": 0}
        ).sort([("created_at", ASCENDING), ("id", ASCENDING)])
        docs = await cursor.to_list(limit)
        return [UploadRecord(**normalize_document(doc)) for doc in docs]

    async def count_records_by_state(self, state: UploadState) -> int:
        return await self.db.uploads.count_documents({"state": UploadState(state).value})

    async def list_records_by_token(self, token_id: str) -> List[UploadRecord]:
        docs = await self.db.uploads.find(
            {"token_id": token_id}, {"_id": 0}
        ).sort("created_at", ASCENDING).to_list(None)
        return [UploadRecord(**normalize_document(doc)) for doc in docs]

    async def list_records_by_user(self, user_id: str) -> List[UploadRecord]:
        docs = await self.db.uploads.find(
            {"user_id": user_id}, {"_id": 0}
        ).sort("created_at", DESCENDING).to_list(None)
        return [UploadRecord(**normalize_document(doc)) for doc in docs]

    async def update_record_state(self, record_id: str, new_state: UploadState, **fields) -> bool:
        update = normalize_document({"state": UploadState(new_state), **fields})
        result = await self.db.uploads.update_one({"id": record_id}, {"$set": update})
        return result.matched_count > 0
