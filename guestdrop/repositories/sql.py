"""
Relational repository (SQLAlchemy asyncio).

Defaults to SQLite through aiosqlite; any async SQLAlchemy URL works.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Type

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from guestdrop.models.billing import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED, Plan, Subscription, Usage
from guestdrop.models.upload import UploadRecord, UploadState, UploadToken
from guestdrop.models.user import UserInDB
from guestdrop.utils.helpers import is_past, utc_now
from .base import Repository, normalize_document
from .sql_tables import Base, PlanRow, SubscriptionRow, TokenRow, UploadRow, UsageRow, UserRow, new_id

logger = logging.getLogger(__name__)


def _to_model(model_cls: Type, row):
    if row is None:
        return None
    doc = {column.key: getattr(row, column.key) for column in row.__table__.columns}
    return model_cls(**normalize_document(doc))


class SqlRepository(Repository):

    def __init__(self, database_url: str, echo: bool = False):
        engine_kwargs = {"echo": echo}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=10, max_overflow=20)
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def init(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQL schema ready")

    async def close(self):
        await self.engine.dispose()

    # ============ Users ============

    async def create_user(self, email: str, name: str, password_hash: str, is_admin: bool = False) -> UserInDB:
        async with self.session_maker() as session:
            row = UserRow(
                id=new_id(),
                email=email.lower(),
                name=name,
                password_hash=password_hash,
                is_admin=is_admin,
                created_at=utc_now(),
            )
            session.add(row)
            await session.commit()
            return _to_model(UserInDB, row)

    async def get_user_by_id(self, user_id: str) -> Optional[UserInDB]:
        async with self.session_maker() as session:
            return _to_model(UserInDB, await session.get(UserRow, user_id))

    async def get_user_by_email(self, email: str) -> Optional[UserInDB]:
        async with self.session_maker() as session:
            result = await session.execute(select(UserRow).where(UserRow.email == email.lower()))
            return _to_model(UserInDB, result.scalar_one_or_none())

    # ============ Plans & subscriptions ============

    async def upsert_plan(self, plan: dict) -> Plan:
        async with self.session_maker() as session:
            result = await session.execute(select(PlanRow).where(PlanRow.name == plan["name"]))
            row = result.scalar_one_or_none()
            if row is None:
                row = PlanRow(id=plan.get("id") or new_id(), **{k: v for k, v in plan.items() if k != "id"})
                session.add(row)
            else:
                for key, value in plan.items():
                    if key != "id":
                        setattr(row, key, value)
            await session.commit()
            return _to_model(Plan, row)

    async def list_plans(self) -> List[Plan]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(PlanRow).where(PlanRow.active.is_(True)).order_by(PlanRow.price.asc())
            )
            return [_to_model(Plan, row) for row in result.scalars()]

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        async with self.session_maker() as session:
            return _to_model(Plan, await session.get(PlanRow, plan_id))

    async def get_plan_by_name(self, name: str) -> Optional[Plan]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(PlanRow).where(PlanRow.name == name, PlanRow.active.is_(True))
            )
            return _to_model(Plan, result.scalar_one_or_none())

    async def create_subscription(self, user_id: str, plan_id: str, now: Optional[datetime] = None) -> Subscription:
        now = now or utc_now()
        async with self.session_maker() as session:
            plan = await session.get(PlanRow, plan_id)
            if plan is None:
                raise ValueError(f"Plan not found: {plan_id}")

            await session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.user_id == user_id, SubscriptionRow.status == SUBSCRIPTION_ACTIVE)
                .values(status=SUBSCRIPTION_CANCELLED)
            )
            row = SubscriptionRow(
                id=new_id(),
                user_id=user_id,
                plan_id=plan_id,
                status=SUBSCRIPTION_ACTIVE,
                current_period_start=now,
                current_period_end=now + timedelta(days=plan.validity_days),
                created_at=now,
            )
            session.add(row)
            session.add(UsageRow(id=new_id(), user_id=user_id, subscription_id=row.id))
            await session.commit()
            return _to_model(Subscription, row)

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(SubscriptionRow)
                .where(SubscriptionRow.user_id == user_id, SubscriptionRow.status == SUBSCRIPTION_ACTIVE)
                .order_by(SubscriptionRow.created_at.desc())
                .limit(1)
            )
            return _to_model(Subscription, result.scalar_one_or_none())

    async def list_subscriptions(self, user_id: str) -> List[Subscription]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(SubscriptionRow)
                .where(SubscriptionRow.user_id == user_id)
                .order_by(SubscriptionRow.created_at.desc())
            )
            return [_to_model(Subscription, row) for row in result.scalars()]

    async def get_usage(self, user_id: str) -> Usage:
        subscription = await self.get_subscription(user_id)
        if not subscription:
            return Usage(user_id=user_id)

        async with self.session_maker() as session:
            result = await session.execute(
                select(UsageRow).where(
                    UsageRow.user_id == user_id,
                    UsageRow.subscription_id == subscription.id
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return Usage(user_id=user_id, subscription_id=subscription.id)
            return Usage(
                user_id=user_id,
                subscription_id=subscription.id,
                file_count=row.file_count,
                storage_bytes_used=row.storage_bytes_used,
            )

    async def increment_usage(self, user_id: str, size: int, file_count: int = 1) -> bool:
        subscription = await self.get_subscription(user_id)
        if not subscription:
            return False

        async with self.session_maker() as session:
            result = await session.execute(
                update(UsageRow)
                .where(UsageRow.user_id == user_id, UsageRow.subscription_id == subscription.id)
                .values(
                    file_count=UsageRow.file_count + file_count,
                    storage_bytes_used=UsageRow.storage_bytes_used + size,
                )
            )
            if result.rowcount == 0:
                session.add(UsageRow(
                    id=new_id(),
                    user_id=user_id,
                    subscription_id=subscription.id,
                    file_count=file_count,
                    storage_bytes_used=size,
                ))
            await session.commit()
            return True

    # ============ Upload tokens ============

    async def create_token(self, token: UploadToken) -> UploadToken:
        async with self.session_maker() as session:
            row = TokenRow(**normalize_document(token.model_dump()))
            session.add(row)
            await session.commit()
            return _to_model(UploadToken, row)

    async def get_token_by_value(self, value: str) -> Optional[UploadToken]:
        async with self.session_maker() as session:
            result = await session.execute(select(TokenRow).where(TokenRow.token == value))
            return _to_model(UploadToken, result.scalar_one_or_none())

    async def get_token_by_id(self, token_id: str) -> Optional[UploadToken]:
        async with self.session_maker() as session:
            return _to_model(UploadToken, await session.get(TokenRow, token_id))

    async def list_tokens(self, user_id: str) -> List[UploadToken]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TokenRow)
                .where(TokenRow.user_id == user_id, TokenRow.deleted_at.is_(None))
                .order_by(TokenRow.created_at.desc())
            )
            return [_to_model(UploadToken, row) for row in result.scalars()]

    async def list_expired_tokens(self, now: datetime) -> List[UploadToken]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TokenRow).where(TokenRow.deleted_at.is_(None), TokenRow.expires_at.is_not(None))
            )
            tokens = [_to_model(UploadToken, row) for row in result.scalars()]
        # SQLite drops the offset, so compare after normalizing
        return [token for token in tokens if is_past(token.expires_at, now)]

    async def increment_token_upload_count(self, token_id: str, count: int) -> bool:
        stmt = update(TokenRow).where(TokenRow.id == token_id)
        if count > 0:
            stmt = stmt.where(TokenRow.current_uploads + count <= TokenRow.max_uploads)
        stmt = stmt.values(current_uploads=TokenRow.current_uploads + count)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def update_token(self, token_id: str, **fields) -> bool:
        if not fields:
            return False
        async with self.session_maker() as session:
            result = await session.execute(
                update(TokenRow).where(TokenRow.id == token_id).values(**normalize_document(fields))
            )
            await session.commit()
            return result.rowcount > 0

    async def increment_token_access(self, token_id: str) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(TokenRow)
                .where(TokenRow.id == token_id)
                .values(access_count=TokenRow.access_count + 1)
            )
            await session.commit()

    # ============ Upload records ============

    async def create_upload_record(self, record: UploadRecord) -> UploadRecord:
        async with self.session_maker() as session:
            row = UploadRow(**normalize_document(record.model_dump()))
            session.add(row)
            await session.commit()
            return _to_model(UploadRecord, row)

    async def delete_upload_record(self, record_id: str) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(delete(UploadRow).where(UploadRow.id == record_id))
            await session.commit()
            return result.rowcount > 0

    async def get_upload_record(self, record_id: str) -> Optional[UploadRecord]:
        async with self.session_maker() as session:
            return _to_model(UploadRecord, await session.get(UploadRow, record_id))

    async def list_records_by_state(self, state: UploadState, limit: Optional[int] = None) -> List[UploadRecord]:
        stmt = (
            select(UploadRow)
            .where(UploadRow.state == UploadState(state).value)
            .order_by(UploadRow.created_at.asc(), UploadRow.id.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return [_to_model(UploadRecord, row) for row in result.scalars()]

    async def count_records_by_state(self, state: UploadState) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(func.count()).select_from(UploadRow).where(UploadRow.state == UploadState(state).value)
            )
            return result.scalar_one()

    async def list_records_by_token(self, token_id: str) -> List[UploadRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UploadRow).where(UploadRow.token_id == token_id).order_by(UploadRow.created_at.asc())
            )
            return [_to_model(UploadRecord, row) for row in result.scalars()]

    async def list_records_by_user(self, user_id: str) -> List[UploadRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UploadRow).where(UploadRow.user_id == user_id).order_by(UploadRow.created_at.desc())
            )
            return [_to_model(UploadRecord, row) for row in result.scalars()]

    async def update_record_state(self, record_id: str, new_state: UploadState, **fields) -> bool:
        values = normalize_document({"state": UploadState(new_state), **fields})
        async with self.session_maker() as session:
            result = await session.execute(
                update(UploadRow).where(UploadRow.id == record_id).values(**values)
            )
            await session.commit()
            return result.rowcount > 0
