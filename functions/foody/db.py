"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from typing import Dict, Iterable, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    create_engine,
    delete,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from notifications.errors import StoreError
from notifications.filters import (
    AgeRange,
    AllUsers,
    AudienceFilter,
    ByIds,
    Custom,
    PremiumUsers,
)
from notifications.types import CampaignStatus, Recipient


class DbClient(Protocol):
    """Interface for database access."""

    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def upsert_user(self, user_id: str, patch: dict) -> "UserRecord":
        ...

    def query_recipients(self, audience: AudienceFilter) -> list[Recipient]:
        ...

    def clear_tokens(self, tokens: Iterable[str]) -> int:
        ...

    def create_food(self, food: "FoodRecord") -> "FoodRecord":
        ...

    def list_foods(self, user_id: str, limit: int = 100) -> list["FoodRecord"]:
        ...

    def delete_food_entry(
        self, user_id: str, food_name: str, analysis_date: float
    ) -> Optional["FoodRecord"]:
        ...

    def delete_foods(
        self, user_id: str, food_id: Optional[str] = None
    ) -> list["FoodRecord"]:
        ...

    def create_campaign(self, campaign: "CampaignRecord") -> "CampaignRecord":
        ...

    def get_campaign(self, campaign_id: str) -> Optional["CampaignRecord"]:
        ...

    def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list["CampaignRecord"], int]:
        ...

    def update_campaign(
        self, campaign_id: str, patch: dict
    ) -> Optional["CampaignRecord"]:
        ...

    def delete_campaign(self, campaign_id: str) -> Optional["CampaignRecord"]:
        ...

    def list_due_campaigns(self, now: float) -> list["CampaignRecord"]:
        ...

    def insert_audit_rows(self, rows: list["AuditRecord"]) -> None:
        ...

    def list_audit_rows(
        self, campaign_id: Optional[str] = None
    ) -> list["AuditRecord"]:
        ...


@dataclass
class UserRecord:
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[int] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    activity_level: Optional[str] = None
    goal: Optional[str] = None
    daily_calories: Optional[int] = None
    bmi: Optional[float] = None
    theme_preference: Optional[str] = None
    ai_provider: Optional[str] = None
    measurement_unit: Optional[str] = None
    fcm_token: Optional[str] = None
    notifications_enabled: bool = True
    is_premium: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())


# Columns a profile patch may touch.
USER_PROFILE_FIELDS = frozenset(
    f.name
    for f in fields(UserRecord)
    if f.name not in ("user_id", "created_at", "updated_at")
)


# Clients see analysis dates as datetimes, which carry microseconds only.
ANALYSIS_DATE_TOLERANCE = 5e-7


def now_microseconds() -> float:
    return round(time.time(), 6)


@dataclass
class FoodRecord:
    user_id: str
    food_name: str
    image_url: Optional[str] = None
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    health_score: Optional[int] = None
    analysis_date: float = field(default_factory=now_microseconds)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class CampaignRecord:
    name: str
    title: str
    body: str
    data: dict = field(default_factory=dict)
    filter_criteria: dict = field(default_factory=lambda: {"type": "all"})
    status: CampaignStatus = CampaignStatus.DRAFT
    scheduled_at: Optional[float] = None
    sent_at: Optional[float] = None
    total_recipients: Optional[int] = None
    successful_sends: Optional[int] = None
    failed_sends: Optional[int] = None
    created_by: str = "system"
    notes: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())


CAMPAIGN_PATCH_FIELDS = frozenset(
    f.name for f in fields(CampaignRecord) if f.name not in ("id", "created_at")
)


@dataclass
class AuditRecord:
    user_id: str
    notification_type: str
    title: str
    body: str
    status: str
    data: dict = field(default_factory=dict)
    error_message: Optional[str] = None
    campaign_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=lambda: time.time())


def _check_patch(patch: dict, allowed: frozenset) -> None:
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Unknown fields in patch: {', '.join(sorted(unknown))}")


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.foods: Dict[str, FoodRecord] = {}
        self.campaigns: Dict[str, CampaignRecord] = {}
        self.audit_rows: list[AuditRecord] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.foods.clear()
        self.campaigns.clear()
        self.audit_rows.clear()

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def upsert_user(self, user_id: str, patch: dict) -> UserRecord:
        _check_patch(patch, USER_PROFILE_FIELDS)
        now = time.time()
        user = self.users.get(user_id)
        if user is None:
            user = UserRecord(user_id=user_id, created_at=now)
            self.users[user_id] = user
        for key, value in patch.items():
            setattr(user, key, value)
        user.updated_at = now
        return user

    def query_recipients(self, audience: AudienceFilter) -> list[Recipient]:
        if isinstance(audience, Custom):
            raise StoreError("Custom audience filters require a SQL-backed store")

        def matches(user: UserRecord) -> bool:
            if not user.notifications_enabled or not user.fcm_token:
                return False
            if isinstance(audience, PremiumUsers):
                return user.is_premium
            if isinstance(audience, AgeRange):
                if user.age is None:
                    return False
                if audience.min_age is not None and user.age < audience.min_age:
                    return False
                if audience.max_age is not None and user.age > audience.max_age:
                    return False
                return True
            if isinstance(audience, ByIds):
                return user.user_id in audience.user_ids
            return isinstance(audience, AllUsers)

        return [
            Recipient(
                user_id=user.user_id,
                device_token=user.fcm_token,
                email=user.email,
                display_name=user.display_name,
            )
            for user in sorted(self.users.values(), key=lambda u: u.user_id)
            if matches(user)
        ]

    def clear_tokens(self, tokens: Iterable[str]) -> int:
        token_set = set(tokens)
        cleared = 0
        for user in self.users.values():
            if user.fcm_token is not None and user.fcm_token in token_set:
                user.fcm_token = None
                user.updated_at = time.time()
                cleared += 1
        return cleared

    def create_food(self, food: FoodRecord) -> FoodRecord:
        self.foods[food.id] = food
        return food

    def list_foods(self, user_id: str, limit: int = 100) -> list[FoodRecord]:
        items = [f for f in self.foods.values() if f.user_id == user_id]
        items.sort(key=lambda f: f.analysis_date, reverse=True)
        return items[:limit]

    def delete_food_entry(
        self, user_id: str, food_name: str, analysis_date: float
    ) -> Optional[FoodRecord]:
        for food in list(self.foods.values()):
            if (
                food.user_id == user_id
                and food.food_name == food_name
                and abs(food.analysis_date - analysis_date) <= ANALYSIS_DATE_TOLERANCE
            ):
                return self.foods.pop(food.id)
        return None

    def delete_foods(
        self, user_id: str, food_id: Optional[str] = None
    ) -> list[FoodRecord]:
        deleted = [
            food
            for food in self.foods.values()
            if food.user_id == user_id and (food_id is None or food.id == food_id)
        ]
        for food in deleted:
            self.foods.pop(food.id)
        return deleted

    def create_campaign(self, campaign: CampaignRecord) -> CampaignRecord:
        self.campaigns[campaign.id] = campaign
        return replace(campaign)

    def get_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        campaign = self.campaigns.get(campaign_id)
        return replace(campaign) if campaign else None

    def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CampaignRecord], int]:
        items = [
            c for c in self.campaigns.values() if status is None or c.status == status
        ]
        items.sort(key=lambda c: c.created_at, reverse=True)
        return [replace(c) for c in items[offset : offset + limit]], len(items)

    def update_campaign(
        self, campaign_id: str, patch: dict
    ) -> Optional[CampaignRecord]:
        _check_patch(patch, CAMPAIGN_PATCH_FIELDS)
        campaign = self.campaigns.get(campaign_id)
        if not campaign:
            return None
        for key, value in patch.items():
            setattr(campaign, key, value)
        campaign.updated_at = time.time()
        return replace(campaign)

    def delete_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        return self.campaigns.pop(campaign_id, None)

    def list_due_campaigns(self, now: float) -> list[CampaignRecord]:
        due = [
            c
            for c in self.campaigns.values()
            if c.status == CampaignStatus.SCHEDULED
            and c.scheduled_at is not None
            and c.scheduled_at <= now
        ]
        due.sort(key=lambda c: c.scheduled_at)
        return [replace(c) for c in due]

    def insert_audit_rows(self, rows: list[AuditRecord]) -> None:
        self.audit_rows.extend(rows)

    def list_audit_rows(self, campaign_id: Optional[str] = None) -> list[AuditRecord]:
        return [
            row
            for row in self.audit_rows
            if campaign_id is None or row.campaign_id == campaign_id
        ]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            **{f.name: getattr(row, f.name) for f in fields(UserRecord)}
        )

    def _to_food_record(self, row: "FoodRow") -> FoodRecord:
        return FoodRecord(
            **{f.name: getattr(row, f.name) for f in fields(FoodRecord)}
        )

    def _to_campaign_record(self, row: "CampaignRow") -> CampaignRecord:
        return CampaignRecord(
            id=row.id,
            name=row.campaign_name,
            title=row.title,
            body=row.body,
            data=row.data or {},
            filter_criteria=row.filter_criteria or {"type": "all"},
            status=CampaignStatus(row.status),
            scheduled_at=row.scheduled_at,
            sent_at=row.sent_at,
            total_recipients=row.total_recipients,
            successful_sends=row.successful_sends,
            failed_sends=row.failed_sends,
            created_by=row.created_by,
            notes=row.notes,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_audit_record(self, row: "AuditRow") -> AuditRecord:
        return AuditRecord(
            **{f.name: getattr(row, f.name) for f in fields(AuditRecord)}
        )

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def upsert_user(self, user_id: str, patch: dict) -> UserRecord:
        _check_patch(patch, USER_PROFILE_FIELDS)
        now = time.time()
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                defaults = UserRecord(user_id=user_id, created_at=now)
                row = UserRow(
                    **{f.name: getattr(defaults, f.name) for f in fields(UserRecord)}
                )
                session.add(row)
            # Only the columns present in the patch end up in the UPDATE.
            for key, value in patch.items():
                setattr(row, key, value)
            row.updated_at = now
            session.commit()
            session.refresh(row)
            return self._to_user_record(row)

    def query_recipients(self, audience: AudienceFilter) -> list[Recipient]:
        stmt = select(
            UserRow.user_id, UserRow.fcm_token, UserRow.email, UserRow.display_name
        ).where(
            UserRow.notifications_enabled.is_(True),
            UserRow.fcm_token.is_not(None),
            UserRow.fcm_token != "",
        )
        if isinstance(audience, PremiumUsers):
            stmt = stmt.where(UserRow.is_premium.is_(True))
        elif isinstance(audience, AgeRange):
            if audience.min_age is not None:
                stmt = stmt.where(UserRow.age >= audience.min_age)
            if audience.max_age is not None:
                stmt = stmt.where(UserRow.age <= audience.max_age)
        elif isinstance(audience, ByIds):
            stmt = stmt.where(UserRow.user_id.in_(audience.user_ids))
        elif isinstance(audience, Custom):
            # Trusted-caller predicate, evaluated verbatim by the database.
            stmt = stmt.where(text(f"({audience.where_clause})"))
        stmt = stmt.order_by(UserRow.user_id.asc())

        with self._session() as session:
            rows = session.execute(stmt).all()
            return [
                Recipient(
                    user_id=row.user_id,
                    device_token=row.fcm_token,
                    email=row.email,
                    display_name=row.display_name,
                )
                for row in rows
            ]

    def clear_tokens(self, tokens: Iterable[str]) -> int:
        token_list = list(set(tokens))
        if not token_list:
            return 0
        with self._session() as session:
            result = session.execute(
                update(UserRow)
                .where(UserRow.fcm_token.in_(token_list))
                .values(fcm_token=None, updated_at=time.time())
            )
            session.commit()
            return result.rowcount or 0

    def create_food(self, food: FoodRecord) -> FoodRecord:
        with self._session() as session:
            row = FoodRow(**{f.name: getattr(food, f.name) for f in fields(FoodRecord)})
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_food_record(row)

    def list_foods(self, user_id: str, limit: int = 100) -> list[FoodRecord]:
        with self._session() as session:
            rows = (
                session.query(FoodRow)
                .filter(FoodRow.user_id == user_id)
                .order_by(FoodRow.analysis_date.desc())
                .limit(limit)
                .all()
            )
            return [self._to_food_record(row) for row in rows]

    def delete_food_entry(
        self, user_id: str, food_name: str, analysis_date: float
    ) -> Optional[FoodRecord]:
        with self._session() as session:
            row = (
                session.query(FoodRow)
                .filter(
                    FoodRow.user_id == user_id,
                    FoodRow.food_name == food_name,
                    FoodRow.analysis_date.between(
                        analysis_date - ANALYSIS_DATE_TOLERANCE,
                        analysis_date + ANALYSIS_DATE_TOLERANCE,
                    ),
                )
                .first()
            )
            if not row:
                return None
            record = self._to_food_record(row)
            session.delete(row)
            session.commit()
            return record

    def delete_foods(
        self, user_id: str, food_id: Optional[str] = None
    ) -> list[FoodRecord]:
        with self._session() as session:
            query = session.query(FoodRow).filter(FoodRow.user_id == user_id)
            if food_id is not None:
                query = query.filter(FoodRow.id == food_id)
            rows = query.all()
            records = [self._to_food_record(row) for row in rows]
            if rows:
                session.execute(
                    delete(FoodRow).where(FoodRow.id.in_([r.id for r in records]))
                )
                session.commit()
            return records

    def create_campaign(self, campaign: CampaignRecord) -> CampaignRecord:
        with self._session() as session:
            row = CampaignRow(
                id=campaign.id,
                campaign_name=campaign.name,
                title=campaign.title,
                body=campaign.body,
                data=campaign.data,
                filter_criteria=campaign.filter_criteria,
                status=campaign.status.value,
                scheduled_at=campaign.scheduled_at,
                sent_at=campaign.sent_at,
                total_recipients=campaign.total_recipients,
                successful_sends=campaign.successful_sends,
                failed_sends=campaign.failed_sends,
                created_by=campaign.created_by,
                notes=campaign.notes,
                created_at=campaign.created_at,
                updated_at=campaign.updated_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_campaign_record(row)

    def get_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        with self._session() as session:
            row = session.get(CampaignRow, campaign_id)
            return self._to_campaign_record(row) if row else None

    def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CampaignRecord], int]:
        with self._session() as session:
            query = session.query(CampaignRow)
            count_query = session.query(func.count(CampaignRow.id))
            if status is not None:
                query = query.filter(CampaignRow.status == status.value)
                count_query = count_query.filter(CampaignRow.status == status.value)
            rows = (
                query.order_by(CampaignRow.created_at.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            total = count_query.scalar() or 0
            return [self._to_campaign_record(row) for row in rows], total

    def update_campaign(
        self, campaign_id: str, patch: dict
    ) -> Optional[CampaignRecord]:
        _check_patch(patch, CAMPAIGN_PATCH_FIELDS)
        with self._session() as session:
            row = session.get(CampaignRow, campaign_id)
            if not row:
                return None
            for key, value in patch.items():
                if key == "name":
                    row.campaign_name = value
                elif key == "status":
                    row.status = CampaignStatus(value).value
                else:
                    setattr(row, key, value)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_campaign_record(row)

    def delete_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        with self._session() as session:
            row = session.get(CampaignRow, campaign_id)
            if not row:
                return None
            record = self._to_campaign_record(row)
            session.delete(row)
            session.commit()
            return record

    def list_due_campaigns(self, now: float) -> list[CampaignRecord]:
        with self._session() as session:
            rows = (
                session.query(CampaignRow)
                .filter(
                    CampaignRow.status == CampaignStatus.SCHEDULED.value,
                    CampaignRow.scheduled_at.is_not(None),
                    CampaignRow.scheduled_at <= now,
                )
                .order_by(CampaignRow.scheduled_at.asc())
                .all()
            )
            return [self._to_campaign_record(row) for row in rows]

    def insert_audit_rows(self, rows: list[AuditRecord]) -> None:
        if not rows:
            return
        with self._session() as session:
            session.add_all(
                [
                    AuditRow(**{f.name: getattr(r, f.name) for f in fields(AuditRecord)})
                    for r in rows
                ]
            )
            session.commit()

    def list_audit_rows(self, campaign_id: Optional[str] = None) -> list[AuditRecord]:
        with self._session() as session:
            query = session.query(AuditRow)
            if campaign_id is not None:
                query = query.filter(AuditRow.campaign_id == campaign_id)
            rows = query.order_by(AuditRow.created_at.asc()).all()
            return [self._to_audit_record(row) for row in rows]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    gender = Column(String, nullable=True)
    age = Column(Integer, nullable=True, index=True)
    weight = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    activity_level = Column(String, nullable=True)
    goal = Column(String, nullable=True)
    daily_calories = Column(Integer, nullable=True)
    bmi = Column(Float, nullable=True)
    theme_preference = Column(String, nullable=True)
    ai_provider = Column(String, nullable=True)
    measurement_unit = Column(String, nullable=True)
    fcm_token = Column(String, nullable=True, index=True)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class FoodRow(Base):
    __tablename__ = "foods"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    image_url = Column(String, nullable=True)
    food_name = Column(String, nullable=False)
    calories = Column(Float, nullable=True)
    protein = Column(Float, nullable=True)
    carbs = Column(Float, nullable=True)
    fat = Column(Float, nullable=True)
    health_score = Column(Integer, nullable=True)
    analysis_date = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)


class CampaignRow(Base):
    __tablename__ = "notification_campaigns"

    id = Column(String, primary_key=True)
    campaign_name = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    filter_criteria = Column(JSON, nullable=False)
    status = Column(String, nullable=False, index=True)
    scheduled_at = Column(Float, nullable=True, index=True)
    sent_at = Column(Float, nullable=True)
    total_recipients = Column(Integer, nullable=True)
    successful_sends = Column(Integer, nullable=True)
    failed_sends = Column(Integer, nullable=True)
    created_by = Column(String, nullable=False, default="system")
    notes = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class AuditRow(Base):
    __tablename__ = "notifications_log"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    notification_type = Column(String, nullable=False)
    campaign_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False)
    error_message = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
