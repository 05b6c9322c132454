"""SQL implementation of the journey repository (SQLAlchemy async + SQLModel)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, Index, delete, event, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import Field, SQLModel

from ..errors import JourneyNotFound, JourneyUniquenessViolation
from .models import HeroRef, JourneyRecord, JourneyState
from .repository import JourneyRepository

_ACTIVE = "state IN ('ready', 'performing', 'paused')"
_TERMINAL = "state IN ('canceled', 'finished')"


class JourneyRow(SQLModel, table=True):
    """Table layout for persisted journeys."""

    __tablename__ = "stepwise_journeys"  # type: ignore[assignment]
    __table_args__ = (
        Index(
            "idx_stepwise_journeys_one_per_hero",
            "journey_type",
            "hero_type",
            "hero_id",
            unique=True,
            sqlite_where=text(f"allow_multiple = 0 AND {_ACTIVE}"),
            postgresql_where=text(f"allow_multiple = false AND {_ACTIVE}"),
        ),
        Index("idx_stepwise_journeys_hero", "hero_type", "hero_id"),
        Index(
            "idx_stepwise_journeys_due",
            "next_step_to_be_performed_at",
            sqlite_where=text("state = 'ready'"),
            postgresql_where=text("state = 'ready'"),
        ),
        Index(
            "idx_stepwise_journeys_stuck",
            "updated_at",
            sqlite_where=text("state = 'performing'"),
            postgresql_where=text("state = 'performing'"),
        ),
        Index(
            "idx_stepwise_journeys_completed",
            "updated_at",
            sqlite_where=text(_TERMINAL),
            postgresql_where=text(_TERMINAL),
        ),
    )

    id: str = Field(primary_key=True)
    journey_type: str = Field(index=True)
    state: str = Field(default=JourneyState.READY.value)
    hero_type: Optional[str] = None
    hero_id: Optional[str] = None
    allow_multiple: bool = False
    previous_step_name: Optional[str] = None
    next_step_name: Optional[str] = None
    next_step_to_be_performed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    idempotency_key: Optional[str] = None
    steps_entered: int = 0
    steps_completed: int = 0
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    updated_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )


_COLUMNS = tuple(JourneyRecord.model_fields)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite stores datetimes without a timezone
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: JourneyRow) -> JourneyRecord:
    return JourneyRecord(
        id=row.id,
        journey_type=row.journey_type,
        state=JourneyState(row.state),
        hero_type=row.hero_type,
        hero_id=row.hero_id,
        allow_multiple=row.allow_multiple,
        previous_step_name=row.previous_step_name,
        next_step_name=row.next_step_name,
        next_step_to_be_performed_at=_aware(row.next_step_to_be_performed_at),
        idempotency_key=row.idempotency_key,
        steps_entered=row.steps_entered,
        steps_completed=row.steps_completed,
        data=dict(row.data or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _apply(record: JourneyRecord, row: JourneyRow) -> None:
    for column in _COLUMNS:
        value = getattr(record, column)
        if isinstance(value, JourneyState):
            value = value.value
        elif isinstance(value, dict):
            value = dict(value)
        setattr(row, column, value)


def _uniqueness_error(exc: IntegrityError, record: JourneyRecord) -> JourneyUniquenessViolation:
    return JourneyUniquenessViolation(
        f"{record.journey_type} already has an active journey "
        f"for hero {record.hero_type}:{record.hero_id}: {exc.orig}"
    )


def _begin_immediately(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the database write lock up front.

    SQLite has no ``SELECT ... FOR UPDATE`` and pysqlite defers ``BEGIN``, so
    concurrent lockers would all read the row before any of them writes.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SQLJourneyRepository(JourneyRepository):
    """Persist journeys in a relational database.

    Works with any async SQLAlchemy driver. Row locks use
    ``SELECT ... FOR UPDATE``. On SQLite, transactions start with
    ``BEGIN IMMEDIATE`` instead, so a lock holds the whole database.
    """

    def __init__(self, database_url: str) -> None:
        is_sqlite = database_url.startswith("sqlite")
        connect_args = {"check_same_thread": False} if is_sqlite else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        if is_sqlite:
            _begin_immediately(self.engine)
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all, tables=[JourneyRow.__table__])
        self._initialized = True

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    async def insert(self, record: JourneyRecord) -> JourneyRecord:
        row = JourneyRow(id=record.id, journey_type=record.journey_type)
        _apply(record, row)
        async with self.session() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise _uniqueness_error(exc, record) from exc
        return record.model_copy(deep=True)

    async def get(self, journey_id: str) -> JourneyRecord | None:
        async with self.session() as session:
            row = await session.get(JourneyRow, journey_id)
            return _to_record(row) if row else None

    async def update(self, record: JourneyRecord) -> JourneyRecord:
        async with self.session() as session:
            row = await session.get(JourneyRow, record.id)
            if row is None:
                raise JourneyNotFound(f"Journey {record.id} does not exist")
            _apply(record, row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise _uniqueness_error(exc, record) from exc
        return record.model_copy(deep=True)

    @asynccontextmanager
    async def lock(self, journey_id: str) -> AsyncIterator[JourneyRecord]:
        async with self.session() as session, session.begin():
            result = await session.execute(
                select(JourneyRow).where(JourneyRow.id == journey_id).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise JourneyNotFound(f"Journey {journey_id} does not exist")
            stored = _to_record(row)
            record = stored.model_copy(deep=True)
            yield record
            if record != stored:
                _apply(record, row)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    raise _uniqueness_error(exc, record) from exc

    async def find_ready_due_before(self, cutoff: datetime) -> list[JourneyRecord]:
        async with self.session() as session:
            result = await session.execute(
                select(JourneyRow).where(
                    JourneyRow.state == JourneyState.READY.value,
                    JourneyRow.next_step_name.is_not(None),
                    JourneyRow.next_step_to_be_performed_at < cutoff,
                )
            )
            return [_to_record(row) for row in result.scalars()]

    async def find_stuck(self, since: datetime) -> list[JourneyRecord]:
        async with self.session() as session:
            result = await session.execute(
                select(JourneyRow).where(
                    JourneyRow.state == JourneyState.PERFORMING.value,
                    JourneyRow.updated_at <= since,
                )
            )
            return [_to_record(row) for row in result.scalars()]

    async def delete_completed(self, before: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                delete(JourneyRow).where(
                    JourneyRow.state.in_(
                        [JourneyState.CANCELED.value, JourneyState.FINISHED.value]
                    ),
                    JourneyRow.updated_at <= before,
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def list_journeys(
        self,
        journey_type: Optional[str] = None,
        hero: Optional[HeroRef] = None,
        state: Optional[JourneyState] = None,
    ) -> list[JourneyRecord]:
        query = select(JourneyRow)
        if journey_type is not None:
            query = query.where(JourneyRow.journey_type == journey_type)
        if hero is not None:
            query = query.where(JourneyRow.hero_type == hero.type, JourneyRow.hero_id == hero.id)
        if state is not None:
            query = query.where(JourneyRow.state == state.value)
        async with self.session() as session:
            result = await session.execute(query.order_by(JourneyRow.created_at))
            return [_to_record(row) for row in result.scalars()]
