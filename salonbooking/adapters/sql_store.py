"""
Relational appointment store using SQLAlchemy's asyncio extension.

``create_if_no_conflict`` re-checks for overlapping appointments and inserts in
the same transaction. On PostgreSQL, engines built by ``create_store_engine``
run at SERIALIZABLE isolation and ``create_schema`` also installs an exclusion
constraint over (employee, time range), so the database itself refuses a
second overlapping booking even if two transactions race. On SQLite every
transaction starts with BEGIN IMMEDIATE, which makes concurrent writers queue
behind the one holding the write lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import AsyncIterator, Iterator, List, Optional

import pendulum
from pendulum import DateTime
from sqlalchemy import Column, DateTime as SqlDateTime, event, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, col

from ..domain.exceptions import ConflictOnCommit, StoreUnavailable
from ..domain.models import OCCUPYING_STATUSES, Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

POSTGRES_BTREE_GIST = "CREATE EXTENSION IF NOT EXISTS btree_gist"

# Half-open ranges: touching appointments do not conflict.
POSTGRES_NO_OVERLAP = """
DO $$
BEGIN
    ALTER TABLE appointments ADD CONSTRAINT appointments_no_overlap
    EXCLUDE USING gist (
        employee_id WITH =,
        tsrange(scheduled_start_utc, scheduled_end_utc, '[)') WITH &&
    ) WHERE (status NOT IN ('cancelled', 'no_show'));
EXCEPTION
    WHEN duplicate_object THEN NULL;
END $$;
"""

SERIALIZATION_FAILURE = "40001"


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return pendulum.now("UTC").naive()


def _to_naive_utc(dt: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return pendulum.instance(dt).in_timezone("UTC").naive()


def _from_naive_utc(dt: datetime) -> DateTime:
    return pendulum.instance(dt, tz="UTC")


class AppointmentRecord(SQLModel, table=True):
    __tablename__ = "appointments"
    id: str = Field(primary_key=True)
    employee_id: str = Field(index=True)
    service_id: str
    salon_id: Optional[str] = Field(default=None, index=True)
    customer_id: Optional[str] = None
    # Naive UTC, see _to_naive_utc
    scheduled_start_utc: datetime = Field(sa_column=Column(SqlDateTime(timezone=False), nullable=False, index=True))
    scheduled_end_utc: datetime = Field(sa_column=Column(SqlDateTime(timezone=False), nullable=False))
    status: str = Field(default=AppointmentStatus.PENDING.value, index=True)
    created_at: datetime = Field(
        default_factory=_utc_naive_now,
        sa_column=Column(SqlDateTime(timezone=False), nullable=False),
    )

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentRecord":
        return cls(
            id=appointment.id,
            employee_id=appointment.employee_id,
            service_id=appointment.service_id,
            salon_id=appointment.salon_id,
            customer_id=appointment.customer_id,
            scheduled_start_utc=_to_naive_utc(appointment.scheduled_start),
            scheduled_end_utc=_to_naive_utc(appointment.scheduled_end),
            status=AppointmentStatus(appointment.status).value,
        )

    def to_appointment(self) -> Appointment:
        return Appointment(
            id=self.id,
            employee_id=self.employee_id,
            service_id=self.service_id,
            scheduled_start=_from_naive_utc(self.scheduled_start_utc),
            scheduled_end=_from_naive_utc(self.scheduled_end_utc),
            status=AppointmentStatus(self.status),
            salon_id=self.salon_id,
            customer_id=self.customer_id,
        )


def create_store_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an async engine suitable for ``SqlAppointmentStore``.

    Plain ``postgresql://`` and ``sqlite://`` URLs are mapped to their asyncio
    drivers (asyncpg, aiosqlite).
    """
    if database_url.startswith("postgresql://"):
        database_url = "postgresql+asyncpg://" + database_url[len("postgresql://"):]
    elif database_url.startswith("sqlite://"):
        database_url = "sqlite+aiosqlite://" + database_url[len("sqlite://"):]

    if not database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            isolation_level="SERIALIZABLE",
            pool_pre_ping=True,
        )

    options = {"echo": echo}
    if database_url.rstrip("/").endswith(("aiosqlite:", ":memory:")):
        # One shared connection, otherwise every session sees its own empty database
        options["poolclass"] = StaticPool
    engine = create_async_engine(database_url, **options)
    _begin_immediate(engine)
    return engine


def _begin_immediate(engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    The sqlite3 driver defers BEGIN until the first write, so an overlap
    SELECT would run outside any transaction and two writers could both pass
    it. With BEGIN IMMEDIATE the second writer waits until the first commits.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into the engine's error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        logger.warning("%s rejected by database constraint: %s", operation, exc.orig)
        raise ConflictOnCommit() from exc
    except DBAPIError as exc:
        code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        if code == SERIALIZATION_FAILURE:
            logger.warning("%s lost a serialization race", operation)
            raise ConflictOnCommit() from exc
        logger.error("%s failed: %s", operation, exc)
        raise StoreUnavailable(f"{operation} failed: {exc.orig}") from exc


class SqlAppointmentStore:
    """Appointment store over any SQLAlchemy async engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_maker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        # SQLite allows one writer; sessions of this store queue here instead of
        # failing on a locked database or sharing the in-memory connection.
        self._sqlite_lock = asyncio.Lock() if engine.dialect.name == "sqlite" else None

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlAppointmentStore":
        return cls(create_store_engine(database_url, echo=echo))

    async def create_schema(self) -> None:
        """Create the appointments table (and the overlap constraint on PostgreSQL)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(
                SQLModel.metadata.create_all,
                tables=[AppointmentRecord.__table__],
            )
            if conn.dialect.name == "postgresql":
                await conn.execute(text(POSTGRES_BTREE_GIST))
                await conn.execute(text(POSTGRES_NO_OVERLAP))

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _serialized(self) -> AsyncIterator[None]:
        if self._sqlite_lock is None:
            yield
            return
        async with self._sqlite_lock:
            yield

    async def find_overlapping(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        return await self._select_overlapping(employee_id, start, end)

    async def find_in_range(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        return await self._select_overlapping(employee_id, start, end)

    async def create_if_no_conflict(self, appointment: Appointment) -> Appointment:
        record = AppointmentRecord.from_appointment(appointment)
        occupying = [status.value for status in OCCUPYING_STATUSES]

        with _store_errors("Creating appointment"):
            async with self._serialized(), self._session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        select(AppointmentRecord.id)
                        .where(
                            AppointmentRecord.employee_id == record.employee_id,
                            col(AppointmentRecord.status).in_(occupying),
                            AppointmentRecord.scheduled_start_utc < record.scheduled_end_utc,
                            AppointmentRecord.scheduled_end_utc > record.scheduled_start_utc,
                        )
                        .limit(1)
                    )
                    conflicting_id = result.scalar_one_or_none()
                    if conflicting_id is not None:
                        raise ConflictOnCommit(conflicting_id=conflicting_id)
                    session.add(record)

        return record.to_appointment()

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> None:
        """Change the status of an appointment, e.g. to cancel it."""
        with _store_errors("Updating appointment status"):
            async with self._serialized(), self._session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        update(AppointmentRecord)
                        .where(AppointmentRecord.id == appointment_id)
                        .values(status=AppointmentStatus(status).value)
                    )
                    updated = result.rowcount
        if not updated:
            raise KeyError(f"Unknown appointment: {appointment_id}")

    async def _select_overlapping(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        with _store_errors("Loading appointments"):
            async with self._serialized(), self._session_maker() as session:
                result = await session.execute(
                    select(AppointmentRecord)
                    .where(
                        AppointmentRecord.employee_id == employee_id,
                        AppointmentRecord.scheduled_start_utc < _to_naive_utc(end),
                        AppointmentRecord.scheduled_end_utc > _to_naive_utc(start),
                    )
                    .order_by(AppointmentRecord.scheduled_start_utc)
                )
                records = result.scalars().all()
        return [record.to_appointment() for record in records]
