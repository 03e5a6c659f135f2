"""Candidate persistence on async SQLAlchemy, keyed by source identity."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import JSON, Boolean, DateTime, String, Text, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import DatabaseConfig
from .models import AttachmentExtract, CandidateRecord

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


class CandidateRow(Base):
    __tablename__ = "candidates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_identity: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    sender: Mapped[str] = mapped_column(Text, nullable=False)
    sender_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    has_attachment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attachment: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


def _make_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(url, echo=False, pool_size=5, max_overflow=10)


class CandidateStore:
    """Idempotent upsert/exists/get over the ``candidates`` table.

    The unique constraint on ``source_identity`` makes creation
    at-most-once even when two processes race on the same message; the
    loser's insert becomes an update.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    async def start(self) -> None:
        self._engine = _make_engine(self._config.url)
        self._sessions = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        if self._config.create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("candidate_store_started", dialect=self._engine.dialect.name)

    async def stop(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None
            logger.info("candidate_store_stopped")

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise RuntimeError("Candidate store not started")
        return self._sessions()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def exists(self, source_identity: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(CandidateRow.id).where(CandidateRow.source_identity == source_identity)
            )
            return result.scalar_one_or_none() is not None

    async def get(self, source_identity: str) -> CandidateRecord | None:
        async with self._session() as session:
            result = await session.execute(
                select(CandidateRow).where(CandidateRow.source_identity == source_identity)
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def list_resumes(self) -> list[CandidateRecord]:
        """Records whose extract carries a name or an email, newest first."""
        async with self._session() as session:
            result = await session.execute(
                select(CandidateRow)
                .where(CandidateRow.has_attachment.is_(True))
                .order_by(CandidateRow.received_at.desc())
            )
            records = [_to_record(row) for row in result.scalars().all()]
        return [record for record in records if record.has_resume]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, record: CandidateRecord) -> CandidateRecord:
        """Insert *record*, or update the row already stored under its identity."""
        if self._engine is None:
            raise RuntimeError("Candidate store not started")
        values = _to_values(record)
        insert = pg_insert if self._engine.dialect.name == "postgresql" else sqlite_insert
        async with self._session() as session:
            stmt = insert(CandidateRow).values(**values)
            update = {k: stmt.excluded[k] for k in values if k != "source_identity"}
            update["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(
                index_elements=[CandidateRow.source_identity],
                set_=update,
            )
            await session.execute(stmt)
            await session.commit()

        stored = await self.get(record.source_identity)
        if stored is None:
            raise RuntimeError(f"Upserted candidate {record.source_identity!r} not found")
        logger.debug("candidate_upserted", source_identity=record.source_identity)
        return stored


def _to_values(record: CandidateRecord) -> dict[str, Any]:
    received_at = record.received_at
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=UTC)
    return {
        "source_identity": record.source_identity,
        "sender": record.sender,
        "sender_name": record.sender_name,
        "subject": record.subject,
        "body": record.body,
        "received_at": received_at.astimezone(UTC),
        "has_attachment": record.has_attachment,
        "attachment": record.attachment.model_dump() if record.attachment is not None else None,
    }


def _to_record(row: CandidateRow) -> CandidateRecord:
    received_at = row.received_at
    if received_at.tzinfo is None:
        # SQLite drops the offset; values are always written in UTC
        received_at = received_at.replace(tzinfo=UTC)
    return CandidateRecord(
        source_identity=row.source_identity,
        sender=row.sender,
        sender_name=row.sender_name,
        subject=row.subject,
        body=row.body,
        received_at=received_at,
        has_attachment=row.has_attachment,
        attachment=AttachmentExtract(**row.attachment) if row.attachment else None,
    )
