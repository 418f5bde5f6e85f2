"""Execution journal: one row per execute or claim-fee run."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

DEFAULT_SQLITE_BUSY_TIMEOUT_MS = 5_000


class RunPhase(str, Enum):
    EXECUTE = "execute"
    CLAIM_FEE = "claim_fee"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobRun(SQLModel, table=True):
    __tablename__ = "job_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_job_runs_job_phase", "job_id", "phase"),)

    run_id: str = Field(primary_key=True)
    job_id: int = Field(index=True)
    agent: str = Field(index=True)
    phase: str
    status: str = Field(index=True)
    txid: str | None = None
    reason: str | None = None
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


@dataclass(slots=True)
class JobRunView:
    """Readable journal entry for CLI output."""

    run_id: str
    job_id: int
    agent: str
    phase: RunPhase
    status: RunStatus
    txid: str | None
    reason: str | None
    started_at: datetime
    finished_at: datetime | None


class JobJournal:
    """Journal persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_SQLITE_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.sqlite_busy_timeout_ms = sqlite_busy_timeout_ms
        self.engine = _journal_engine(db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        table = JobRun.__table__  # type: ignore[attr-defined]
        SQLModel.metadata.create_all(self.engine, tables=[table])

    def start_run(self, *, job_id: int, agent: str, phase: RunPhase) -> str:
        run_id = str(uuid4())
        with Session(self.engine) as session:
            session.add(
                JobRun(
                    run_id=run_id,
                    job_id=job_id,
                    agent=agent,
                    phase=phase.value,
                    status=RunStatus.RUNNING.value,
                    started_at=datetime.now(tz=UTC),
                ),
            )
            session.commit()
        return run_id

    def record_txid(self, run_id: str, txid: str) -> None:
        with Session(self.engine) as session:
            row = session.get(JobRun, run_id)
            if row is None:
                return
            row.txid = txid
            session.add(row)
            session.commit()

    def finish_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        reason: str | None = None,
        txid: str | None = None,
    ) -> None:
        if status is RunStatus.RUNNING:
            raise ValueError("finish_run requires a terminal status")
        with Session(self.engine) as session:
            row = session.get(JobRun, run_id)
            if row is None:
                raise KeyError(f"Unknown journal run: {run_id}")
            row.status = status.value
            row.reason = reason
            if txid is not None:
                row.txid = txid
            row.finished_at = datetime.now(tz=UTC)
            session.add(row)
            session.commit()

    def list_recent(self, *, limit: int = 20, job_id: int | None = None) -> list[JobRunView]:
        with Session(self.engine) as session:
            query = select(JobRun)
            if job_id is not None:
                query = query.where(JobRun.job_id == job_id)
            rows = session.exec(
                query.order_by(col(JobRun.started_at).desc()).limit(limit),
            ).all()
            return [_to_view(row) for row in rows]


def _to_view(row: JobRun) -> JobRunView:
    return JobRunView(
        run_id=row.run_id,
        job_id=row.job_id,
        agent=row.agent,
        phase=RunPhase(row.phase),
        status=RunStatus(row.status),
        txid=row.txid,
        reason=row.reason,
        started_at=_as_utc(row.started_at),
        finished_at=_as_utc(row.finished_at) if row.finished_at is not None else None,
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _journal_engine(db_path: Path, *, busy_timeout_ms: int) -> Engine:
    """SQLite engine in WAL mode; every connection waits ``busy_timeout_ms`` on locks."""

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": max(1.0, busy_timeout_ms / 1000)},
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _record: object) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
        finally:
            cursor.close()

    return engine
