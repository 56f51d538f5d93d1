from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from ghbridge.config.settings import settings
from ghbridge.core.state import TERMINAL, ClaimOutcome, JobStatus, MarkOutcome
from ghbridge.schemas.models import ClaimedJob, ClaimResult, Job
from ghbridge.utils.paths import MEMORY_DB, ensure_parent

logger = logging.getLogger(__name__)


class DuplicateJobError(sqlite3.IntegrityError):
    """El id ya existe en la tabla (vigente o histórico)."""

    def __init__(self, job_id: str):
        super().__init__(f"job '{job_id}' already exists")
        self.job_id = job_id


# ---------- Esquema ----------
_NOW = "strftime('%Y-%m-%d %H:%M:%f','now')"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS jobs (
  id          TEXT PRIMARY KEY,
  params      TEXT NOT NULL,                 -- JSON
  status      TEXT NOT NULL DEFAULT 'queued',
  createdAt   DATETIME DEFAULT ({_NOW}),
  processedAt DATETIME,
  error       TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, createdAt);
"""


class QueueStore:
    """
    Cola de jobs persistente sobre un único archivo SQLite.

    Cada instancia es dueña de una conexión (``aiosqlite``), abierta de forma
    perezosa por ``open()``. Una conexión tiene un solo estado de transacción,
    así que las operaciones de la misma instancia se serializan con un lock;
    entre procesos la exclusión la da ``BEGIN IMMEDIATE``.
    """

    def __init__(self, db_path: str | Path | None = None, busy_timeout: float | None = None):
        self.db_path = db_path if db_path is not None else settings.DB_PATH
        self.busy_timeout = settings.DB_BUSY_TIMEOUT if busy_timeout is None else busy_timeout
        self._conn: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._lock = asyncio.Lock()

    # ---------- Conexión ----------
    async def open(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        async with self._open_lock:
            if self._conn is None:
                self._conn = await self._connect()
        return self._conn

    async def _connect(self) -> aiosqlite.Connection:
        if str(self.db_path) == MEMORY_DB:
            target = MEMORY_DB
        else:
            target = str(ensure_parent(self.db_path))
        conn = await aiosqlite.connect(target, isolation_level=None, timeout=self.busy_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL;")
            await conn.execute("PRAGMA synchronous=NORMAL;")
            await conn.executescript(SCHEMA_SQL)
        except Exception:
            await conn.close()
            raise
        logger.info("queue database initialized at %s", target)
        return conn

    async def close(self) -> None:
        async with self._open_lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        if conn.in_transaction:
            await conn.rollback()

    async def _abandon(self, conn: aiosqlite.Connection) -> None:
        # Llamada cancelada: el BEGIN pudo quedar en la cola del hilo de aiosqlite,
        # así que el rollback va sin mirar in_transaction (se ejecuta después).
        await asyncio.shield(conn.rollback())

    # ---------- Productor ----------
    async def enqueue(self, job_id: str, params: dict[str, Any]) -> None:
        payload = json.dumps(params, ensure_ascii=False)
        conn = await self.open()
        async with self._lock:
            try:
                await conn.execute(
                    "INSERT INTO jobs (id, params) VALUES (?, ?)",
                    (job_id, payload),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e).upper():
                    raise DuplicateJobError(job_id) from e
                raise
        logger.debug("enqueued job id=%s", job_id)

    # ---------- Consumidor ----------
    async def claim_next(self) -> ClaimResult:
        """
        Toma el job 'queued' más antiguo y lo pasa a 'running'.
        El lock de escritura se adquiere antes de leer (BEGIN IMMEDIATE); cualquier
        error dentro de la transacción hace rollback y se reporta como CONTENDED.
        """
        conn = await self.open()
        async with self._lock:
            await self._rollback(conn)
            try:
                await conn.execute("BEGIN IMMEDIATE")
                async with conn.execute(
                    "SELECT id, params FROM jobs WHERE status = ? "
                    "ORDER BY createdAt ASC, rowid ASC LIMIT 1",
                    (JobStatus.QUEUED.value,),
                ) as cur:
                    row = await cur.fetchone()
                if row is None:
                    await conn.commit()
                    return ClaimResult(outcome=ClaimOutcome.EMPTY)
                await conn.execute(
                    f"UPDATE jobs SET status = ?, processedAt = {_NOW} WHERE id = ?",
                    (JobStatus.RUNNING.value, row["id"]),
                )
                await conn.commit()
            except Exception as e:
                await self._rollback(conn)
                logger.warning("claim_next rolled back err=%r", e)
                return ClaimResult(outcome=ClaimOutcome.CONTENDED, error=str(e))
            except BaseException:
                await self._abandon(conn)
                logger.warning("claim_next cancelled, transaction rolled back")
                raise

        # params se decodifican fuera de la transacción: el job ya es nuestro
        job = ClaimedJob(id=row["id"], params=json.loads(row["params"]))
        logger.debug("claimed job id=%s", job.id)
        return ClaimResult(outcome=ClaimOutcome.JOB, job=job)

    async def get_next_job(self) -> ClaimedJob | None:
        """Versión centinela de claim_next: None tanto si está vacía como si hubo contención."""
        res = await self.claim_next()
        return res.job

    async def complete(self, job_id: str) -> MarkOutcome:
        return await self._mark(job_id, "status = ?", (JobStatus.COMPLETED.value,))

    async def fail(self, job_id: str, error: str) -> MarkOutcome:
        return await self._mark(
            job_id, "status = ?, error = ?", (JobStatus.FAILED.value, error)
        )

    async def _mark(self, job_id: str, assignments: str, values: tuple[Any, ...]) -> MarkOutcome:
        # No valida el estado previo: solo lo informa.
        conn = await self.open()
        async with self._lock:
            await self._rollback(conn)
            try:
                await conn.execute("BEGIN IMMEDIATE")
                async with conn.execute("SELECT status FROM jobs WHERE id = ?", (job_id,)) as cur:
                    row = await cur.fetchone()
                if row is None:
                    await conn.commit()
                    outcome = MarkOutcome.NOT_FOUND
                else:
                    await conn.execute(
                        f"UPDATE jobs SET {assignments} WHERE id = ?", (*values, job_id)
                    )
                    await conn.commit()
                    if row["status"] in TERMINAL:
                        outcome = MarkOutcome.ALREADY_TERMINAL
                    else:
                        outcome = MarkOutcome.UPDATED
            except Exception:
                await self._rollback(conn)
                raise
            except BaseException:
                await self._abandon(conn)
                raise
        if outcome is not MarkOutcome.UPDATED:
            logger.info("mark job id=%s outcome=%s", job_id, outcome.value)
        return outcome

    # ---------- Consultas ----------
    async def get_job(self, job_id: str) -> Job | None:
        conn = await self.open()
        async with self._lock:
            async with conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cur:
                row = await cur.fetchone()
        return _row_to_job(row) if row is not None else None

    async def list_jobs(self, status: str | None = None, limit: int = 50) -> list[Job]:
        conn = await self.open()
        sql = "SELECT * FROM jobs"
        args: tuple[Any, ...] = ()
        if status:
            sql += " WHERE status = ?"
            args = (status,)
        sql += " ORDER BY createdAt DESC, rowid DESC LIMIT ?"
        async with self._lock:
            async with conn.execute(sql, (*args, int(limit))) as cur:
                rows = await cur.fetchall()
        return [_row_to_job(r) for r in rows]

    async def counts(self) -> dict[str, int]:
        conn = await self.open()
        out = {s.value: 0 for s in JobStatus}
        async with self._lock:
            async with conn.execute(
                "SELECT status, COUNT(1) AS c FROM jobs GROUP BY status"
            ) as cur:
                for row in await cur.fetchall():
                    out[row["status"]] = row["c"]
        return out


def _row_to_job(row: aiosqlite.Row) -> Job:
    return Job(
        id=row["id"],
        params=json.loads(row["params"]),
        status=row["status"],
        created_at=row["createdAt"],
        processed_at=row["processedAt"],
        error=row["error"],
    )


# ---------- Store por defecto del proceso ----------
_DEFAULT: QueueStore | None = None


def get_store() -> QueueStore:
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = QueueStore()
    return _DEFAULT
