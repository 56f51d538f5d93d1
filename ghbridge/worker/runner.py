from __future__ import annotations

import asyncio
import importlib
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ghbridge.config.settings import settings
from ghbridge.core.db import QueueStore
from ghbridge.core.state import ClaimOutcome, JobStatus
from ghbridge.schemas.models import CherryPickParams, ClaimResult

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


async def log_cherry_pick(params: dict[str, Any]) -> None:
    """Handler por defecto: valida el payload y lo registra. El trabajo git va fuera de banda."""
    req = CherryPickParams.model_validate(params)
    logger.info(
        "cherry-pick requested repo=%s target=%s query=%r",
        req.repository,
        req.target_branch,
        req.pr_filter_query,
    )


def load_handler(spec: str) -> Handler:
    """Resuelve ``paquete.modulo:funcion``."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"handler must look like 'package.module:function', got {spec!r}")
    fn = getattr(importlib.import_module(module_name), attr)
    if not callable(fn):
        raise TypeError(f"{spec} is not callable")
    return fn


class Worker:
    def __init__(
        self,
        store: QueueStore,
        handler: Handler = log_cherry_pick,
        poll_interval: float | None = None,
        contended_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        mark_retries: int | None = None,
    ):
        self.store = store
        self.handler = handler
        self.poll_interval = settings.WORKER_POLL_SECS if poll_interval is None else poll_interval
        self.contended_interval = (
            settings.WORKER_CONTENDED_SECS if contended_interval is None else contended_interval
        )
        self.mark_retries = settings.WORKER_MARK_RETRIES if mark_retries is None else mark_retries
        self._transport = transport

    async def _mark(self, job_id: str, error: str | None) -> None:
        """complete/fail reintentando mientras la DB esté bloqueada por otro proceso."""
        attempt = 0
        while True:
            try:
                if error is None:
                    await self.store.complete(job_id)
                else:
                    await self.store.fail(job_id, error)
                return
            except sqlite3.OperationalError as e:
                attempt += 1
                if attempt > self.mark_retries:
                    raise
                logger.warning(
                    "mark job id=%s attempt=%d retry in %.2fs err=%r",
                    job_id,
                    attempt,
                    self.contended_interval,
                    e,
                )
                await asyncio.sleep(self.contended_interval)

    async def run_once(self) -> ClaimResult:
        res = await self.store.claim_next()
        if res.job is None:
            return res

        job = res.job
        error: str | None = None
        try:
            await self.handler(job.params)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error("job id=%s failed err=%r", job.id, e)
            await self._mark(job.id, error)
            status = JobStatus.FAILED
        else:
            await self._mark(job.id, None)
            status = JobStatus.COMPLETED
            logger.info("job id=%s completed", job.id)

        callback = job.params.get("callbackUrl")
        if callback:
            await self.notify(callback, job.id, status, error)
        return res

    async def notify(self, url: str, job_id: str, status: JobStatus, error: str | None) -> None:
        payload = {"jobId": job_id, "status": status.value, "error": error}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as cli:
                r = await cli.post(url, json=payload)
                r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("callback failed job=%s url=%s err=%r", job_id, url, e)

    async def run(self, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        logger.info("worker started (poll=%.1fs db=%s)", self.poll_interval, self.store.db_path)
        while not stop.is_set():
            try:
                res = await self.run_once()
            except sqlite3.Error as e:
                # el job queda en 'running'; el worker sigue atendiendo la cola
                logger.error("worker storage error err=%r", e)
                delay = self.contended_interval
            else:
                if res.outcome is ClaimOutcome.JOB:
                    continue
                delay = (
                    self.contended_interval
                    if res.outcome is ClaimOutcome.CONTENDED
                    else self.poll_interval
                )
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("worker stopped")
