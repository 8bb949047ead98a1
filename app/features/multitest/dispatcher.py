"""Submits synthesized batches to Judge0 and polls them to a terminal state."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from app.core.config import Settings, get_settings
from app.features.judge0.schemas import (
    Judge0ExecutionResult,
    Judge0SubmissionRequest,
    StatusKind,
    classify_status,
)
from app.features.judge0.service import Judge0Error, Judge0Service, judge0_service

from .budget import limits_from_settings
from .errors import ConfigurationError
from .schemas import Batch, JudgeJobResult, JudgeLimits

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]

MODE_GROUPED = "grouped"
MODE_INDEPENDENT = "independent"


@dataclass
class _Job:
    batch: Batch
    request: Judge0SubmissionRequest
    token: Optional[str] = None
    result: Optional[JudgeJobResult] = None
    poll_failures: int = 0

    @property
    def pending(self) -> bool:
        return self.result is None


def _parse_seconds(value: Optional[str]) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_job_result(raw: Judge0ExecutionResult) -> JudgeJobResult:
    kind = classify_status(raw.status_id, " ".join(filter(None, [raw.message, raw.stderr])))
    return JudgeJobResult(
        status_kind=kind,
        status_id=raw.status_id,
        status_description=raw.status_description,
        stdout=raw.stdout,
        stderr=raw.stderr,
        compile_output=raw.compile_output,
        message=raw.message,
        cpu_time=_parse_seconds(raw.time),
        wall_time=_parse_seconds(raw.wall_time),
        memory=raw.memory,
        token=raw.token,
    )


def transport_error(description: str, token: Optional[str] = None) -> JudgeJobResult:
    return JudgeJobResult(
        status_kind=StatusKind.TRANSPORT_ERROR,
        status_description=description,
        message=description,
        token=token,
    )


async def _bounded_gather(coroutines: Iterable[Awaitable[Any]], *, limit: int) -> List[Any]:
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _runner(coro: Awaitable[Any]) -> Any:
        async with semaphore:
            return await coro

    return await asyncio.gather(*(_runner(coro) for coro in coroutines))


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), max(1, size))]


class BatchDispatcher:
    def __init__(
        self,
        client: Optional[Judge0Service] = None,
        *,
        settings: Optional[Settings] = None,
        limits: Optional[JudgeLimits] = None,
        mode: Optional[str] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or judge0_service
        self.limits = limits or limits_from_settings(self.settings)
        self.mode = (mode or self.settings.judge0_dispatch_mode or MODE_GROUPED).strip().lower()
        if self.mode not in (MODE_GROUPED, MODE_INDEPENDENT):
            raise ConfigurationError(f"unknown dispatch mode {self.mode!r} (expected grouped or independent)")
        self._sleep = asyncio.sleep

    def build_request(self, batch: Batch, language_id: int) -> Judge0SubmissionRequest:
        if not batch.is_synthesized:
            raise ConfigurationError(f"batch {batch.batch_id} has no driver program")
        headroom = self.limits.time_headroom
        wanted_cpu = batch.estimated_execution_time + headroom
        if wanted_cpu > self.limits.max_cpu_time:
            # only a single case slower than the safe ceiling gets here
            logger.warning(
                "Batch %d needs %.1fs CPU but the ceiling is %.1fs; it may time out",
                batch.batch_id, wanted_cpu, self.limits.max_cpu_time,
            )
        cpu_limit = min(self.limits.max_cpu_time, wanted_cpu)
        wall_limit = min(self.limits.max_wall_time, batch.estimated_execution_time + 2 * headroom)
        return Judge0SubmissionRequest(
            source_code=batch.source_code,
            language_id=language_id,
            stdin=batch.stdin,
            cpu_time_limit=round(cpu_limit, 3),
            wall_time_limit=round(max(wall_limit, cpu_limit), 3),
            memory_limit=self.limits.memory_limit_kb,
        )

    async def dispatch(
        self,
        batches: Sequence[Batch],
        language_id: int,
        *,
        deadline_seconds: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[int, JudgeJobResult]:
        """Run every batch once and return its terminal result keyed by ``batch_id``.

        Never raises for judge-side failures; those come back as
        ``transport_error`` results. Batches are submitted at most once.
        """
        jobs = [_Job(batch=b, request=self.build_request(b, language_id)) for b in batches]
        if not jobs:
            return {}
        budget = deadline_seconds if deadline_seconds is not None else self.settings.evaluation_deadline_s
        deadline = time.monotonic() + max(0.0, float(budget))
        total = len(jobs)
        logger.info(
            "Dispatching %d batches (mode=%s, language_id=%s, deadline=%.1fs)",
            total, self.mode, language_id, budget,
        )

        if self.mode == MODE_GROUPED:
            await self._submit_grouped(jobs, deadline)
        else:
            await self._submit_independent(jobs, deadline)

        completed = sum(1 for job in jobs if not job.pending)
        if completed:
            await self._notify(progress, completed, total)
        await self._poll(jobs, deadline, progress)

        for job in jobs:
            if job.pending:
                logger.warning("Batch %d (token=%s) still pending at deadline", job.batch.batch_id, job.token)
                job.result = transport_error("Evaluation deadline exceeded before the judge finished", job.token)
        return {job.batch.batch_id: job.result for job in jobs}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _submit_grouped(self, jobs: List[_Job], deadline: float) -> None:
        async def _submit_chunk(chunk: Sequence[_Job]) -> None:
            if time.monotonic() >= deadline:
                for job in chunk:
                    job.result = transport_error("Evaluation deadline exceeded before submission")
                return
            try:
                tokens = await self.client.submit_batch([job.request for job in chunk])
            except Judge0Error as exc:
                logger.error(
                    "Grouped submission of batches %s failed: %s",
                    [job.batch.batch_id for job in chunk], exc,
                )
                for job in chunk:
                    job.result = transport_error(f"Submission failed: {exc}")
                return
            for job, token in zip(chunk, tokens):
                job.token = token

        chunks = _chunks(jobs, self.limits.max_grouped_submissions)
        await _bounded_gather((_submit_chunk(c) for c in chunks), limit=self.settings.judge0_submit_concurrency)

    async def _submit_independent(self, jobs: List[_Job], deadline: float) -> None:
        async def _submit_one(job: _Job) -> None:
            if time.monotonic() >= deadline:
                job.result = transport_error("Evaluation deadline exceeded before submission")
                return
            try:
                job.token = (await self.client.submit(job.request)).token
            except Judge0Error as exc:
                logger.error("Submission of batch %d failed: %s", job.batch.batch_id, exc)
                job.result = transport_error(f"Submission failed: {exc}")

        await _bounded_gather((_submit_one(j) for j in jobs), limit=self.settings.judge0_submit_concurrency)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _poll_delay(self, attempt: int, remaining: float) -> float:
        base = min(
            self.settings.judge0_poll_interval_s + attempt * 0.25,
            self.settings.judge0_poll_max_interval_s,
        )
        return max(0.0, min(base + random.uniform(0.0, 0.1), remaining))

    async def _poll(self, jobs: List[_Job], deadline: float, progress: Optional[ProgressCallback]) -> None:
        total = len(jobs)
        attempt = 0
        while True:
            pending = [job for job in jobs if job.pending and job.token]
            if not pending:
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await self._sleep(self._poll_delay(attempt, remaining))
            if time.monotonic() >= deadline:
                return
            attempt += 1

            if self.mode == MODE_GROUPED:
                fetched = await self._fetch_grouped(pending)
            else:
                fetched = await self._fetch_independent(pending)

            newly_done = 0
            for job in pending:
                raw = fetched.get(job.token)
                if raw is None:
                    job.poll_failures += 1
                    if job.poll_failures > self.settings.judge0_max_poll_retries:
                        logger.error(
                            "Giving up on batch %d (token=%s) after %d failed polls",
                            job.batch.batch_id, job.token, job.poll_failures,
                        )
                        job.result = transport_error(
                            f"Lost contact with the judge after {job.poll_failures} failed polls", job.token
                        )
                        newly_done += 1
                    continue
                job.poll_failures = 0
                result = to_job_result(raw)
                if result.status_kind.is_terminal:
                    if not result.token:
                        result = result.model_copy(update={"token": job.token})
                    job.result = result
                    newly_done += 1
                    logger.debug(
                        "Batch %d finished: %s (%s)", job.batch.batch_id, result.status_kind.value,
                        result.status_description,
                    )
            if newly_done:
                await self._notify(progress, sum(1 for job in jobs if not job.pending), total)

    async def _fetch_grouped(self, pending: List[_Job]) -> Dict[str, Judge0ExecutionResult]:
        async def _fetch(chunk: Sequence[_Job]) -> Dict[str, Judge0ExecutionResult]:
            try:
                return await self.client.get_batch_results([job.token for job in chunk])
            except Judge0Error as exc:
                logger.warning("Batch poll failed for %d tokens: %s", len(chunk), exc)
                return {}

        merged: Dict[str, Judge0ExecutionResult] = {}
        chunks = _chunks(pending, self.limits.max_grouped_submissions)
        for part in await _bounded_gather((_fetch(c) for c in chunks), limit=self.settings.judge0_submit_concurrency):
            merged.update(part)
        return merged

    async def _fetch_independent(self, pending: List[_Job]) -> Dict[str, Judge0ExecutionResult]:
        async def _fetch(job: _Job):
            try:
                return job.token, await self.client.get_submission_result(job.token)
            except Judge0Error as exc:
                logger.warning("Poll failed for token %s: %s", job.token, exc)
                return job.token, None

        pairs = await _bounded_gather((_fetch(j) for j in pending), limit=self.settings.judge0_submit_concurrency)
        return {token: raw for token, raw in pairs if raw is not None}

    @staticmethod
    async def _notify(progress: Optional[ProgressCallback], completed: int, total: int) -> None:
        if progress is None:
            return
        try:
            outcome = progress(completed, total)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.warning("Progress callback failed (%d/%d)", completed, total, exc_info=True)
