from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, List, Optional

from app.common.quota import QuotaError, enforce_source_size, enforce_stdin_size
from app.core.config import Settings, get_settings
from app.features.judge0.service import Judge0Error, Judge0Service, judge0_service

from .batcher import divide_test_cases, ensure_supported_scale, generate_execution_plan
from .budget import calculate_batch_configuration, limits_from_settings
from .demux import assemble_results
from .dispatcher import BatchDispatcher, ProgressCallback
from .drivers import get_synthesizer
from .errors import ConfigurationError
from .schemas import ExecutionPlan, JudgeLimits, Language, TestCase, TestResult

logger = logging.getLogger(__name__)


def _validate_test_cases(test_cases: Iterable[TestCase]) -> List[TestCase]:
    cases = list(test_cases)
    seen = set()
    for tc in cases:
        if tc.id in seen:
            raise ConfigurationError(f"duplicate test case id {tc.id!r}")
        seen.add(tc.id)
    return cases


def _language(language: Language | str) -> Language:
    try:
        return Language(str(getattr(language, "value", language)).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"unsupported language {language!r}") from exc


class MultiTestService:
    """Runs every test case of one solution in as few judge jobs as is safe."""

    def __init__(
        self,
        client: Optional[Judge0Service] = None,
        *,
        settings: Optional[Settings] = None,
        limits: Optional[JudgeLimits] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or judge0_service
        self.limits = limits or limits_from_settings(self.settings)

    def plan(
        self,
        test_cases: Iterable[TestCase],
        time_limit_seconds: float,
        *,
        language: Language | str = Language.PYTHON,
    ) -> ExecutionPlan:
        """Batch layout and efficiency figures, without contacting the judge."""
        cases = _validate_test_cases(test_cases)
        return generate_execution_plan(cases, time_limit_seconds, self.limits, language=_language(language))

    async def evaluate(
        self,
        solution_source: str,
        test_cases: Iterable[TestCase],
        time_limit_seconds: float,
        *,
        language: Language | str = Language.PYTHON,
        deadline_seconds: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> List[TestResult]:
        """Evaluate ``solution_source`` against ``test_cases`` in input order.

        Raises ``ConfigurationError`` for bad inputs and ``SynthesisError``
        when the solution cannot be wrapped; both happen before anything is
        sent. Judge-side failures never raise: they show up as failed results.
        """
        started = time.perf_counter()
        lang = _language(language)
        if not (solution_source or "").strip():
            raise ConfigurationError("solution source is empty")
        try:
            enforce_source_size(solution_source)
        except QuotaError as exc:
            raise ConfigurationError(str(exc)) from exc
        cases = _validate_test_cases(test_cases)

        config = calculate_batch_configuration(time_limit_seconds, self.limits)
        batches = divide_test_cases(cases, config, language=lang)
        if not batches:
            return []
        ensure_supported_scale(batches, self.limits)

        synthesizer = get_synthesizer(lang)
        batches = [synthesizer.synthesize(solution_source, batch) for batch in batches]
        for batch in batches:
            try:
                enforce_stdin_size(batch.stdin, label=f"stdin of batch {batch.batch_id}")
            except QuotaError as exc:
                raise ConfigurationError(str(exc)) from exc

        try:
            language_id = await self.client.resolve_language_id(lang.value)
        except Judge0Error as exc:
            raise ConfigurationError(f"cannot resolve a judge language for {lang.value}: {exc}") from exc

        logger.info(
            "Evaluating %d test cases in %d batches (lang=%s, t=%.3fs, batch size=%d)",
            len(cases), len(batches), lang.value, config.time_per_test_case, config.max_test_cases_per_batch,
        )
        dispatcher = BatchDispatcher(self.client, settings=self.settings, limits=self.limits)
        job_results = await dispatcher.dispatch(
            batches,
            language_id,
            deadline_seconds=deadline_seconds,
            progress=progress,
        )
        results = assemble_results(batches, job_results)
        logger.info(
            "Evaluation finished: %d/%d passed in %.2fs",
            sum(1 for r in results if r.passed), len(results), time.perf_counter() - started,
        )
        return results

    def evaluate_sync(
        self,
        solution_source: str,
        test_cases: Iterable[TestCase],
        time_limit_seconds: float,
        **kwargs,
    ) -> List[TestResult]:
        """Blocking wrapper for callers without an event loop."""
        return asyncio.run(self.evaluate(solution_source, test_cases, time_limit_seconds, **kwargs))


multitest_service = MultiTestService()
