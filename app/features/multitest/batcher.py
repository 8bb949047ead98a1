from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .budget import (
    calculate_batch_configuration,
    calculate_efficiency_gains,
    limits_from_settings,
    validate_batch_configuration,
)
from .errors import ExceedsSupportedScaleError
from .schemas import Batch, BatchConfiguration, ExecutionPlan, JudgeLimits, Language, PlanSummary, TestCase

logger = logging.getLogger(__name__)


def divide_test_cases(
    test_cases: Sequence[TestCase],
    config: BatchConfiguration,
    *,
    language: Language | str = Language.PYTHON,
) -> List[Batch]:
    """Split ``test_cases`` into contiguous batches, preserving order.

    Batch ids start at 1; ``start_index``/``end_index`` are inclusive
    positions in the original list. The last batch may be smaller.
    """
    size = config.max_test_cases_per_batch
    batches: List[Batch] = []
    for start in range(0, len(test_cases), size):
        chunk = tuple(test_cases[start:start + size])
        batches.append(
            Batch(
                batch_id=len(batches) + 1,
                test_cases=chunk,
                start_index=start,
                end_index=start + len(chunk) - 1,
                language=Language(language),
                estimated_execution_time=len(chunk) * config.time_per_test_case,
            )
        )
    return batches


def flatten_batches(batches: Sequence[Batch]) -> List[TestCase]:
    return [tc for batch in batches for tc in batch.test_cases]


def ensure_supported_scale(batches: Sequence[Batch], limits: Optional[JudgeLimits] = None) -> None:
    """Reject evaluations over the configured batch cap before anything is sent."""
    limits = limits or limits_from_settings()
    cap = limits.max_batches_per_evaluation
    if cap and len(batches) > cap:
        raise ExceedsSupportedScaleError(
            f"evaluation needs {len(batches)} batches but at most {cap} are supported per evaluation"
        )
    rounds = -(-len(batches) // limits.max_grouped_submissions) if batches else 0
    if rounds > 1:
        logger.info(
            "%d batches exceed the grouped submission width %d; dispatching in %d rounds",
            len(batches), limits.max_grouped_submissions, rounds,
        )


def generate_execution_plan(
    test_cases: Sequence[TestCase],
    time_limit_seconds: float,
    limits: Optional[JudgeLimits] = None,
    *,
    language: Language | str = Language.PYTHON,
) -> ExecutionPlan:
    limits = limits or limits_from_settings()
    config = calculate_batch_configuration(time_limit_seconds, limits)
    batches = divide_test_cases(test_cases, config, language=language)
    count = len(test_cases)
    summary = PlanSummary(
        total_test_cases=count,
        total_batches=len(batches),
        average_test_cases_per_batch=round(count / len(batches), 1) if batches else 0.0,
        max_batch_time=max((b.estimated_execution_time for b in batches), default=0.0),
        total_estimated_time=sum(b.estimated_execution_time for b in batches),
        difficulty=config.difficulty,
    )
    return ExecutionPlan(
        configuration=config,
        batches=batches,
        validation=validate_batch_configuration(min(count, config.max_test_cases_per_batch), time_limit_seconds, limits),
        efficiency=calculate_efficiency_gains(count, time_limit_seconds, limits),
        summary=summary,
    )
