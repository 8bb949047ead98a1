"""Splits batch output back into per-test-case results."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence

from app.features.judge0.schemas import StatusKind

from .schemas import Batch, FailureCategory, JudgeJobResult, OutputUnit, ResultSummary, TestResult

logger = logging.getLogger(__name__)

NO_OUTPUT = "no output produced"
WRONG_ANSWER = "wrong answer"
DETAILS_MAX_CHARS = 4000

_BATCH_FAILURE_REASONS = {
    StatusKind.RUNTIME_ERROR: "runtime error",
    StatusKind.COMPILE_ERROR: "compilation error",
    StatusKind.TIME_LIMIT_EXCEEDED: "time limit exceeded",
    StatusKind.MEMORY_LIMIT_EXCEEDED: "memory limit exceeded",
    StatusKind.TRANSPORT_ERROR: "judge unavailable",
    StatusKind.PENDING: "judge did not finish",
}


def normalise(text: Optional[str]) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def split_output_units(stdout: Optional[str], boundary: Optional[str]) -> List[OutputUnit]:
    """Parse ``<output><boundary> <status> <elapsed>`` frames out of ``stdout``.

    Text after the last marker line belongs to no unit and is dropped.
    """
    if not stdout or not boundary:
        return []
    marker = re.compile(r"^" + re.escape(boundary) + r" (\S+) (\S+)\s*$")
    units: List[OutputUnit] = []
    pending: List[str] = []
    for line in stdout.replace("\r\n", "\n").split("\n"):
        m = marker.match(line)
        if m is None:
            pending.append(line)
            continue
        try:
            elapsed: Optional[float] = float(m.group(2))
        except ValueError:
            elapsed = None
        units.append(OutputUnit(output="\n".join(pending), status=m.group(1), elapsed=elapsed))
        pending = []
    return units


def _truncate(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    text = text.strip()
    if len(text) > DETAILS_MAX_CHARS:
        return text[:DETAILS_MAX_CHARS] + "\n... (truncated)"
    return text or None


def _per_case_time(result: JudgeJobResult, batch: Batch) -> Optional[float]:
    if result.cpu_time is None or not batch.size:
        return None
    return round(result.cpu_time / batch.size, 6)


def _batch_failure(batch: Batch, result: JudgeJobResult) -> List[TestResult]:
    description = result.status_description or result.status_kind.value.replace("_", " ")
    label = _BATCH_FAILURE_REASONS.get(result.status_kind, result.status_kind.value)
    reason = label if description.lower() == label else f"{label}: {description}"
    details = _truncate(result.compile_output) or _truncate(result.stderr) or _truncate(result.message)
    approx = _per_case_time(result, batch)
    return [
        TestResult(
            test_case_id=tc.id,
            batch_id=batch.batch_id,
            index=batch.start_index + offset,
            is_public=tc.is_public,
            passed=False,
            expected=tc.expected_output,
            actual=description,
            approx_execution_time=approx,
            failure_category=FailureCategory.BATCH_INFRASTRUCTURE,
            failure_reason=reason,
            batch_status=result.status_kind,
            details=details,
        )
        for offset, tc in enumerate(batch.test_cases)
    ]


def demultiplex(batch: Batch, result: JudgeJobResult) -> List[TestResult]:
    """Per-case results for one batch, in batch order."""
    if result.status_kind != StatusKind.COMPLETED_SUCCESS:
        return _batch_failure(batch, result)

    units = split_output_units(result.stdout, batch.output_boundary)
    if len(units) > batch.size:
        logger.debug("Batch %d produced %d units for %d cases", batch.batch_id, len(units), batch.size)
    fallback_time = _per_case_time(result, batch)
    stderr = _truncate(result.stderr)
    out: List[TestResult] = []
    for offset, tc in enumerate(batch.test_cases):
        common = dict(
            test_case_id=tc.id,
            batch_id=batch.batch_id,
            index=batch.start_index + offset,
            is_public=tc.is_public,
            expected=tc.expected_output,
            batch_status=result.status_kind,
        )
        if offset >= len(units):
            out.append(TestResult(
                **common,
                passed=False,
                actual="",
                approx_execution_time=fallback_time,
                failure_category=FailureCategory.TEST_LOGIC,
                failure_reason=NO_OUTPUT,
                details=stderr,
            ))
            continue
        unit = units[offset]
        approx = unit.elapsed if unit.elapsed is not None else fallback_time
        if unit.error_name:
            out.append(TestResult(
                **common,
                passed=False,
                actual=unit.output,
                approx_execution_time=approx,
                failure_category=FailureCategory.TEST_LOGIC,
                failure_reason=f"runtime error: {unit.error_name}",
                details=stderr,
            ))
            continue
        passed = normalise(unit.output) == normalise(tc.expected_output)
        out.append(TestResult(
            **common,
            passed=passed,
            actual=unit.output,
            approx_execution_time=approx,
            failure_category=None if passed else FailureCategory.TEST_LOGIC,
            failure_reason=None if passed else WRONG_ANSWER,
        ))
    return out


def assemble_results(batches: Sequence[Batch], results: Mapping[int, JudgeJobResult]) -> List[TestResult]:
    """Flatten per-batch results into original test case order."""
    assembled: List[TestResult] = []
    for batch in batches:
        result = results.get(batch.batch_id)
        if result is None:
            logger.warning("No judge result for batch %d; reporting it as a transport error", batch.batch_id)
            result = JudgeJobResult(
                status_kind=StatusKind.TRANSPORT_ERROR,
                status_description="No result received for this batch",
            )
        assembled.extend(demultiplex(batch, result))
    assembled.sort(key=lambda r: r.index)
    return assembled


def summarize_results(results: Sequence[TestResult]) -> ResultSummary:
    categories: Dict[str, int] = Counter(
        r.failure_category.value for r in results if not r.passed and r.failure_category is not None
    )
    statuses: Dict[str, int] = Counter(r.batch_status.value for r in results)
    public = [r for r in results if r.is_public]
    passed = sum(1 for r in results if r.passed)
    return ResultSummary(
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        public_passed=sum(1 for r in public if r.passed),
        public_total=len(public),
        failures_by_category=dict(categories),
        batch_statuses=dict(statuses),
    )
