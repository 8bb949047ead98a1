"""Batch sizing against the judge's per-job time ceiling."""

from __future__ import annotations

import logging
import math
from typing import Optional

from app.core.config import Settings, get_settings

from .errors import ConfigurationError
from .schemas import BatchConfiguration, BatchValidation, Difficulty, EfficiencyGains, JudgeLimits

logger = logging.getLogger(__name__)

EASY_MAX_TIME_LIMIT = 0.5
MEDIUM_MAX_TIME_LIMIT = 1.0


def limits_from_settings(settings: Optional[Settings] = None) -> JudgeLimits:
    settings = settings or get_settings()
    try:
        tier_caps = tuple(settings.tier_caps())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid BATCH_TIER_CAPS: {exc}") from exc
    return JudgeLimits(
        max_cpu_time=settings.judge0_max_cpu_time_s,
        max_wall_time=settings.judge0_max_wall_time_s,
        safety_margin=settings.batch_safety_margin,
        max_grouped_submissions=settings.judge0_max_batch_submissions,
        memory_limit_kb=settings.judge0_memory_limit_kb,
        time_headroom=settings.judge0_time_headroom_s,
        tier_caps=tier_caps,
        max_batches_per_evaluation=settings.max_batches_per_evaluation,
    )


def _check_time_limit(time_limit_seconds: float) -> float:
    try:
        value = float(time_limit_seconds)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"time limit must be a number, got {time_limit_seconds!r}") from exc
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"time limit must be a positive finite number of seconds, got {time_limit_seconds!r}")
    return value


def _check_limits(limits: JudgeLimits) -> None:
    if not (0 < limits.safety_margin <= 1):
        raise ConfigurationError(f"safety margin must be in (0, 1], got {limits.safety_margin}")
    if limits.max_cpu_time <= 0 or limits.max_wall_time <= 0:
        raise ConfigurationError("judge time ceilings must be positive")
    if limits.time_headroom < 0:
        raise ConfigurationError(f"time headroom must not be negative, got {limits.time_headroom}")
    if not limits.tier_caps:
        raise ConfigurationError("at least one tier cap is required")
    # a full batch plus headroom must fit under both ceilings
    needed = max(limits.max_cpu_time, limits.max_wall_time) * limits.safety_margin + limits.time_headroom
    if needed > min(limits.max_cpu_time, limits.max_wall_time):
        raise ConfigurationError(
            f"safe batch time plus headroom ({needed:.1f}s) exceeds the CPU ceiling ({limits.max_cpu_time:.1f}s) "
            f"or wall ceiling ({limits.max_wall_time:.1f}s); lower the safety margin or raise the ceilings"
        )


def determine_problem_difficulty(time_limit_seconds: float) -> Difficulty:
    t = _check_time_limit(time_limit_seconds)
    if t <= EASY_MAX_TIME_LIMIT:
        return Difficulty.EASY
    if t <= MEDIUM_MAX_TIME_LIMIT:
        return Difficulty.MEDIUM
    return Difficulty.HARD


def tier_cap_for(time_limit_seconds: float, limits: JudgeLimits) -> int:
    """Cap on batch size from the first tier whose threshold covers ``t``."""
    t = _check_time_limit(time_limit_seconds)
    for threshold, cap in limits.tier_caps:
        if threshold is None or t <= threshold:
            return cap
    # no catch-all configured: the last (largest) threshold's cap applies
    return limits.tier_caps[-1][1]


def calculate_batch_configuration(time_limit_seconds: float, limits: Optional[JudgeLimits] = None) -> BatchConfiguration:
    """Largest safe batch size for a per-case time limit.

    Every case is assumed to use its full limit, so a batch of ``n`` cases
    needs ``n * t`` seconds; that must fit under the ceiling scaled by the
    safety margin. Slower problems are additionally capped by tier.
    """
    t = _check_time_limit(time_limit_seconds)
    limits = limits or limits_from_settings()
    _check_limits(limits)

    safe_max_time = max(limits.max_cpu_time, limits.max_wall_time) * limits.safety_margin
    for_time = math.floor(safe_max_time / t)
    size = max(1, min(for_time, tier_cap_for(t, limits)))
    if for_time < 1:
        logger.warning(
            "time limit %.3fs exceeds the safe batch ceiling %.3fs; each case runs alone", t, safe_max_time
        )
    return BatchConfiguration(
        max_test_cases_per_batch=size,
        max_total_time_per_batch=size * t,
        safety_margin=limits.safety_margin,
        time_per_test_case=t,
        safe_max_time=safe_max_time,
        difficulty=determine_problem_difficulty(t),
    )


def validate_batch_configuration(
    test_case_count: int,
    time_limit_seconds: float,
    limits: Optional[JudgeLimits] = None,
) -> BatchValidation:
    """Check whether ``test_case_count`` cases fit in one judge job."""
    limits = limits or limits_from_settings()
    try:
        config = calculate_batch_configuration(time_limit_seconds, limits)
    except ConfigurationError as exc:
        return BatchValidation(is_valid=False, reason=exc.message)

    total_time = test_case_count * config.time_per_test_case
    if total_time > config.safe_max_time:
        return BatchValidation(
            is_valid=False,
            reason=f"Batch would take {total_time:.1f}s, exceeding safe limit of {config.safe_max_time:.1f}s",
            recommendation=f"Reduce batch size to {config.max_test_cases_per_batch} test cases",
        )
    if test_case_count > config.max_test_cases_per_batch:
        return BatchValidation(
            is_valid=False,
            reason=f"Batch size {test_case_count} exceeds recommended maximum of {config.max_test_cases_per_batch}",
            recommendation=f"Split into batches of {config.max_test_cases_per_batch} test cases",
        )
    return BatchValidation(is_valid=True)


def calculate_efficiency_gains(
    test_case_count: int,
    time_limit_seconds: float,
    limits: Optional[JudgeLimits] = None,
) -> EfficiencyGains:
    config = calculate_batch_configuration(time_limit_seconds, limits)
    traditional = max(0, int(test_case_count))
    batched = math.ceil(traditional / config.max_test_cases_per_batch) if traditional else 0
    if batched:
        gain = round(traditional / batched, 1)
        saved = round((traditional - batched) / traditional * 100, 1)
    else:
        gain = 0.0
        saved = 0.0
    return EfficiencyGains(
        traditional_api_calls=traditional,
        batched_api_calls=batched,
        efficiency_gain=gain,
        api_quota_saved=saved,
    )
