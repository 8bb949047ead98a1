from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Tuple

from dotenv import load_dotenv, find_dotenv

_env_path = find_dotenv(".env") or ".env"
load_dotenv(_env_path, override=False)

DEFAULT_TIER_CAPS = "0.5:45,1.0:22,*:11"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_tier_caps(raw: str) -> List[Tuple[float | None, int]]:
    """Parse ``"0.5:45,1.0:22,*:11"`` into ``[(0.5, 45), (1.0, 22), (None, 11)]``.

    Each entry caps the batch size for per-case time limits up to (and
    including) its threshold; ``*`` is the catch-all tier. Entries are
    returned sorted by threshold with the catch-all last.
    """
    tiers: List[Tuple[float | None, int]] = []
    catch_all: int | None = None
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        threshold, sep, cap = part.partition(":")
        if not sep:
            raise ValueError(f"invalid tier cap entry: {part!r}")
        cap_value = int(cap)
        if cap_value < 1:
            raise ValueError(f"tier cap must be >= 1: {part!r}")
        if threshold.strip() == "*":
            catch_all = cap_value
        else:
            tiers.append((float(threshold), cap_value))
    tiers.sort(key=lambda item: item[0])
    if catch_all is not None:
        tiers.append((None, catch_all))
    return tiers


class Settings:
    """Central configuration (env driven)."""

    def __init__(self) -> None:
        # Judge0 / external
        self.judge0_api_url: str = os.getenv("JUDGE0_BASE_URL") or os.getenv("JUDGE0_URL", "")
        self.judge0_api_key: str = os.getenv("JUDGE0_KEY", "")
        self.judge0_host: str = os.getenv("JUDGE0_HOST", "")
        self.judge0_timeout_s: float = _env_float("JUDGE0_TIMEOUT_S", 10.0)
        self.judge0_python_language_id: int | None = _env_optional_int("JUDGE0_PYTHON_LANGUAGE_ID")
        self.judge0_cpp_language_id: int | None = _env_optional_int("JUDGE0_CPP_LANGUAGE_ID")
        # Platform ceilings, found by probing the provider tier; not universal
        self.judge0_max_cpu_time_s: float = _env_float("JUDGE0_MAX_CPU_TIME_S", 25.0)
        self.judge0_max_wall_time_s: float = _env_float("JUDGE0_MAX_WALL_TIME_S", 30.0)
        self.judge0_max_batch_submissions: int = max(1, _env_int("JUDGE0_MAX_BATCH_SUBMISSIONS", 20))
        self.judge0_memory_limit_kb: int = _env_int("JUDGE0_MEMORY_LIMIT_KB", 256000)
        self.judge0_time_headroom_s: float = _env_float("JUDGE0_TIME_HEADROOM_S", 2.0)
        # Dispatch / polling
        self.judge0_dispatch_mode: str = os.getenv("JUDGE0_DISPATCH_MODE", "grouped").strip().lower()
        self.judge0_submit_concurrency: int = max(1, _env_int("JUDGE0_SUBMIT_CONCURRENCY", 4))
        self.judge0_poll_interval_s: float = _env_float("JUDGE0_POLL_INTERVAL_S", 1.0)
        self.judge0_poll_max_interval_s: float = _env_float("JUDGE0_POLL_MAX_INTERVAL_S", 3.0)
        self.judge0_max_poll_retries: int = max(0, _env_int("JUDGE0_MAX_POLL_RETRIES", 3))
        # Batch sizing
        self.batch_safety_margin: float = _env_float("BATCH_SAFETY_MARGIN", 0.75)
        self.batch_tier_caps: str = os.getenv("BATCH_TIER_CAPS", DEFAULT_TIER_CAPS)
        self.max_batches_per_evaluation: int = max(0, _env_int("MAX_BATCHES_PER_EVALUATION", 0))
        self.evaluation_deadline_s: float = _env_float("EVALUATION_DEADLINE_S", 120.0)
        # App meta
        self.app_name: str = "Multi-Test Batch Engine"
        self.debug: bool = os.getenv("DEBUG", "False").lower() == "true"
        self.log_level: str = os.getenv("LOG_LEVEL", "DEBUG" if self.debug else "INFO").upper()

    def tier_caps(self) -> List[Tuple[float | None, int]]:
        return parse_tier_caps(self.batch_tier_caps)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
