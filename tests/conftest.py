import sys
import os

import pytest

# Ensure repo root on sys.path for imports like `app...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.common import cache  # noqa: E402
from app.core.config import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_metadata_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def settings():
    """Fresh settings with deterministic judge limits (env overrides ignored)."""
    s = Settings()
    s.judge0_api_url = "http://judge.test:2358"
    s.judge0_api_key = ""
    s.judge0_host = ""
    s.judge0_python_language_id = None
    s.judge0_cpp_language_id = None
    s.judge0_max_cpu_time_s = 25.0
    s.judge0_max_wall_time_s = 30.0
    s.judge0_max_batch_submissions = 20
    s.judge0_memory_limit_kb = 256000
    s.judge0_time_headroom_s = 2.0
    s.judge0_dispatch_mode = "grouped"
    s.judge0_submit_concurrency = 4
    s.judge0_poll_interval_s = 0.0
    s.judge0_poll_max_interval_s = 0.0
    s.judge0_max_poll_retries = 3
    s.batch_safety_margin = 0.75
    s.batch_tier_caps = "0.5:45,1.0:22,*:11"
    s.max_batches_per_evaluation = 0
    s.evaluation_deadline_s = 60.0
    return s
