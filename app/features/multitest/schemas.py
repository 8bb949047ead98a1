from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.features.judge0.schemas import StatusKind


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class FailureCategory(str, Enum):
    TEST_LOGIC = "test_logic"
    BATCH_INFRASTRUCTURE = "batch_infrastructure"


class Language(str, Enum):
    PYTHON = "python"
    CPP = "cpp"


class TestCase(BaseModel):
    model_config = ConfigDict(frozen=True)
    __test__ = False

    id: str
    input: str = ""
    expected_output: str = ""
    is_public: bool = False


class JudgeLimits(BaseModel):
    """Platform ceilings the batch sizing works against."""

    model_config = ConfigDict(frozen=True)

    max_cpu_time: float = 25.0
    max_wall_time: float = 30.0
    safety_margin: float = 0.75
    max_grouped_submissions: int = 20
    memory_limit_kb: int = 256000
    time_headroom: float = 2.0
    tier_caps: Tuple[Tuple[Optional[float], int], ...] = ((0.5, 45), (1.0, 22), (None, 11))
    max_batches_per_evaluation: int = 0


class BatchConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_test_cases_per_batch: int = Field(ge=1)
    max_total_time_per_batch: float
    safety_margin: float
    time_per_test_case: float
    safe_max_time: float
    difficulty: Difficulty


class Batch(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: int
    test_cases: Tuple[TestCase, ...]
    start_index: int
    end_index: int
    language: Language = Language.PYTHON
    estimated_execution_time: float = 0.0
    # filled in by a driver synthesizer
    source_code: Optional[str] = None
    stdin: Optional[str] = None
    output_boundary: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.test_cases)

    @property
    def is_synthesized(self) -> bool:
        return self.source_code is not None and self.stdin is not None and bool(self.output_boundary)


class JudgeJobResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_kind: StatusKind
    status_id: Optional[int] = None
    status_description: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    cpu_time: Optional[float] = None
    wall_time: Optional[float] = None
    memory: Optional[int] = None
    token: Optional[str] = None


class TestResult(BaseModel):
    model_config = ConfigDict(frozen=True)
    __test__ = False

    test_case_id: str
    batch_id: int
    index: int
    is_public: bool
    passed: bool
    expected: str
    actual: str
    approx_execution_time: Optional[float] = None
    failure_category: Optional[FailureCategory] = None
    failure_reason: Optional[str] = None
    batch_status: StatusKind
    details: Optional[str] = None


class OutputUnit(BaseModel):
    """One case's framed slice of a batch's stdout."""

    model_config = ConfigDict(frozen=True)

    output: str
    status: str = "ok"
    elapsed: Optional[float] = None

    @property
    def error_name(self) -> Optional[str]:
        if self.status.startswith("error:"):
            return self.status[len("error:"):] or "Exception"
        return None


class BatchValidation(BaseModel):
    is_valid: bool
    reason: Optional[str] = None
    recommendation: Optional[str] = None


class EfficiencyGains(BaseModel):
    traditional_api_calls: int
    batched_api_calls: int
    efficiency_gain: float
    api_quota_saved: float


class PlanSummary(BaseModel):
    total_test_cases: int
    total_batches: int
    average_test_cases_per_batch: float
    max_batch_time: float
    total_estimated_time: float
    difficulty: Difficulty


class ExecutionPlan(BaseModel):
    configuration: BatchConfiguration
    batches: List[Batch]
    validation: BatchValidation
    efficiency: EfficiencyGains
    summary: PlanSummary


class ResultSummary(BaseModel):
    total: int
    passed: int
    failed: int
    public_passed: int
    public_total: int
    failures_by_category: Dict[str, int] = Field(default_factory=dict)
    batch_statuses: Dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------


class TestCaseIn(BaseModel):
    __test__ = False

    id: str
    input: str = ""
    expected_output: str = ""
    is_public: bool = False

    def to_test_case(self) -> TestCase:
        return TestCase(**self.model_dump())


class EvaluationRequest(BaseModel):
    source_code: str
    language: Language = Language.PYTHON
    time_limit_seconds: float
    test_cases: List[TestCaseIn] = Field(default_factory=list)
    deadline_seconds: Optional[float] = None


class EvaluationResponse(BaseModel):
    results: List[TestResult]
    summary: ResultSummary


class PlanRequest(BaseModel):
    time_limit_seconds: float
    test_cases: List[TestCaseIn] = Field(default_factory=list)
    language: Language = Language.PYTHON


class BatchPreview(BaseModel):
    batch_id: int
    start_index: int
    end_index: int
    size: int
    estimated_execution_time: float
    test_case_ids: List[str]


class PlanResponse(BaseModel):
    configuration: BatchConfiguration
    batches: List[BatchPreview]
    validation: BatchValidation
    efficiency: EfficiencyGains
    summary: PlanSummary
