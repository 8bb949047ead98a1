from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel


class Judge0StatusId(IntEnum):
    """Status ids reported by Judge0 CE (``GET /statuses``)."""

    IN_QUEUE = 1
    PROCESSING = 2
    ACCEPTED = 3
    WRONG_ANSWER = 4
    TIME_LIMIT_EXCEEDED = 5
    COMPILATION_ERROR = 6
    RUNTIME_ERROR_SIGSEGV = 7
    RUNTIME_ERROR_SIGXFSZ = 8
    RUNTIME_ERROR_SIGFPE = 9
    RUNTIME_ERROR_SIGABRT = 10
    RUNTIME_ERROR_NZEC = 11
    RUNTIME_ERROR_OTHER = 12
    INTERNAL_ERROR = 13
    EXEC_FORMAT_ERROR = 14


PENDING_STATUS_IDS = frozenset({Judge0StatusId.IN_QUEUE, Judge0StatusId.PROCESSING})


class Judge0SubmissionRequest(BaseModel):
    source_code: str
    language_id: int
    stdin: Optional[str] = None
    expected_output: Optional[str] = None
    cpu_time_limit: Optional[float] = None
    cpu_extra_time: Optional[float] = None
    wall_time_limit: Optional[float] = None
    memory_limit: Optional[int] = None
    stack_limit: Optional[int] = None
    max_processes_and_or_threads: Optional[int] = None
    enable_per_process_and_thread_time_limit: Optional[bool] = None
    enable_per_process_and_thread_memory_limit: Optional[bool] = None
    max_file_size: Optional[int] = None
    number_of_runs: Optional[int] = None
    redirect_stderr_to_stdout: Optional[bool] = None


class Judge0SubmissionResponse(BaseModel):
    token: str


class Judge0ExecutionResult(BaseModel):
    token: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[str] = None
    wall_time: Optional[str] = None
    memory: Optional[int] = None
    status: dict = {}
    language: Optional[dict] = None

    @property
    def status_id(self) -> Optional[int]:
        value = (self.status or {}).get("id")
        return int(value) if value is not None else None

    @property
    def status_description(self) -> Optional[str]:
        return (self.status or {}).get("description") or None

    @property
    def is_pending(self) -> bool:
        return self.status_id is None or self.status_id in PENDING_STATUS_IDS


class LanguageInfo(BaseModel):
    id: int
    name: str


class Judge0Status(BaseModel):
    id: int
    description: str


class StatusKind(str, Enum):
    """Engine-level outcome of one judge job."""

    COMPLETED_SUCCESS = "completed_success"
    RUNTIME_ERROR = "runtime_error"
    COMPILE_ERROR = "compile_error"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    TRANSPORT_ERROR = "transport_error"
    PENDING = "pending"

    @property
    def is_terminal(self) -> bool:
        return self is not StatusKind.PENDING


_RUNTIME_ERROR_IDS = frozenset(range(Judge0StatusId.RUNTIME_ERROR_SIGSEGV, Judge0StatusId.RUNTIME_ERROR_OTHER + 1))
_MEMORY_HINTS = ("memory limit", "out of memory", "cannot allocate memory", "std::bad_alloc", "memoryerror")


def classify_status(status_id: Optional[int], message: Optional[str] = None) -> StatusKind:
    """Map a Judge0 status id (plus its message, if any) to a ``StatusKind``.

    Judge0 has no dedicated memory status; an out-of-memory kill surfaces as a
    runtime error whose message or stderr mentions memory.
    """
    if status_id is None or status_id in PENDING_STATUS_IDS:
        return StatusKind.PENDING
    # No expected_output is sent, so "Wrong Answer" only means the job ran.
    if status_id in (Judge0StatusId.ACCEPTED, Judge0StatusId.WRONG_ANSWER):
        return StatusKind.COMPLETED_SUCCESS
    if status_id == Judge0StatusId.TIME_LIMIT_EXCEEDED:
        return StatusKind.TIME_LIMIT_EXCEEDED
    if status_id == Judge0StatusId.COMPILATION_ERROR:
        return StatusKind.COMPILE_ERROR
    if status_id in _RUNTIME_ERROR_IDS:
        lowered = (message or "").lower()
        if any(hint in lowered for hint in _MEMORY_HINTS):
            return StatusKind.MEMORY_LIMIT_EXCEEDED
        return StatusKind.RUNTIME_ERROR
    return StatusKind.TRANSPORT_ERROR
