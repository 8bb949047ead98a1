import pytest

from app.features.judge0.schemas import StatusKind
from app.features.multitest.demux import (
    NO_OUTPUT,
    assemble_results,
    demultiplex,
    normalise,
    split_output_units,
    summarize_results,
)
from app.features.multitest.schemas import Batch, FailureCategory, JudgeJobResult, Language, TestCase

B = "@@MULTITEST-demux@@"


def _batch(n, *, batch_id=1, start=0, public=()):
    cases = tuple(
        TestCase(id=f"tc-{start + i}", input=str(i), expected_output=f"out{start + i}", is_public=(start + i) in public)
        for i in range(n)
    )
    return Batch(
        batch_id=batch_id,
        test_cases=cases,
        start_index=start,
        end_index=start + n - 1,
        language=Language.PYTHON,
        source_code="# driver",
        stdin="",
        output_boundary=B,
    )


def _ok(stdout, **kwargs):
    return JudgeJobResult(status_kind=StatusKind.COMPLETED_SUCCESS, status_id=3, status_description="Accepted", stdout=stdout, **kwargs)


def test_split_output_units_parses_frames_and_drops_trailing_text():
    stdout = f"a\nb\n{B} ok 0.010000\n{B} error:ValueError 0.5\nleftover"
    units = split_output_units(stdout, B)

    assert [u.output for u in units] == ["a\nb", ""]
    assert [u.status for u in units] == ["ok", "error:ValueError"]
    assert units[0].elapsed == pytest.approx(0.01)
    assert units[1].error_name == "ValueError"


def test_split_output_units_ignores_other_boundaries():
    stdout = f"x\n@@MULTITEST-other@@ ok 0.1\n{B} ok 0.1\n"
    units = split_output_units(stdout, B)
    assert [u.output for u in units] == ["x\n@@MULTITEST-other@@ ok 0.1"]


def test_split_output_units_empty():
    assert split_output_units("", B) == []
    assert split_output_units(None, B) == []
    assert split_output_units("x\n", None) == []


def test_normalise_handles_crlf_and_surrounding_whitespace():
    assert normalise("1 2\r\n3\r\n\n") == "1 2\n3"
    assert normalise(None) == ""


def test_success_batch_maps_units_in_order():
    batch = _batch(3)
    stdout = f"out0\n{B} ok 0.1\nout1\r\n{B} ok 0.2\nwrong\n{B} ok 0.3\n"
    results = demultiplex(batch, _ok(stdout, cpu_time=0.9))

    assert [r.passed for r in results] == [True, True, False]
    assert [r.index for r in results] == [0, 1, 2]
    assert results[2].failure_reason == "wrong answer"
    assert results[2].failure_category is FailureCategory.TEST_LOGIC
    assert results[2].actual == "wrong"
    assert [r.approx_execution_time for r in results] == [0.1, 0.2, 0.3]


def test_missing_units_report_no_output():
    batch = _batch(3)
    stdout = f"out0\n{B} ok 0.1\nout1\n{B} ok 0.1\n"
    results = demultiplex(batch, _ok(stdout, cpu_time=0.6))

    assert [r.passed for r in results] == [True, True, False]
    assert results[2].failure_reason == NO_OUTPUT
    assert results[2].actual == ""
    assert results[2].approx_execution_time == pytest.approx(0.2)


def test_error_unit_is_a_logic_failure():
    batch = _batch(2)
    stdout = f"partial\n{B} error:IndexError 0.01\nout1\n{B} ok 0.01\n"
    results = demultiplex(batch, _ok(stdout, stderr="Traceback ...\nIndexError: list index out of range"))

    assert not results[0].passed
    assert results[0].failure_reason == "runtime error: IndexError"
    assert results[0].failure_category is FailureCategory.TEST_LOGIC
    assert "IndexError" in results[0].details
    assert results[1].passed


@pytest.mark.parametrize(
    "kind, description, reason",
    [
        (StatusKind.TIME_LIMIT_EXCEEDED, "Time Limit Exceeded", "time limit exceeded"),
        (StatusKind.COMPILE_ERROR, "Compilation Error", "compilation error"),
        (StatusKind.RUNTIME_ERROR, "Runtime Error (NZEC)", "runtime error: Runtime Error (NZEC)"),
        (StatusKind.TRANSPORT_ERROR, "Submission failed: boom", "judge unavailable: Submission failed: boom"),
    ],
)
def test_failed_batch_fails_every_case_as_infrastructure(kind, description, reason):
    batch = _batch(4)
    result = JudgeJobResult(
        status_kind=kind,
        status_description=description,
        stdout=f"out0\n{B} ok 0.1\n",
        compile_output="main.cpp:1: error" if kind is StatusKind.COMPILE_ERROR else None,
        stderr="trace",
        cpu_time=2.0,
    )
    results = demultiplex(batch, result)

    assert len(results) == 4
    assert not any(r.passed for r in results)
    assert all(r.actual == description for r in results)
    assert all(r.failure_category is FailureCategory.BATCH_INFRASTRUCTURE for r in results)
    assert all(r.failure_reason == reason for r in results)
    assert all(r.batch_status is kind for r in results)
    assert all(r.approx_execution_time == pytest.approx(0.5) for r in results)
    if kind is StatusKind.COMPILE_ERROR:
        assert results[0].details == "main.cpp:1: error"
    else:
        assert results[0].details == "trace"


def test_demultiplex_is_idempotent():
    batch = _batch(2)
    result = _ok(f"out0\n{B} ok 0.1\nout1\n{B} ok 0.1\n")
    assert demultiplex(batch, result) == demultiplex(batch, result)


def test_assemble_results_orders_by_index_and_fills_missing_batches():
    first = _batch(2, batch_id=1, start=0)
    second = _batch(2, batch_id=2, start=2)
    third = _batch(1, batch_id=3, start=4)
    results = {
        3: _ok(f"out4\n{B} ok 0.1\n"),
        1: _ok(f"out0\n{B} ok 0.1\nout1\n{B} ok 0.1\n"),
    }

    assembled = assemble_results([third, first, second], results)

    assert [r.test_case_id for r in assembled] == ["tc-0", "tc-1", "tc-2", "tc-3", "tc-4"]
    assert [r.batch_id for r in assembled] == [1, 1, 2, 2, 3]
    assert [r.passed for r in assembled] == [True, True, False, False, True]
    assert assembled[2].batch_status is StatusKind.TRANSPORT_ERROR
    assert assembled[2].failure_category is FailureCategory.BATCH_INFRASTRUCTURE


def test_summarize_results():
    batch = _batch(3, public=(0, 1))
    stdout = f"out0\n{B} ok 0.1\nnope\n{B} ok 0.1\n"
    ok_results = demultiplex(batch, _ok(stdout))
    tle_results = demultiplex(
        _batch(1, batch_id=2, start=3),
        JudgeJobResult(status_kind=StatusKind.TIME_LIMIT_EXCEEDED, status_description="Time Limit Exceeded"),
    )

    summary = summarize_results(ok_results + tle_results)

    assert summary.total == 4
    assert summary.passed == 1
    assert summary.failed == 3
    assert summary.public_total == 2
    assert summary.public_passed == 1
    assert summary.failures_by_category == {"test_logic": 2, "batch_infrastructure": 1}
    assert summary.batch_statuses == {"completed_success": 3, "time_limit_exceeded": 1}
