import asyncio
import json

import httpx
import pytest

from app.features.judge0.schemas import (
    Judge0ExecutionResult,
    Judge0SubmissionRequest,
    LanguageInfo,
    StatusKind,
    classify_status,
)
from app.features.judge0.service import Judge0Error, Judge0Service, Judge0TransportError


class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload


def _service(settings):
    return Judge0Service(settings=settings)


def test_base_url_gets_default_port_and_scheme(settings):
    settings.judge0_api_url = "judge.local/"
    service = _service(settings)
    assert service.base_url == "http://judge.local:2358"

    settings.judge0_api_url = "https://judge0-ce.p.rapidapi.com"
    assert _service(settings).base_url == "https://judge0-ce.p.rapidapi.com"


def test_rapidapi_key_is_masked_in_logs(settings):
    settings.judge0_api_key = "secret"
    settings.judge0_host = "judge0-ce.p.rapidapi.com"
    service = _service(settings)
    masked = service._mask_headers(service.headers)
    assert masked["X-RapidAPI-Key"] == "[REDACTED]"
    assert masked["X-RapidAPI-Host"] == "judge0-ce.p.rapidapi.com"
    assert service.headers["X-RapidAPI-Key"] == "secret"


def test_submit_batch_posts_all_jobs_and_keeps_token_order(monkeypatch, settings):
    service = _service(settings)
    captured = {}

    async def fake_request(method, path, **kwargs):
        captured["method"] = method
        captured["path"] = path
        captured["json"] = kwargs.get("json")
        return _FakeResponse([{"token": "t-1"}, {"token": "t-2"}], status_code=201)

    monkeypatch.setattr(service, "_request", fake_request)
    requests = [
        Judge0SubmissionRequest(source_code="print(1)", language_id=71, stdin="1\n", cpu_time_limit=5.0),
        Judge0SubmissionRequest(source_code="print(2)", language_id=71),
    ]

    tokens = asyncio.run(service.submit_batch(requests))

    assert tokens == ["t-1", "t-2"]
    assert captured["method"] == "POST"
    assert captured["path"].startswith("/submissions/batch")
    sent = captured["json"]["submissions"]
    assert len(sent) == 2
    assert sent[0]["cpu_time_limit"] == 5.0
    assert "stdin" not in sent[1]


def test_submit_batch_item_error_raises(monkeypatch, settings):
    service = _service(settings)

    async def fake_request(method, path, **kwargs):
        return _FakeResponse([{"token": "t-1"}, {"source_code": ["can't be blank"]}], status_code=201)

    monkeypatch.setattr(service, "_request", fake_request)
    requests = [Judge0SubmissionRequest(source_code="x", language_id=71)] * 2

    with pytest.raises(Judge0Error):
        asyncio.run(service.submit_batch(requests))


def test_submit_rejected_status_raises(monkeypatch, settings):
    service = _service(settings)

    async def fake_request(method, path, **kwargs):
        return _FakeResponse({"error": "quota"}, status_code=429)

    monkeypatch.setattr(service, "_request", fake_request)

    with pytest.raises(Judge0Error) as excinfo:
        asyncio.run(service.submit(Judge0SubmissionRequest(source_code="x", language_id=71)))
    assert excinfo.value.status_code == 429


def test_get_batch_results_normalises_flat_status(monkeypatch, settings):
    service = _service(settings)
    captured = {}

    async def fake_request(method, path, **kwargs):
        captured["path"] = path
        return _FakeResponse({
            "submissions": [
                {"token": "a", "stdout": "1\n", "status": {"id": 3, "description": "Accepted"}, "time": "0.01"},
                {"token": "b", "status_id": 5, "status_description": "Time Limit Exceeded"},
            ]
        })

    monkeypatch.setattr(service, "_request", fake_request)

    results = asyncio.run(service.get_batch_results(["a", "b"]))

    assert "tokens=a,b" in captured["path"]
    assert results["a"].status_id == 3
    assert results["a"].stdout == "1\n"
    assert results["b"].status_id == 5
    assert results["b"].status_description == "Time Limit Exceeded"


def test_get_submission_result_backfills_token(monkeypatch, settings):
    service = _service(settings)

    async def fake_request(method, path, **kwargs):
        return _FakeResponse({"stdout": "hi", "status": {"id": 2, "description": "Processing"}})

    monkeypatch.setattr(service, "_request", fake_request)

    result = asyncio.run(service.get_submission_result("tok"))

    assert result.token == "tok"
    assert result.is_pending


def test_request_retries_connect_errors_then_gives_up(monkeypatch, settings):
    service = _service(settings)
    calls = {"count": 0}
    sleeps = []

    async def failing_request(self, method, url, **kwargs):
        calls["count"] += 1
        raise httpx.ConnectError("connection refused")

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(httpx.AsyncClient, "request", failing_request)
    monkeypatch.setattr("app.features.judge0.service.asyncio.sleep", fake_sleep)

    with pytest.raises(Judge0TransportError):
        asyncio.run(service._request("GET", "/languages"))

    assert calls["count"] == 3
    assert sleeps == [0.5, 1.0]


def test_request_recovers_after_transient_connect_error(monkeypatch, settings):
    service = _service(settings)
    calls = {"count": 0}

    async def flaky_request(self, method, url, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectTimeout("timed out")
        return _FakeResponse([], status_code=200)

    async def fake_sleep(delay):
        return None

    monkeypatch.setattr(httpx.AsyncClient, "request", flaky_request)
    monkeypatch.setattr("app.features.judge0.service.asyncio.sleep", fake_sleep)

    resp = asyncio.run(service._request("GET", "/statuses"))

    assert resp.status_code == 200
    assert calls["count"] == 2


def test_request_without_base_url_fails_fast(settings):
    settings.judge0_api_url = ""
    service = _service(settings)
    with pytest.raises(Judge0Error):
        asyncio.run(service._request("GET", "/languages"))


def test_get_languages_is_cached(monkeypatch, settings):
    service = _service(settings)
    calls = {"count": 0}

    async def fake_request(method, path, **kwargs):
        calls["count"] += 1
        return _FakeResponse([{"id": 71, "name": "Python (3.8.1)"}, {"id": 54, "name": "C++ (GCC 9.2.0)"}])

    monkeypatch.setattr(service, "_request", fake_request)

    first = asyncio.run(service.get_languages())
    second = asyncio.run(service.get_languages())

    assert [lang.id for lang in first] == [71, 54]
    assert second == first
    assert calls["count"] == 1


def test_resolve_language_id_prefers_configuration(monkeypatch, settings):
    settings.judge0_python_language_id = 92
    service = _service(settings)

    async def boom():
        raise AssertionError("lookup should not happen")

    monkeypatch.setattr(service, "get_languages", boom)

    assert asyncio.run(service.resolve_language_id("python")) == 92


def test_resolve_language_id_looks_up_languages(monkeypatch, settings):
    service = _service(settings)

    async def fake_languages():
        return [
            LanguageInfo(id=50, name="C (GCC 9.2.0)"),
            LanguageInfo(id=76, name="C++ (Clang 7.0.1)"),
            LanguageInfo(id=100, name="Python (3.12.5)"),
        ]

    monkeypatch.setattr(service, "get_languages", fake_languages)

    assert asyncio.run(service.resolve_language_id("cpp")) == 76
    assert asyncio.run(service.resolve_language_id("Python")) == 100


def test_resolve_language_id_falls_back_to_defaults(monkeypatch, settings):
    service = _service(settings)

    async def failing_languages():
        raise Judge0TransportError("down")

    monkeypatch.setattr(service, "get_languages", failing_languages)

    assert asyncio.run(service.resolve_language_id("python")) == 71
    assert asyncio.run(service.resolve_language_id("cpp")) == 54
    with pytest.raises(Judge0Error):
        asyncio.run(service.resolve_language_id("cobol"))


@pytest.mark.parametrize(
    "status_id, message, expected",
    [
        (None, None, StatusKind.PENDING),
        (1, None, StatusKind.PENDING),
        (2, None, StatusKind.PENDING),
        (3, None, StatusKind.COMPLETED_SUCCESS),
        (4, None, StatusKind.COMPLETED_SUCCESS),
        (5, None, StatusKind.TIME_LIMIT_EXCEEDED),
        (6, None, StatusKind.COMPILE_ERROR),
        (7, None, StatusKind.RUNTIME_ERROR),
        (11, "Exited with error status 1", StatusKind.RUNTIME_ERROR),
        (11, "MemoryError", StatusKind.MEMORY_LIMIT_EXCEEDED),
        (12, None, StatusKind.RUNTIME_ERROR),
        (13, None, StatusKind.TRANSPORT_ERROR),
        (14, None, StatusKind.TRANSPORT_ERROR),
    ],
)
def test_classify_status(status_id, message, expected):
    assert classify_status(status_id, message) is expected


def test_execution_result_status_helpers():
    raw = Judge0ExecutionResult(token="t", status={"id": 3, "description": "Accepted"})
    assert raw.status_id == 3
    assert raw.status_description == "Accepted"
    assert not raw.is_pending
    assert Judge0ExecutionResult().is_pending


@pytest.mark.asyncio
async def test_metadata_failures_are_not_cached(monkeypatch, settings):
    service = _service(settings)
    responses = [
        _FakeResponse({"error": "unavailable"}, status_code=503),
        _FakeResponse([{"id": 1, "description": "In Queue"}, {"id": 3, "description": "Accepted"}]),
    ]

    async def fake_request(method, path, **kwargs):
        return responses.pop(0)

    monkeypatch.setattr(service, "_request", fake_request)

    with pytest.raises(Judge0Error) as excinfo:
        await service.get_statuses()
    assert excinfo.value.status_code == 503

    statuses = await service.get_statuses()
    assert [s.description for s in statuses] == ["In Queue", "Accepted"]
    assert await service.get_statuses() == statuses
    assert responses == []
