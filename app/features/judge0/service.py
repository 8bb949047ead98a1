import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse, urlunparse

import httpx

from app.common import cache as _cache
from app.core.config import Settings, get_settings
from .schemas import (
    Judge0ExecutionResult,
    Judge0Status,
    Judge0SubmissionRequest,
    Judge0SubmissionResponse,
    LanguageInfo,
)

RESULT_FIELDS = "token,stdout,stderr,compile_output,message,status,time,wall_time,memory"
METADATA_TTL_S = 3600

# Judge0 CE defaults when /languages is unavailable
_DEFAULT_LANGUAGE_IDS = {"python": 71, "cpp": 54}
_LANGUAGE_NAME_PREFIXES = {
    "python": ("python (3", "python 3"),
    "cpp": ("c++ (gcc", "c++ (clang", "c++"),
}


class Judge0Error(Exception):
    """Judge0 answered, but not with something usable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Judge0TransportError(Judge0Error):
    """The request never produced a response (connection failure, timeout)."""


def normalise_base_url(raw: Optional[str]) -> str:
    """``judge.local`` -> ``http://judge.local:2358``; https URLs keep their port."""
    base = (raw or "").strip()
    if not base:
        return ""
    if "://" not in base:
        base = "http://" + base
    parsed = urlparse(base)
    # self-hosted Judge0 CE listens on 2358
    if parsed.scheme == "http" and parsed.port is None:
        parsed = parsed._replace(netloc=f"{parsed.netloc}:2358")
    return urlunparse(parsed).rstrip("/")


class Judge0Service:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.base_url = normalise_base_url(self.settings.judge0_api_url)
        self.headers = {"Content-Type": "application/json"}
        # RapidAPI-hosted judges need both key and host headers
        if self.settings.judge0_api_key and self.settings.judge0_host:
            self.headers["X-RapidAPI-Key"] = self.settings.judge0_api_key
            self.headers["X-RapidAPI-Host"] = self.settings.judge0_host
        self._cache = _cache
        self._logger = logging.getLogger(__name__)
        self._max_connect_retries = 3

    @staticmethod
    def _mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
        masked = {}
        for k, v in (headers or {}).items():
            masked[k] = "[REDACTED]" if k.lower() == "x-rapidapi-key" else v
        return masked

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Perform an HTTP request against the configured Judge0 base URL.

        Connection-level failures are retried with a linear backoff; the request
        never reached Judge0 in that case, so retrying a POST cannot create a
        duplicate submission. Anything else surfaces as ``Judge0TransportError``.
        """
        if not self.base_url:
            raise Judge0Error("Judge0 base URL is not configured (JUDGE0_BASE_URL).")
        if not path.startswith("/"):
            path = "/" + path
        url = self.base_url + path
        self._logger.debug("Judge0 request: %s %s headers=%s", method, url, self._mask_headers(self.headers))
        timeout = httpx.Timeout(connect=3.0, read=self.settings.judge0_timeout_s, write=5.0, pool=5.0)
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        for attempt in range(self._max_connect_retries):
            try:
                async with httpx.AsyncClient(timeout=timeout, limits=limits) as client:
                    return await client.request(method, url, headers=self.headers, **kwargs)
            except (httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < self._max_connect_retries - 1:
                    backoff = 0.5 * (attempt + 1)
                    self._logger.warning(
                        "Judge0 connect failed (%s), retrying in %.1fs (attempt %d/%d)",
                        e, backoff, attempt + 1, self._max_connect_retries,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise Judge0TransportError(f"Failed to connect to Judge0 at {self.base_url}: {e}") from e
            except httpx.HTTPError as e:
                raise Judge0TransportError(f"Judge0 request {method} {path} failed: {e}") from e
        raise Judge0TransportError(f"Failed to connect to Judge0 at {self.base_url}")

    @staticmethod
    def _ensure_status(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fold flat ``status_id``/``status_description`` fields into ``status``."""
        if not isinstance(payload, dict):
            return payload
        status = dict(payload.get("status") or {})
        if "id" not in status and payload.get("status_id") is not None:
            status["id"] = payload["status_id"]
        if not status.get("description") and payload.get("status_description"):
            status["description"] = payload["status_description"]
        if not status:
            return payload
        status.setdefault("description", "")
        return {**payload, "status": status}

    @staticmethod
    def _expect(resp: httpx.Response, status_code: int, what: str) -> None:
        if resp.status_code != status_code:
            raise Judge0Error(f"{what}: {resp.status_code} body={resp.text[:200]}", status_code=resp.status_code)

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise Judge0Error(f"Failed to parse {what} JSON: {e} body={resp.text[:200]}", status_code=resp.status_code) from e

    async def get_languages(self) -> List[LanguageInfo]:
        async def _load() -> List[LanguageInfo]:
            resp = await self._request("GET", "/languages")
            self._expect(resp, 200, "Failed to fetch languages")
            return [LanguageInfo(id=lang.get("id"), name=lang.get("name")) for lang in self._json(resp, "languages")]

        return await self._cache.get_or_load("judge0:languages", _load, ttl=METADATA_TTL_S)

    async def get_statuses(self) -> List[Judge0Status]:
        async def _load() -> List[Judge0Status]:
            resp = await self._request("GET", "/statuses")
            self._expect(resp, 200, "Failed to fetch statuses")
            return [Judge0Status(id=s.get("id"), description=s.get("description")) for s in self._json(resp, "statuses")]

        return await self._cache.get_or_load("judge0:statuses", _load, ttl=METADATA_TTL_S)

    def _configured_language_id(self, language: str) -> Optional[int]:
        if language == "python":
            return self.settings.judge0_python_language_id
        if language == "cpp":
            return self.settings.judge0_cpp_language_id
        return None

    async def resolve_language_id(self, language: str) -> int:
        """Map an engine language key to a Judge0 language id.

        Order: explicit configuration, ``/languages`` lookup (cached), Judge0 CE
        defaults.
        """
        language = (language or "").strip().lower()
        configured = self._configured_language_id(language)
        if configured:
            return configured
        prefixes = _LANGUAGE_NAME_PREFIXES.get(language, ())
        if prefixes:
            try:
                for lang in await self.get_languages():
                    name = (lang.name or "").lower()
                    if name.startswith(prefixes):
                        return int(lang.id)
            except Judge0Error as exc:
                self._logger.info("Language lookup failed (%s); using Judge0 CE default for %s", exc, language)
        if language not in _DEFAULT_LANGUAGE_IDS:
            raise Judge0Error(f"Unknown language: {language!r}")
        return _DEFAULT_LANGUAGE_IDS[language]

    async def submit(self, request: Judge0SubmissionRequest) -> Judge0SubmissionResponse:
        response = await self._request(
            "POST",
            "/submissions?base64_encoded=false&wait=false",
            json=request.model_dump(exclude_none=True),
        )
        self._expect(response, 201, "Failed to submit code")
        token = (self._json(response, "submission") or {}).get("token")
        if not token:
            raise Judge0Error("Judge0 returned an empty token", status_code=response.status_code)
        return Judge0SubmissionResponse(token=token)

    async def submit_batch(self, requests: Sequence[Judge0SubmissionRequest]) -> List[str]:
        """Submit several jobs in one call; tokens come back in submission order."""
        payload = {"submissions": [r.model_dump(exclude_none=True) for r in requests]}
        resp = await self._request(
            "POST",
            "/submissions/batch?base64_encoded=false",
            json=payload,
        )
        self._expect(resp, 201, "Batch submit failed")
        data = self._json(resp, "batch submission")
        items = data.get("submission_tokens", []) if isinstance(data, dict) else data
        tokens: List[str] = []
        for item in items or []:
            tok = item.get("token") if isinstance(item, dict) else None
            if not tok:
                # Judge0 reports per-item validation errors in place of a token
                raise Judge0Error(f"Batch submit rejected an item: {item}", status_code=resp.status_code)
            tokens.append(tok)
        if len(tokens) != len(requests):
            raise Judge0Error("Token count mismatch in batch response", status_code=resp.status_code)
        return tokens

    async def get_submission_result(self, token: str, *, fields: Optional[str] = RESULT_FIELDS) -> Judge0ExecutionResult:
        path = f"/submissions/{token}?base64_encoded=false"
        if fields:
            path = f"{path}&fields={fields}"
        resp = await self._request("GET", path)
        self._expect(resp, 200, "Failed to get result")
        raw = Judge0ExecutionResult(**self._ensure_status(self._json(resp, "submission result")))
        if not raw.token:
            raw = raw.model_copy(update={"token": token})
        return raw

    async def get_batch_results(
        self,
        tokens: Sequence[str],
        *,
        fields: Optional[str] = RESULT_FIELDS,
    ) -> Dict[str, Judge0ExecutionResult]:
        """Fetch multiple submissions by tokens (returns mapping token -> result)."""
        if not tokens:
            return {}
        query = f"/submissions/batch?tokens={','.join(tokens)}&base64_encoded=false"
        if fields:
            query = f"{query}&fields={fields}"
        resp = await self._request("GET", query)
        self._expect(resp, 200, "Batch get failed")
        data = self._json(resp, "batch result")
        # Judge0 batch GET returns {"submissions": [...]}
        arr = data.get("submissions", []) if isinstance(data, dict) else data
        results: Dict[str, Judge0ExecutionResult] = {}
        for item in arr or []:
            tok = item.get("token") if isinstance(item, dict) else None
            if tok:
                results[tok] = Judge0ExecutionResult(**self._ensure_status(item))
        return results


judge0_service = Judge0Service()
