from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

import requests

from minutes_digest.config import (
    GEMINI_BASE_URL,
    GEMINI_MAX_RETRIES,
    GEMINI_MODEL,
    GEMINI_RETRY_BACKOFF_SECONDS,
    GEMINI_TIMEOUT_SECONDS,
)
from minutes_digest.metrics import record_provider_request


logger = logging.getLogger("gemini-provider")


class ProviderError(RuntimeError):
    """Base provider error type for the summarizer's skip decision."""


class ProviderTimeoutError(ProviderError):
    """Provider timed out waiting for inference response."""


class ProviderUnavailableError(ProviderError):
    """Provider endpoint unavailable, transport failed or returned non-2xx."""


class ProviderResponseError(ProviderError):
    """Provider returned malformed/invalid response payload."""


@runtime_checkable
class InferenceProvider(Protocol):
    def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str: ...


def extract_candidate_text(data) -> str:
    """
    Pull generated text out of a generateContent response.

    Shape: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
    A response blocked by safety filters has no candidates at all.
    """
    if not isinstance(data, dict):
        raise ProviderResponseError("Response payload is not a JSON object")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = data.get("promptFeedback") or {}
        raise ProviderResponseError(f"No candidates in response (blockReason={feedback.get('blockReason')})")
    candidate = candidates[0]
    if not isinstance(candidate, dict):
        raise ProviderResponseError("Candidate is not a JSON object")
    content = candidate.get("content")
    if not isinstance(content, dict):
        raise ProviderResponseError(f"Candidate has no content (finishReason={candidate.get('finishReason')})")
    parts = content.get("parts")
    if not isinstance(parts, list):
        raise ProviderResponseError("Candidate has no content parts")
    texts = [part.get("text") for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    if not texts:
        raise ProviderResponseError("Candidate parts carry no text")
    return "".join(texts).strip()


class GeminiHttpProvider:
    """
    Text-in/text-out client for the Gemini generateContent REST endpoint.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_BASE_URL,
        timeout_seconds: int = GEMINI_TIMEOUT_SECONDS,
        max_retries: int = GEMINI_MAX_RETRIES,
        retry_backoff_seconds: float = GEMINI_RETRY_BACKOFF_SECONDS,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.model_name = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(5, timeout_seconds)
        self.max_retries = max(0, max_retries)
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self.session = session or requests.Session()

    def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": float(temperature),
                "maxOutputTokens": int(max_tokens),
            },
        }
        url = f"{self.base_url}/models/{self.model_name}:generateContent"
        # Key travels in a header so it never shows up in logged URLs.
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        last_error = None
        for attempt in range(self.max_retries + 1):
            t0 = time.perf_counter()
            outcome = "ok"
            try:
                response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
                response.raise_for_status()
                try:
                    data = response.json()
                except ValueError as exc:
                    raise ProviderResponseError(f"Non-JSON response: {exc}") from exc
                return extract_candidate_text(data)
            except requests.exceptions.Timeout as exc:
                outcome = "timeout"
                last_error = exc
            except requests.exceptions.HTTPError as exc:
                outcome = "http_error"
                last_error = exc
                status = exc.response.status_code if exc.response is not None else None
                # Client errors (bad key, bad request) won't fix themselves; 429 might.
                if status is not None and 400 <= status < 500 and status != 429:
                    break
            except requests.exceptions.RequestException as exc:
                outcome = "unavailable"
                last_error = exc
            except ProviderResponseError as exc:
                outcome = "response_error"
                last_error = exc
                break
            finally:
                duration_ms = (time.perf_counter() - t0) * 1000.0
                logger.info(
                    "provider_request provider=%s model=%s attempt=%s outcome=%s duration_ms=%.2f",
                    self.name,
                    self.model_name,
                    attempt + 1,
                    outcome,
                    duration_ms,
                )
                record_provider_request(self.name, outcome, duration_ms)

            if attempt < self.max_retries:
                wait_time = (attempt + 1) * self.retry_backoff_seconds
                logger.warning(
                    f"Gemini {outcome} on attempt {attempt + 1}/{self.max_retries + 1}, retrying in {wait_time}s..."
                )
                time.sleep(wait_time)

        if isinstance(last_error, ProviderResponseError):
            raise last_error
        if isinstance(last_error, requests.exceptions.Timeout):
            raise ProviderTimeoutError(f"Gemini request timed out: {last_error}") from last_error
        if last_error is not None:
            raise ProviderUnavailableError(f"Gemini request failed: {last_error}") from last_error
        raise ProviderUnavailableError("Gemini request failed")
