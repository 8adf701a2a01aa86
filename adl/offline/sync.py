"""
Delivery of queued submissions to the contributions API.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from adl.core.config import settings
from adl.core.constants import (
    DEFAULT_SYNC_ERROR,
    MAX_SYNC_ERROR_LENGTH,
    RETRYABLE_HTTP_STATUSES,
)

logger = logging.getLogger(__name__)

SUBMISSIONS_PATH = "/api/submissions"
ERROR_PREFIX_REGEX = re.compile(r"^Error:\s*", re.IGNORECASE)


class SubmissionSyncError(Exception):
    """A failed delivery attempt; ``retryable`` decides the queue's next step."""

    def __init__(self, message: str, retryable: bool = False, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.status = status


def _looks_like_html(text: str) -> bool:
    normalized = text.strip().lower()
    return normalized.startswith("<!doctype") or normalized.startswith("<html") or "<body" in normalized


def sanitize_error_message(value: Any, fallback: str = DEFAULT_SYNC_ERROR) -> str:
    """Make a server or exception message safe to show to a contributor."""
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_SYNC_ERROR_LENGTH or _looks_like_html(trimmed):
        return fallback
    return ERROR_PREFIX_REGEX.sub("", trimmed)


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_HTTP_STATUSES or status >= 500


def to_submission_sync_error(error: BaseException) -> SubmissionSyncError:
    """Classify an arbitrary failure; unknown errors are retryable."""
    if isinstance(error, SubmissionSyncError):
        return error
    return SubmissionSyncError(sanitize_error_message(str(error)), retryable=True)


def extract_response_message(response: httpx.Response) -> str:
    fallback = response.reason_phrase or DEFAULT_SYNC_ERROR
    content_type = response.headers.get("content-type", "").lower()

    if "application/json" in content_type:
        try:
            payload = response.json()
        except ValueError:
            return fallback
        if not isinstance(payload, dict):
            return fallback
        message = payload.get("error")
        if message is None:
            message = payload.get("message")
        return sanitize_error_message(message, fallback)

    return sanitize_error_message(response.text, fallback)


class SubmissionSender:
    """
    Posts submission payloads to the API.

    Usable directly as the ``send_fn`` of OfflineQueue.flush.

    Args:
        base_url: API root (defaults to the configured one)
        headers: Extra headers sent with every request (e.g. auth)
        timeout_ms: Request timeout
        client: Optional shared httpx client
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout_ms: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = (timeout_ms or settings.sync_request_timeout_ms) / 1000
        self._client = client

    async def __call__(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> None:
        await self.send(payload, idempotency_key)

    async def send(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> None:
        """
        Deliver one submission.

        Raises:
            SubmissionSyncError: On network failure or a non-2xx response
        """
        headers = dict(self.headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        url = f"{self.base_url}{SUBMISSIONS_PATH}"

        try:
            if self._client is None:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            else:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Submission delivery failed: {e}")
            raise SubmissionSyncError(DEFAULT_SYNC_ERROR, retryable=True) from e

        if response.is_success:
            return

        message = extract_response_message(response)
        logger.info(f"Submission rejected with HTTP {response.status_code}: {message}")
        raise SubmissionSyncError(
            message,
            retryable=is_retryable_status(response.status_code),
            status=response.status_code,
        )
