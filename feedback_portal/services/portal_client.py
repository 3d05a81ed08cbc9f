"""
Portal API client for meetings, questions and feedback.
Handles HTTP client setup, auth headers, timeouts and response validation.
Low-level client: returns raw payloads or light domain objects, no business rules.
"""

import asyncio
from typing import Any

import httpx

from feedback_portal.config import settings
from feedback_portal.features.feedback_window.domain.models import (
    MeetingId,
    Question,
    coerce_meeting_id,
)
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

MEETINGS_PATH = "/api/meetings/user/current"
QUESTIONS_PATH = "/api/questions/meeting/{meeting_id}"
MY_MEETING_FEEDBACK_PATH = "/api/feedback/meeting/{meeting_id}/user"
SUBMIT_PATH = "/api/feedback/submit"


class PortalAPIError(Exception):
    """Custom exception for portal API errors."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        response_data: Any = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.response_data = response_data


class PortalTimeoutError(PortalAPIError):
    """Request exceeded the configured timeout. Treated as a failure."""


class PortalClient:
    """
    Async client for the feedback portal REST API.

    GET requests are retried with backoff on transient errors. POSTs are
    sent exactly once.
    """

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
    ):
        self.base_url = (base_url or settings.PORTAL_API_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.PORTAL_ACCESS_TOKEN
        self.timeout = timeout if timeout is not None else settings.PORTAL_REQUEST_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.PORTAL_MAX_RETRIES)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.PORTAL_RETRY_BACKOFF
        self._client = self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for the portal API."""
        timeout = httpx.Timeout(self.timeout)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            limits=limits,
            headers=self._get_auth_headers(),
        )

    def _get_auth_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["x-access-token"] = self.access_token
        return headers

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _send(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Portal request timed out", operation=operation, timeout_s=self.timeout)
            raise PortalTimeoutError(
                f"Portal {operation} timed out after {self.timeout}s", operation=operation
            ) from e
        except httpx.RequestError as e:
            raise PortalAPIError(f"Portal {operation} request failed: {e}", operation=operation) from e

    async def _get_with_retry(self, path: str, operation: str, **kwargs) -> httpx.Response:
        """Execute a GET with retry and exponential backoff."""
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._send("GET", path, operation, **kwargs)
            except PortalAPIError as e:
                if attempt >= self.max_retries:
                    raise
                backoff = self.retry_backoff * (2 ** (attempt - 1))
                logger.debug(
                    "Portal request error, retrying",
                    operation=operation,
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                backoff = self.retry_backoff * (2 ** (attempt - 1))
                logger.debug(
                    "Portal retrying request",
                    operation=operation,
                    attempt=attempt,
                    status_code=response.status_code,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue
            return response
        raise RuntimeError("Portal retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> Any:
        """
        Validate a portal response and return its JSON body.

        Raises:
            PortalAPIError: On non-2xx status or unparseable body
        """
        logger.debug(
            f"Portal {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Failed to parse portal {operation} response", error=str(e))
                raise PortalAPIError(
                    f"Invalid response format: {e}", operation=operation, status_code=response.status_code
                ) from e

        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            error_data = {"raw": response.text[:200]}
        message = error_data.get("message") if isinstance(error_data, dict) else None

        logger.error(
            f"Portal {operation} failed",
            status_code=response.status_code,
            error_message=message,
        )
        raise PortalAPIError(
            message or f"Portal error (HTTP {response.status_code})",
            operation=operation,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def fetch_meetings(self) -> Any:
        """Raw meeting feed for the current user (categorized or flat)."""
        response = await self._get_with_retry(MEETINGS_PATH, "fetch_meetings")
        return self._handle_api_response(response, "fetch_meetings")

    async def fetch_questions(self, meeting_id: MeetingId) -> list[Question]:
        """Questions for one meeting. Only called once the meeting accepts feedback."""
        path = QUESTIONS_PATH.format(meeting_id=meeting_id)
        response = await self._get_with_retry(path, "fetch_questions")
        data = self._handle_api_response(response, "fetch_questions")
        if not isinstance(data, list):
            return []

        questions = []
        for raw in data:
            if not isinstance(raw, dict) or raw.get("id") is None:
                continue
            try:
                questions.append(
                    Question(
                        id=int(raw["id"]),
                        text=str(raw.get("text") or raw.get("question") or ""),
                        meeting_id=coerce_meeting_id(raw.get("meetingId") or meeting_id),
                        role=raw.get("role"),
                        department_id=raw.get("departmentId"),
                        year=raw.get("year"),
                    )
                )
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed question", meeting_id=meeting_id, error=str(e))
        return questions

    async def fetch_my_meeting_feedback(self, meeting_id: MeetingId) -> list[dict]:
        """Feedback this user already gave for a meeting. A 404 means none."""
        path = MY_MEETING_FEEDBACK_PATH.format(meeting_id=meeting_id)
        response = await self._get_with_retry(path, "fetch_my_meeting_feedback")
        if response.status_code == 404:
            return []
        data = self._handle_api_response(response, "fetch_my_meeting_feedback")
        return data if isinstance(data, list) else []

    async def submit_feedback(
        self, meeting_id: MeetingId, question_id: int, rating: int, notes: str = ""
    ) -> dict:
        """Submit one rated question. Sent once, never retried here."""
        payload = {
            "questionId": question_id,
            "rating": rating,
            "notes": notes,
            "meetingId": meeting_id,
        }
        response = await self._send("POST", SUBMIT_PATH, "submit_feedback", json=payload)
        data = self._handle_api_response(response, "submit_feedback")
        return data if isinstance(data, dict) else {}

    async def fetch_responded_meeting_ids(
        self, user_id: str | None = None, department_id: int | None = None
    ) -> list[MeetingId]:
        """
        Meetings the user already gave feedback for, per the server.

        Accepts either a list of ids or a list of records with ``meetingId``.
        """
        path = settings.PORTAL_RESPONDED_PATH.format(
            user_id=user_id or "", department_id=department_id if department_id is not None else ""
        )
        response = await self._get_with_retry(path, "fetch_responded_meetings")
        data = self._handle_api_response(response, "fetch_responded_meetings")
        if not isinstance(data, list):
            raise PortalAPIError(
                "Responded meetings payload is not a list",
                operation="fetch_responded_meetings",
                status_code=response.status_code,
                response_data=data,
            )

        ids: list[MeetingId] = []
        for entry in data:
            value = entry.get("meetingId") if isinstance(entry, dict) else entry
            if value is None:
                continue
            try:
                ids.append(coerce_meeting_id(value))
            except ValueError:
                logger.debug("Ignoring unusable responded meeting id", value=str(value))
        return ids

    async def health_check(self) -> bool:
        """Reachability check used by the readiness endpoint."""
        try:
            response = await self._send("GET", MEETINGS_PATH, "health_check")
            return response.status_code < 500
        except PortalAPIError as e:
            logger.warning("Portal health check failed", error=str(e))
            return False
