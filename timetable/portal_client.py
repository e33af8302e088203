"""
Async client for the school portal's timetable endpoint.
Fetches one week of lessons with retry logic and exponential backoff.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from scheduler.exceptions import FetchError
from .models import LessonOccurrence, lesson_from_record

logger = structlog.get_logger(__name__)


class PortalClient:
    """
    Client for ``GET {base_url}/timetable/weeks/{n}``.

    Session handling stays with the portal: the client only carries an
    already issued bearer token.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        request_timeout: int = 30,
        retry_attempts: int = 3,
        retry_delay: float = 1.0
    ):
        """
        Initialize the client.

        Args:
            base_url: Portal API root
            token: Bearer token issued by the portal
            request_timeout: Per-request timeout in seconds
            retry_attempts: Retries after the first failed attempt
            retry_delay: Base delay of the exponential backoff, in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.logger = logger.bind(component="portal_client")

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client_config = {
            "timeout": request_timeout,
            "headers": headers,
            "follow_redirects": True,
        }

    async def fetch_week(self, week_number: int) -> List[LessonOccurrence]:
        """
        Fetch the lessons of one week.

        Args:
            week_number: Week index relative to the term's first Monday

        Returns:
            Lessons in portal order

        Raises:
            FetchError: on network, authentication or payload failure
        """
        url = f"{self.base_url}/timetable/weeks/{week_number}"

        async with httpx.AsyncClient(**self.client_config) as client:
            response = await self._make_request_with_retry(client, url, week_number)

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON for week {week_number}: {e}", week=week_number) from e

        lessons = self._parse_lessons(payload, week_number)
        self.logger.debug("Fetched week", week=week_number, lessons=len(lessons))
        return lessons

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        week_number: int
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Raises:
            FetchError: once every attempt failed
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.retry_attempts + 1):
            try:
                response = await client.get(url)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                last_exception = e
                # Authentication problems won't fix themselves
                if e.response.status_code in (401, 403):
                    break

            except httpx.HTTPError as e:
                last_exception = e

            if attempt < self.retry_attempts:
                delay = self.retry_delay * (2 ** attempt)
                self.logger.warning(
                    "Retrying request",
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=self.retry_attempts,
                    delay_seconds=delay
                )
                await asyncio.sleep(delay)

        self.logger.error("Request failed", url=url, error=str(last_exception))
        raise FetchError(f"Failed to fetch week {week_number}: {last_exception}", week=week_number)

    def _parse_lessons(self, payload: Any, week_number: int) -> List[LessonOccurrence]:
        """Convert a portal payload (list, or object with ``classes``) to lessons."""
        records = payload.get("classes") if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise FetchError(f"Unexpected payload for week {week_number}", week=week_number)

        lessons = []
        for record in records:
            if not isinstance(record, dict):
                raise FetchError(f"Malformed lesson record in week {week_number}", week=week_number)
            if self._is_superposed_cancellation(record):
                continue
            try:
                lessons.append(lesson_from_record(record))
            except ValidationError as e:
                raise FetchError(f"Invalid lesson in week {week_number}: {e}", week=week_number) from e

        return lessons

    @staticmethod
    def _is_superposed_cancellation(record: Dict[str, Any]) -> bool:
        """A cancelled lesson replaced by another one in the same slot."""
        return bool(record.get("isSuperposedCanceled"))
