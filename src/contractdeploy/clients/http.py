"""Shared JSON-over-HTTPS plumbing for collaborator clients."""

import json
import logging
from typing import Any, Optional

import httpx

from contractdeploy.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def as_text(value: Any) -> str:
    """Render a JSON value as text; objects and arrays are re-serialized."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


class HttpCollaborator:
    """Base for httpx-backed collaborator clients.

    A bounded timeout applies to every call. Timeouts, transport errors,
    non-2xx responses and malformed bodies all raise ExternalServiceError
    (or the error class passed in).
    """

    service_name = "collaborator"

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json_body: Optional[dict] = None,
        params: Optional[dict] = None,
        error_class: type[ExternalServiceError] = ExternalServiceError,
    ) -> dict:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=json_body,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.error(f"{self.service_name} {method} {path} timed out after {self.timeout}s")
            raise error_class(
                f"{self.service_name} timed out after {self.timeout}s",
                service=self.service_name,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.service_name} {method} {path} failed: {e}")
            raise error_class(
                f"{self.service_name} request failed: {e}",
                service=self.service_name,
            ) from e

        if not response.is_success:
            logger.error(f"{self.service_name} {method} {path} returned {response.status_code}")
            raise error_class(
                f"{self.service_name} returned HTTP {response.status_code}",
                service=self.service_name,
                status=response.status_code,
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise error_class(
                f"{self.service_name} returned a malformed response",
                service=self.service_name,
                status=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise error_class(
                f"{self.service_name} returned an unexpected response",
                service=self.service_name,
                status=response.status_code,
            )
        return data

    def _require(self, data: dict, key: str, what: str) -> str:
        """Extract a non-empty text field or raise."""
        value = as_text(data.get(key))
        if not value:
            raise ExternalServiceError(
                f"{self.service_name} response is missing {what}",
                service=self.service_name,
            )
        return value
