"""
Client for the external AI analysis service.
"""

from typing import Any, Dict, Optional

import httpx

from ..config import get_settings
from ..logging_config import get_logger

logger = get_logger("ai_service")


class AIServiceUnavailable(Exception):
    """The service is unconfigured, unreachable, slow or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AIServiceClient:
    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.settings.ai_service_url)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise AIServiceUnavailable("AI service URL is not configured")

        url = self.settings.ai_service_url.rstrip("/") + path
        headers = {"Content-Type": "application/json"}
        if self.settings.ai_service_api_key:
            headers["x-api-key"] = self.settings.ai_service_api_key

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.ai_service_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise AIServiceUnavailable(f"AI service timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise AIServiceUnavailable(f"AI service unreachable: {exc}") from exc

        if response.is_error:
            logger.warning("AI service returned an error", status_code=response.status_code, path=path)
            raise AIServiceUnavailable(f"AI service returned HTTP {response.status_code}", response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise AIServiceUnavailable("AI service returned a non-JSON body", response.status_code) from exc
        if not isinstance(body, dict):
            logger.warning("AI service returned a non-object body", path=path, body_type=type(body).__name__)
            raise AIServiceUnavailable("AI service returned an unexpected body", response.status_code)
        return body

    async def competitor_analysis(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/ai/competitor-analysis", payload)
