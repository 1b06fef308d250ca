"""
Shared Graph API plumbing for the Instagram and Facebook adapters.
"""

from typing import Any, Dict, Optional

from ...config import is_placeholder
from .base import BaseAdapter, ErrorCategory, TokenRefreshResult, classify_status, tagged

GRAPH_URL = "https://graph.facebook.com/v19.0"

RATE_LIMIT_CODES = {4, 17, 32, 613}
TRANSIENT_CODES = {1, 2}
AUTH_CODES = {10, 102, 190, 200}

LONG_LIVED_TOKEN_SECONDS = 60 * 24 * 60 * 60


class MetaGraphAdapter(BaseAdapter):
    """Error mapping and token exchange common to Graph API platforms."""

    def app_configured(self) -> bool:
        return not is_placeholder(self.settings.facebook_app_id) and not is_placeholder(
            self.settings.facebook_app_secret
        )

    def provider_error(self, payload: Dict[str, Any]):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("error_user_msg") or error.get("message")
            return message, error.get("code")
        return super().provider_error(payload)

    def category_for(self, status_code: Optional[int], provider_code: Any) -> ErrorCategory:
        if provider_code in RATE_LIMIT_CODES:
            return ErrorCategory.RATE_LIMITED
        if provider_code in TRANSIENT_CODES:
            return ErrorCategory.TRANSIENT
        if provider_code in AUTH_CODES:
            return ErrorCategory.AUTHENTICATION
        return classify_status(status_code)

    @staticmethod
    def error_subcode(raw: Optional[Dict[str, Any]]) -> Any:
        error = (raw or {}).get("error")
        return error.get("error_subcode") if isinstance(error, dict) else None

    @tagged(TokenRefreshResult, "Graph token exchange")
    async def refresh_token(self, refresh_token: str) -> TokenRefreshResult:
        """Exchange a still-valid token for a fresh long-lived one."""
        if not self.app_configured():
            return TokenRefreshResult.not_configured(self.platform)

        async with self.client() as client:
            response = await client.get(f"{GRAPH_URL}/oauth/access_token", params={
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "fb_exchange_token": refresh_token,
            })
        if response.is_error:
            return self.failure_from_response(response, TokenRefreshResult, "Graph token exchange")
        body = response.json()
        return TokenRefreshResult(
            success=True,
            access_token=body["access_token"],
            expires_in=body.get("expires_in", LONG_LIVED_TOKEN_SECONDS),
        )
