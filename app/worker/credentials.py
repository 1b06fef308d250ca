"""
Connected-account credentials: lookup, expiry check and serialized refresh.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import get_settings
from ..logging_config import get_logger
from ..models.social_account import SocialAccount
from .platforms.base import (
    AccountCredentials,
    AdapterResult,
    BaseAdapter,
    ErrorCategory,
    ErrorCode,
    Platform,
    TokenRefreshResult,
    bounded,
)

logger = get_logger("credentials")

# One lock per (user, platform) so concurrent flows don't race a refresh
_refresh_locks: Dict[Tuple[int, str], asyncio.Lock] = {}


def refresh_lock(user_id: int, platform: str) -> asyncio.Lock:
    return _refresh_locks.setdefault((user_id, platform), asyncio.Lock())


@dataclass
class CredentialCheck:
    credentials: Optional[AccountCredentials] = None
    failure: Optional[AdapterResult] = None
    refreshed: bool = False


class CredentialManager:
    def __init__(self, db: Session, settings=None):
        self.db = db
        self.settings = settings or get_settings()

    def account(self, user_id: int, platform: Platform) -> Optional[SocialAccount]:
        return (
            self.db.query(SocialAccount)
            .filter(SocialAccount.user_id == user_id, SocialAccount.platform == platform.value)
            .first()
        )

    async def ensure_fresh(self, user_id: int, platform: Platform, adapter: BaseAdapter) -> CredentialCheck:
        """Credentials usable right now, refreshing them first when expired."""
        account = self.account(user_id, platform)
        if account is None or not account.access_token:
            return CredentialCheck(failure=AdapterResult.fail(
                f"{platform.label} account not connected. Please reconnect your {platform.label} account.",
                ErrorCode.ACCOUNT_NOT_CONNECTED,
                ErrorCategory.CONFIGURATION,
                requires_reconnection=True,
            ))
        if not account.is_expired():
            return CredentialCheck(credentials=AccountCredentials.from_account(account))

        async with refresh_lock(user_id, platform.value):
            self.db.refresh(account)
            if not account.is_expired():
                return CredentialCheck(credentials=AccountCredentials.from_account(account))

            if not account.refresh_token:
                self.flag_reconnection(user_id, platform)
                return CredentialCheck(failure=AdapterResult.fail(
                    f"{platform.label} access has expired. Please reconnect your {platform.label} account.",
                    ErrorCode.TOKEN_EXPIRED,
                    ErrorCategory.CONFIGURATION,
                    requires_reconnection=True,
                ))

            result = await bounded(
                adapter.refresh_token(account.refresh_token),
                self.settings.provider_timeout_seconds,
                TokenRefreshResult,
                f"{platform.label} token refresh",
            )
            if not result.success:
                logger.warning(
                    "Token refresh failed",
                    user_id=user_id,
                    platform=platform.value,
                    reason=result.error,
                )
                self.flag_reconnection(user_id, platform)
                # Without valid auth a retry cannot help
                return CredentialCheck(failure=AdapterResult.fail(
                    f"{platform.label} token refresh failed: {result.error}. "
                    f"Please reconnect your {platform.label} account.",
                    ErrorCode.TOKEN_REFRESH_FAILED,
                    ErrorCategory.CONFIGURATION,
                    requires_reconnection=True,
                ))

            self._store_refreshed(account.id, result)
            self.db.refresh(account)
            logger.info("Token refreshed", user_id=user_id, platform=platform.value)
            return CredentialCheck(credentials=AccountCredentials.from_account(account), refreshed=True)

    def _store_refreshed(self, account_id: int, result: TokenRefreshResult) -> None:
        """Write only the token columns, in one UPDATE."""
        now = utcnow()
        values = {
            SocialAccount.access_token: result.access_token,
            SocialAccount.expires_at: now + timedelta(seconds=result.expires_in) if result.expires_in else None,
            SocialAccount.requires_reconnection: False,
            SocialAccount.updated_at: now,
        }
        if result.refresh_token:
            values[SocialAccount.refresh_token] = result.refresh_token
        self.db.query(SocialAccount).filter(SocialAccount.id == account_id).update(values, synchronize_session=False)
        self.db.commit()

    def flag_reconnection(self, user_id: int, platform: Platform) -> None:
        self.db.query(SocialAccount).filter(
            SocialAccount.user_id == user_id,
            SocialAccount.platform == platform.value,
        ).update({SocialAccount.requires_reconnection: True}, synchronize_session=False)
        self.db.commit()
