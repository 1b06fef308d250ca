"""
Connected social accounts and the Twitter OAuth 2.0 PKCE flow.
"""
import secrets
from datetime import timedelta
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_required_user
from ..clock import isoformat, to_naive_utc, utcnow
from ..config import get_settings
from ..database import get_db
from ..logging_config import api_logger
from ..models.social_account import SocialAccount
from ..models.user import User
from ..responses import bad_request, deleted, not_found, success
from ..schemas.social_accounts import SocialAccountConnect, TwitterCallback
from ..worker.cache_store import PkceStateStore
from ..worker.platforms.base import AccountCredentials, Platform, ProfileRef
from ..worker.platforms.twitter import TwitterAdapter, pkce_pair

router = APIRouter(prefix="/api/social-accounts", tags=["social-accounts"])


def get_twitter_adapter() -> TwitterAdapter:
    return TwitterAdapter(get_settings())


def account_to_dict(account: SocialAccount) -> dict:
    """Public view of an account; tokens never leave the server."""
    return {
        "platform": account.platform,
        "account_id": account.account_id,
        "username": account.username,
        "expires_at": isoformat(account.expires_at),
        "is_expired": account.is_expired(),
        "has_refresh_token": bool(account.refresh_token),
        "requires_reconnection": bool(account.requires_reconnection),
        "connected_at": isoformat(account.created_at),
        "updated_at": isoformat(account.updated_at),
    }


def _platform(value: str) -> Platform:
    if value not in Platform._value2member_map_:
        bad_request(f"Unsupported platform: {value}", "UNSUPPORTED_PLATFORM")
    return Platform(value)


def save_account(
    db: Session,
    user: User,
    platform: Platform,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_at=None,
    account_id: Optional[str] = None,
    username: Optional[str] = None,
    extra: Optional[dict] = None,
) -> SocialAccount:
    """Insert or replace the user's account for one platform."""
    account = db.query(SocialAccount).filter(
        SocialAccount.user_id == user.id,
        SocialAccount.platform == platform.value,
    ).first()
    if account is None:
        account = SocialAccount(user_id=user.id, platform=platform.value)
        db.add(account)

    account.access_token = access_token
    account.refresh_token = refresh_token
    account.expires_at = expires_at
    account.account_id = account_id
    account.username = username
    account.extra = dict(extra or {})
    account.requires_reconnection = False
    db.commit()
    db.refresh(account)
    return account


@router.get("")
def list_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    accounts = db.query(SocialAccount).filter(SocialAccount.user_id == current_user.id).all()
    return success([account_to_dict(a) for a in accounts])


@router.put("/{platform}")
def connect_account(
    platform: str,
    payload: SocialAccountConnect,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Store tokens for a platform, replacing any existing connection."""
    target = _platform(platform)
    expires_at = to_naive_utc(payload.expires_at)
    if expires_at is None and payload.expires_in:
        expires_at = utcnow() + timedelta(seconds=payload.expires_in)

    account = save_account(
        db,
        current_user,
        target,
        payload.access_token,
        refresh_token=payload.refresh_token,
        expires_at=expires_at,
        account_id=payload.account_id,
        username=payload.username,
        extra=payload.extra,
    )
    api_logger.info("Social account connected", user_id=current_user.id, platform=target.value)
    return success(account_to_dict(account), message=f"{target.label} account connected")


@router.delete("/{platform}")
def disconnect_account(
    platform: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    target = _platform(platform)
    account = db.query(SocialAccount).filter(
        SocialAccount.user_id == current_user.id,
        SocialAccount.platform == target.value,
    ).first()
    if not account:
        not_found(f"{target.label} account")

    db.delete(account)
    db.commit()
    return deleted(f"{target.label} account disconnected")


@router.get("/twitter/authorize")
def twitter_authorize(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    adapter: TwitterAdapter = Depends(get_twitter_adapter),
):
    """Authorization URL for Twitter; the verifier is kept server-side under the state."""
    if not adapter.is_configured():
        bad_request("Twitter API credentials are not configured", "NOT_CONFIGURED")

    state = secrets.token_urlsafe(24)
    verifier, challenge = pkce_pair()
    PkceStateStore(db, get_settings().oauth_state_ttl_seconds).put(
        state, verifier, current_user.id, Platform.TWITTER.value
    )
    return success({"authorize_url": adapter.authorize_url(state, challenge), "state": state})


@router.post("/twitter/callback")
async def twitter_callback(
    payload: TwitterCallback,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    adapter: TwitterAdapter = Depends(get_twitter_adapter),
):
    """Exchange the authorization code and store the connected account."""
    pending = PkceStateStore(db, get_settings().oauth_state_ttl_seconds).pop(payload.state)
    if pending is None or pending.get("user_id") != current_user.id:
        bad_request("Invalid or expired OAuth state", "INVALID_OAUTH_STATE")

    tokens = await adapter.exchange_code(payload.code, pending["verifier"])
    if not tokens.success:
        bad_request(f"Twitter authorization failed: {tokens.error}", tokens.error_code or "OAUTH_FAILED")

    account_id = username = None
    profile = await adapter.get_profile(
        ProfileRef.own_account(Platform.TWITTER), AccountCredentials(access_token=tokens.access_token)
    )
    if profile.success:
        account_id, username = profile.profile.id, profile.profile.username
    else:
        api_logger.warning("Twitter profile lookup after connect failed", reason=profile.error)

    account = save_account(
        db,
        current_user,
        Platform.TWITTER,
        tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=utcnow() + timedelta(seconds=tokens.expires_in) if tokens.expires_in else None,
        account_id=account_id,
        username=username,
        extra={"scopes": ((tokens.raw or {}).get("scope") or "").split()},
    )
    return success(account_to_dict(account), message="Twitter account connected")
