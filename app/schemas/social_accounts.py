from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class SocialAccountConnect(BaseModel):
    """Tokens obtained from a provider's OAuth flow."""
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None
    account_id: Optional[str] = None
    username: Optional[str] = None
    extra: Dict[str, Any] = {}


class TwitterCallback(BaseModel):
    code: str
    state: str
