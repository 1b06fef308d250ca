from .auth import UserCreate, UserLogin, UserResponse, TokenResponse, RefreshRequest
from .posts import PostCreate, PostUpdate, ScheduleCreate, ScheduleRequest, ValidateRequest
from .competitors import CompetitorAnalysisRequest
from .social_accounts import SocialAccountConnect, TwitterCallback

__all__ = [
    "UserCreate", "UserLogin", "UserResponse", "TokenResponse", "RefreshRequest",
    "PostCreate", "PostUpdate", "ScheduleCreate", "ScheduleRequest", "ValidateRequest",
    "CompetitorAnalysisRequest",
    "SocialAccountConnect", "TwitterCallback",
]
