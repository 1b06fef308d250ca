from .user import User
from .post import Post
from .social_account import SocialAccount
from .analysis_result import AnalysisResult
from .cache_entry import CacheEntry

__all__ = [
    "User",
    "Post",
    "SocialAccount",
    "AnalysisResult",
    "CacheEntry",
]
