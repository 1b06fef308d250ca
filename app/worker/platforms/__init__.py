"""
Adapter registry for the supported platforms.
"""
from typing import Dict, Optional

import httpx

from ...config import get_settings
from .base import BaseAdapter, Platform
from .facebook import FacebookAdapter
from .instagram import InstagramAdapter
from .linkedin import LinkedInAdapter
from .twitter import TwitterAdapter
from .youtube import YouTubeAdapter

ADAPTER_CLASSES = {
    Platform.TWITTER: TwitterAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.YOUTUBE: YouTubeAdapter,
    Platform.LINKEDIN: LinkedInAdapter,
    Platform.FACEBOOK: FacebookAdapter,
}


def build_adapters(settings=None, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[Platform, BaseAdapter]:
    settings = settings or get_settings()
    return {platform: cls(settings, transport=transport) for platform, cls in ADAPTER_CLASSES.items()}


def configured_platforms(adapters: Dict[Platform, BaseAdapter]) -> Dict[str, bool]:
    return {platform.value: adapter.is_configured() for platform, adapter in adapters.items()}
