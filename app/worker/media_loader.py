"""
Resolve the bytes of a post attachment.

Sources are tried in order: the local uploads directory, the Cloud Storage
object, then the item's URL. The first non-empty buffer wins.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import storage

from ..config import get_settings
from ..logging_config import get_logger
from .platforms.base import MediaAsset, guess_mime_type

logger = get_logger("media")


class MediaLoader:
    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None, storage_client=None):
        self.settings = settings or get_settings()
        self.uploads_dir = Path(self.settings.uploads_dir).resolve()
        self._transport = transport
        self._storage_client = storage_client

    def public_url(self, item: Dict[str, Any]) -> Optional[str]:
        """A URL a provider can fetch the media from, if there is one."""
        url = item.get("url")
        if url and url.startswith(("http://", "https://")):
            return url
        if url and url.startswith("/"):
            return self.settings.public_base_url.rstrip("/") + url
        if item.get("storage") == "gcs" and item.get("storage_key") and self.settings.gcs_bucket:
            return f"https://storage.googleapis.com/{self.settings.gcs_bucket}/{item['storage_key']}"
        return None

    async def load(self, item: Dict[str, Any]) -> Optional[MediaAsset]:
        for source in (self._from_local, self._from_gcs, self._from_url):
            data = await source(item)
            if data:
                filename = item.get("filename") or Path(item.get("storage_key") or item.get("url") or "upload").name
                return MediaAsset(
                    data=data,
                    mime_type=item.get("mime_type") or guess_mime_type(filename),
                    filename=filename,
                    public_url=self.public_url(item),
                    declared_type=item.get("type"),
                )
        logger.warning("Media could not be resolved from any source", filename=item.get("filename"), url=item.get("url"))
        return None

    async def load_thumbnail(self, item: Dict[str, Any]) -> Optional[MediaAsset]:
        """The image named by an item's ``thumbnail``: a URL, a site path or an uploads filename."""
        thumbnail = item.get("thumbnail")
        if not thumbnail:
            return None
        if thumbnail.startswith(("http://", "https://", "/")):
            source = {"type": "image", "url": thumbnail}
        else:
            source = {"type": "image", "filename": thumbnail}
        return await self.load(source)

    async def _from_local(self, item: Dict[str, Any]) -> Optional[bytes]:
        name = item.get("filename") or (item.get("storage_key") if item.get("storage") == "local" else None)
        if not name:
            return None
        path = (self.uploads_dir / name).resolve()
        if self.uploads_dir not in path.parents or not path.is_file():
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.warning("Local media read failed", path=str(path), reason=str(exc))
            return None

    def _storage(self):
        if self._storage_client is None:
            self._storage_client = storage.Client()
        return self._storage_client

    async def _from_gcs(self, item: Dict[str, Any]) -> Optional[bytes]:
        key = item.get("storage_key")
        if item.get("storage") != "gcs" or not key or not self.settings.gcs_bucket:
            return None
        try:
            blob = self._storage().bucket(self.settings.gcs_bucket).blob(key)
            return await asyncio.to_thread(blob.download_as_bytes)
        except (GoogleAPIError, DefaultCredentialsError) as exc:
            logger.warning("Cloud Storage download failed", key=key, reason=str(exc))
            return None

    async def _from_url(self, item: Dict[str, Any]) -> Optional[bytes]:
        url = self.public_url(item)
        if not url:
            return None
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Media download failed", url=url, reason=str(exc))
            return None
        return response.content
