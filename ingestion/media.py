"""
Best-effort download of message attachments to local storage
"""

import logging
from pathlib import Path
from typing import Optional

import httpx

from core.config import settings
from core.exceptions import MediaDownloadError

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
}


def extension_for(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ".bin"
    return MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower(), ".bin")


class MediaDownloader:
    """Stores files as <storage_dir>/<conversation_id>/<message_id><ext>"""

    def __init__(
        self,
        storage_dir: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.storage_dir = Path(storage_dir or settings.MEDIA_STORAGE_DIR)
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else settings.MEDIA_TIMEOUT_SECONDS

    async def download(
        self,
        url: str,
        conversation_id: int,
        message_id: int,
        mime_type: Optional[str] = None,
    ) -> str:
        """
        Fetch ``url`` and return the local path.

        Raises:
            MediaDownloadError: HTTP or filesystem failure
        """
        target = self.storage_dir / str(conversation_id) / f"{message_id}{extension_for(mime_type)}"
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, timeout=self.timeout, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()

            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(response.content)
        except (httpx.HTTPError, OSError) as e:
            raise MediaDownloadError(
                "Media download failed",
                context={"url": url, "message_id": message_id},
                original_exception=e
            )

        logger.debug(f"Stored media for message {message_id} at {target}")
        return str(target)
