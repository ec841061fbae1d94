"""Download remote company images into the local upload directory."""

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from directory_import.core.config import Settings, get_settings
from directory_import.models import ImageDownloadResult, StorageInfo

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
CHUNK_SIZE = 64 * 1024
DEFAULT_EXTENSION = ".jpg"

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
}
URL_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tiff"}


class ImageDownloadError(RuntimeError):
    """Raised inside the downloader when a single image cannot be stored."""


def file_extension(content_type: str, url: str) -> str:
    if content_type in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[content_type]
    try:
        suffix = os.path.splitext(urlparse(url).path)[1].lower()
    except ValueError:
        suffix = ""
    if suffix in URL_EXTENSIONS:
        return suffix
    return DEFAULT_EXTENSION


class ImageDownloader:
    """Fetches images over HTTP and writes them under ``settings.upload_dir``."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or get_settings()
        self.upload_dir = Path(self.settings.upload_dir)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self._ensure_upload_dir()

    def _ensure_upload_dir(self) -> None:
        if not self.upload_dir.exists():
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created upload directory %s", self.upload_dir)

    def download(self, image_url: str, context_id: str, index: int) -> ImageDownloadResult:
        """Download one image; every failure comes back as ``success=False``."""
        try:
            return self._download(image_url, context_id, index)
        except (ImageDownloadError, requests.RequestException, OSError) as exc:
            logger.warning("Image download failed for %s: %s", image_url, exc)
            return ImageDownloadResult(success=False, original_url=image_url, error=str(exc))

    def _download(self, image_url: str, context_id: str, index: int) -> ImageDownloadResult:
        if not image_url or not image_url.startswith("http"):
            raise ImageDownloadError("رابط الصورة غير صحيح")

        logger.debug("Downloading image %s", image_url)
        max_bytes = self.settings.image_max_bytes
        with self.session.get(image_url, timeout=self.settings.image_timeout_seconds, stream=True) as response:
            if not 200 <= response.status_code < 300:
                raise ImageDownloadError(f"فشل في تحميل الصورة: {response.status_code} {response.reason}")

            content_type = (response.headers.get("content-type") or "").split(";")[0].strip().lower()
            if not content_type.startswith("image/"):
                raise ImageDownloadError(f"نوع الملف غير صحيح: {content_type or 'unknown'}")

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise ImageDownloadError("حجم الصورة كبير جداً (أكثر من 10MB)")

            body = bytearray()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise ImageDownloadError("حجم الصورة كبير جداً (أكثر من 10MB)")

        filename = f"{context_id}_{index}_{uuid.uuid4().hex}{file_extension(content_type, image_url)}"
        self._ensure_upload_dir()
        (self.upload_dir / filename).write_bytes(bytes(body))

        local_path = f"{self.settings.upload_url_prefix}/{filename}"
        logger.info("Stored image %s (%d bytes)", local_path, len(body))
        return ImageDownloadResult(
            success=True,
            original_url=image_url,
            local_path=local_path,
            filename=filename,
            size=len(body),
        )

    def delete_local_image(self, local_path: str) -> bool:
        """Delete a stored image by the root-relative path returned from ``download``."""
        target = self.upload_dir / Path(local_path or "").name
        if not local_path or not target.is_file():
            return False
        try:
            target.unlink()
        except OSError as exc:
            logger.error("Could not delete %s: %s", target, exc)
            return False
        logger.info("Deleted image %s", local_path)
        return True

    def cleanup_old_images(self, older_than_days: int = 30) -> int:
        cutoff = time.time() - older_than_days * 24 * 60 * 60
        deleted = 0
        for path in self.upload_dir.iterdir():
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
        logger.info("Removed %d images older than %d days", deleted, older_than_days)
        return deleted

    def get_storage_info(self) -> StorageInfo:
        files = [path for path in self.upload_dir.iterdir() if path.is_file()]
        total_size = sum(path.stat().st_size for path in files)
        return StorageInfo(
            total_files=len(files),
            total_size=total_size,
            total_size_mb=round(total_size / (1024 * 1024), 2),
        )
