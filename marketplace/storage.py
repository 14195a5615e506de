"""Media storage: turns uploaded files into durable URLs.

Files go to Cloudinary when credentials are configured and to the local
``uploads`` directory otherwise (or when a Cloudinary upload fails).
"""

from __future__ import annotations

import hashlib
import os
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Optional

import requests
import structlog

from .config import Settings
from .errors import ValidationFailed

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
ALLOWED_VIDEO_TYPES = {"video/mp4", "video/webm", "video/quicktime"}

CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud}/{resource}/upload"


def is_image(content_type: Optional[str]) -> bool:
    return (content_type or "") in ALLOWED_IMAGE_TYPES


def is_video(content_type: Optional[str]) -> bool:
    return (content_type or "") in ALLOWED_VIDEO_TYPES


class MediaStorage:
    def __init__(
        self,
        *,
        upload_dir: str,
        base_url: str,
        max_bytes: int,
        cloud_name: str = "",
        api_key: str = "",
        api_secret: str = "",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.upload_dir = Path(upload_dir)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaStorage":
        return cls(
            upload_dir=settings.upload_dir,
            base_url=settings.base_url,
            max_bytes=settings.max_upload_bytes,
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
        )

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def save(self, *, filename: str, content_type: Optional[str], stream: BinaryIO, field: str = "file") -> str:
        if not (is_image(content_type) or is_video(content_type)):
            allowed = ", ".join(sorted(ALLOWED_IMAGE_TYPES | ALLOWED_VIDEO_TYPES))
            raise ValidationFailed(f"Invalid file type. Allowed types: {allowed}")

        data = stream.read(self.max_bytes + 1)
        if len(data) > self.max_bytes:
            raise ValidationFailed(f"File {filename} exceeds the {self.max_bytes} byte limit")

        if self.cloudinary_enabled:
            try:
                return self._upload_to_cloudinary(filename, content_type, data)
            except (requests.exceptions.RequestException, KeyError, ValueError) as exc:
                logger.error("media.cloudinary_failed", filename=filename, error=str(exc))
                logger.info("media.falling_back_to_local", filename=filename)
        return self._save_locally(filename, data, field)

    def _upload_to_cloudinary(self, filename: str, content_type: str, data: bytes) -> str:
        resource = "video" if is_video(content_type) else "image"
        timestamp = str(int(time.time()))
        signature = hashlib.sha1(f"timestamp={timestamp}{self.api_secret}".encode("utf-8")).hexdigest()
        response = self._session.post(
            CLOUDINARY_UPLOAD_URL.format(cloud=self.cloud_name, resource=resource),
            data={"api_key": self.api_key, "timestamp": timestamp, "signature": signature},
            files={"file": (filename, data, content_type)},
            timeout=30,
        )
        response.raise_for_status()
        url = response.json()["secure_url"]
        logger.info("media.uploaded", filename=filename, url=url)
        return url

    def _save_locally(self, filename: str, data: bytes, field: str) -> str:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        ext = os.path.splitext(filename or "")[1].lower()
        unique_suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"
        name = f"{field}-{unique_suffix}{ext}"
        (self.upload_dir / name).write_bytes(data)
        return f"{self.base_url}/uploads/{name}"
