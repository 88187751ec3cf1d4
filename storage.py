"""
Vehicle image uploads.

Files are checked (image/* MIME type, size limit), resized to fit inside
1200x800 and re-encoded in their own format, stored in a public bucket under
a collision-resistant name, and optionally verified with a HEAD request on
their public URL. Anything that fails is skipped and logged; the caller gets
back the image records that made it.
"""
import io
import logging
import mimetypes
import os
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from config import Settings

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ["image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif"]
MAX_DIMENSIONS = (1200, 800)
JPEG_QUALITY = 85
REENCODABLE = {"JPEG", "PNG", "WEBP", "GIF"}


@dataclass
class Upload:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UploadResult:
    images: List[dict] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


class ImageBucket:
    """Object storage holding public vehicle images."""

    name = "vehicle-images"

    def ensure(self) -> None:
        raise NotImplementedError

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def public_url(self, path: str) -> str:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError

    def path_for(self, url: str) -> Optional[str]:
        """Object path for a public URL served from this bucket, else None."""
        raise NotImplementedError


class SupabaseBucket(ImageBucket):
    def __init__(self, client, name: str, file_size_limit: int):
        self.client = client
        self.name = name
        self.file_size_limit = file_size_limit
        self._ready = False

    def ensure(self) -> None:
        if self._ready:
            return
        try:
            self.client.storage.create_bucket(
                self.name,
                options={
                    "public": True,
                    "allowed_mime_types": ALLOWED_MIME_TYPES,
                    "file_size_limit": self.file_size_limit,
                },
            )
            logger.info("Created storage bucket %s", self.name)
        except Exception as exc:
            if "exist" in str(exc).lower() or "duplicate" in str(exc).lower():
                logger.debug("Bucket %s already exists", self.name)
            else:
                logger.warning("Could not set up bucket %s: %s", self.name, exc)
        self._ready = True

    def _files(self):
        return self.client.storage.from_(self.name)

    def upload(self, path, data, content_type):
        self._files().upload(
            path=path,
            file=data,
            file_options={"content-type": content_type, "cache-control": "3600", "upsert": "false"},
        )

    def public_url(self, path):
        return self._files().get_public_url(path)

    def remove(self, path):
        self._files().remove([path])

    def path_for(self, url):
        marker = f"/storage/v1/object/public/{self.name}/"
        if not url or marker not in url:
            return None
        return url.split(marker, 1)[1].split("?", 1)[0] or None


def connect_bucket(settings: Settings) -> Optional[ImageBucket]:
    if not (settings.supabase_url and settings.supabase_key):
        logger.warning("Supabase storage is not configured; image uploads are disabled")
        return None
    from database import supabase_client

    return SupabaseBucket(supabase_client(settings), settings.storage_bucket, settings.bucket_file_size_limit)


def url_resolves(url: str) -> bool:
    try:
        response = requests.head(url, timeout=5, allow_redirects=True)
    except requests.RequestException as exc:
        logger.warning("HEAD %s failed: %s", url, exc)
        return False
    return response.status_code < 400


def make_filename(original: str, content_type: str) -> str:
    ext = os.path.splitext(original or "")[1].lower()
    if not ext:
        ext = mimetypes.guess_extension(content_type or "") or ".jpg"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}{ext}"


def reencode(data: bytes) -> bytes:
    """Shrink to fit MAX_DIMENSIONS (never enlarging) and re-save in the same format."""
    with Image.open(io.BytesIO(data)) as img:
        fmt = img.format
        if fmt not in REENCODABLE:
            return data
        img = ImageOps.exif_transpose(img)
        img.thumbnail(MAX_DIMENSIONS, Image.Resampling.LANCZOS)
        if fmt == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        out = io.BytesIO()
        options = {"quality": JPEG_QUALITY} if fmt in ("JPEG", "WEBP") else {}
        img.save(out, format=fmt, **options)
        return out.getvalue()


class ImagePipeline:
    def __init__(
        self,
        bucket: Optional[ImageBucket],
        settings: Settings,
        verify: Callable[[str], bool] = url_resolves,
    ):
        self.bucket = bucket
        self.settings = settings
        self.verify = verify

    def check(self, upload: Upload) -> Optional[str]:
        """Return a rejection reason, or None when the file is acceptable."""
        if not (upload.content_type or "").startswith("image/"):
            return f"{upload.filename}: not an image ({upload.content_type or 'unknown type'})"
        if upload.size == 0:
            return f"{upload.filename}: empty file"
        if upload.size > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes // (1024 * 1024)
            return f"{upload.filename}: larger than {limit_mb}MB"
        return None

    def store(self, uploads: List[Upload], alt: str, has_primary: bool = False) -> UploadResult:
        """Upload files one at a time and return image records for the ones that stuck."""
        result = UploadResult()
        if not uploads:
            return result
        if self.bucket is None:
            result.rejected.extend(f"{u.filename}: storage not configured" for u in uploads)
            logger.warning("Skipping %d uploads, no storage bucket configured", len(uploads))
            return result

        self.bucket.ensure()
        for upload in uploads:
            reason = self.check(upload)
            if reason:
                logger.warning("Rejected upload %s", reason)
                result.rejected.append(reason)
                continue
            image = self._store_one(upload, alt, position=len(result.images) + 1)
            if image is None:
                result.rejected.append(f"{upload.filename}: upload failed")
                continue
            image["isPrimary"] = not has_primary and not result.images
            result.images.append(image)
        logger.info("Stored %d of %d uploaded images", len(result.images), len(uploads))
        return result

    def _store_one(self, upload: Upload, alt: str, position: int) -> Optional[dict]:
        try:
            data = reencode(upload.data)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            logger.warning("Could not read %s as an image: %s", upload.filename, exc)
            return None

        path = make_filename(upload.filename, upload.content_type)
        try:
            self.bucket.upload(path, data, upload.content_type)
            url = self.bucket.public_url(path)
        except Exception:
            logger.exception("Upload of %s to bucket %s failed", upload.filename, self.bucket.name)
            return None

        if self.settings.verify_uploads and not self.verify(url):
            logger.warning("Uploaded image %s is not reachable at %s, discarding", path, url)
            self._remove_path(path)
            return None

        return {"url": url, "alt": f"{alt} - Image {position}".strip(" -"), "isPrimary": False}

    def fallback_image(self, alt: str) -> dict:
        return {"url": self.settings.placeholder_image, "alt": alt, "isPrimary": True}

    def remove_url(self, url: str) -> bool:
        """Best-effort removal of a stored image; never raises."""
        if self.bucket is None or not url:
            return False
        path = self.bucket.path_for(url)
        if path is None:
            return False
        return self._remove_path(path)

    def _remove_path(self, path: str) -> bool:
        try:
            self.bucket.remove(path)
        except Exception as exc:
            logger.warning("Failed to delete %s from bucket %s: %s", path, self.bucket.name, exc)
            return False
        return True
