"""Image download and normalization for chapter pages and comic covers."""

import io
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from PIL import Image, UnidentifiedImageError

from .errors import DataIntegrityError
from .fetch import classify_request_error, random_user_agent
from .logger import logger as LOGGER


# WebP cannot encode images larger than this on either side
WEBP_MAX_DIMENSION = 16383
QUALITY = 80


def url_extension(url: str) -> Optional[str]:
    """Return the file extension of a URL path, without the dot."""
    name = urlparse(url).path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    extension = name.rsplit(".", 1)[-1]
    return extension.lower() if extension.isalnum() else None


class HttpImageFetcher:
    """Downloads images with requests and re-encodes them with Pillow."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": random_user_agent()})

    def fetch(self, url: str, target_dir: Path, stem: str) -> Path:
        """Download one image and write it as ``<stem>.webp`` (or ``.jpeg`` for huge pages).

        Raises:
            DataIntegrityError: URL has no extension, payload is not an image, or 4xx
            TransientError: Timeout, 5xx or connection reset
            SourceUnreachableError: Host could not be reached
        """
        if url_extension(url) is None:
            raise DataIntegrityError("Invalid file extension", link=url)

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise classify_request_error(e, client_error=DataIntegrityError, link=url) from e

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image"):
            raise DataIntegrityError(f"Invalid content type {content_type!r}", link=url)

        output_path = normalize_image(response.content, target_dir, stem, source=url)
        LOGGER.debug(f"Downloaded {url} -> {output_path.name}")
        return output_path


def normalize_image(data: bytes, target_dir: Path, stem: str, source: Optional[str] = None) -> Path:
    """Re-encode raw image bytes as WebP, or JPEG when too large for WebP."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            too_big = width > WEBP_MAX_DIMENSION or height > WEBP_MAX_DIMENSION

            if too_big:
                output_path = Path(target_dir) / f"{stem}.jpeg"
                img.convert("RGB").save(output_path, "JPEG", quality=QUALITY)
            else:
                output_path = Path(target_dir) / f"{stem}.webp"
                converted = img if img.mode in ("RGB", "RGBA") else img.convert("RGBA")
                converted.save(output_path, "WEBP", quality=QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DataIntegrityError(f"Broken image data: {e}", link=source) from e

    return output_path
