"""
Recipe image download for the Kokbok recipe pipeline.

Images are fetched after a recipe has been saved; a failed download never
rolls back the recipe.
"""

import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from models import ImageFetchResult
from utils import Config, get_logger

logger = get_logger(__name__)

IMAGE_USER_AGENT = "Mozilla/5.0 (compatible; RecipeImporter/1.0)"
IMAGE_CHUNK_SIZE = 64 * 1024

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/gif": "gif",
}


class ImageService:
    """Downloads remote recipe images into the upload directory"""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.upload_dir = Path(config.upload_directory)
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': IMAGE_USER_AGENT,
            'Accept': 'image/*'
        })

    def fetch_image(self, url: str) -> ImageFetchResult:
        """
        Download and store one image.

        Only http(s) URLs with an allowed image content type up to the
        configured size limit are accepted. Failures are reported in the
        result, never raised.
        """
        parsed = urlparse(url or "")
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return ImageFetchResult(success=False, error="Invalid image URL")

        max_bytes = self.config.max_image_size_bytes
        too_large = f"Image too large (max {self.config.max_image_size_mb}MB)"

        try:
            response = self.session.get(url, timeout=self.config.scraping_timeout_seconds, stream=True)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Image download failed for {url}: {e}")
            return ImageFetchResult(success=False, error=f"Failed to fetch image: {e}")

        try:
            content_type = response.headers.get('content-type', '').split(';')[0].strip().lower()
            extension = ALLOWED_CONTENT_TYPES.get(content_type)
            if not extension:
                return ImageFetchResult(success=False, content_type=content_type or None,
                                        error=f"Unsupported image type: {content_type or 'unknown'}")

            declared = response.headers.get('content-length')
            if declared and declared.isdigit() and int(declared) > max_bytes:
                return ImageFetchResult(success=False, content_type=content_type, error=too_large)

            # content-length may be missing or wrong; stop reading at the limit
            content = bytearray()
            for chunk in response.iter_content(chunk_size=IMAGE_CHUNK_SIZE):
                content.extend(chunk)
                if len(content) > max_bytes:
                    logger.warning(f"Image from {url} exceeds {max_bytes} bytes; download stopped")
                    return ImageFetchResult(success=False, content_type=content_type, error=too_large)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Image download failed for {url}: {e}")
            return ImageFetchResult(success=False, error=f"Failed to fetch image: {e}")
        finally:
            response.close()

        content = bytes(content)
        image_id = f"{uuid.uuid4()}.{extension}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            (self.upload_dir / image_id).write_bytes(content)
        except OSError as e:
            logger.error(f"Could not store image from {url}: {e}")
            return ImageFetchResult(success=False, content_type=content_type, error="Could not save image")

        logger.info(f"Stored image {image_id} ({len(content)} bytes) from {url}")
        return ImageFetchResult(success=True, image_id=image_id,
                                content_type=content_type, size_bytes=len(content))


def get_image_service(config: Config) -> ImageService:
    """Factory function to get an image service instance"""
    return ImageService(config)
