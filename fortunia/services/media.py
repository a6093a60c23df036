"""Media fetcher: downloads a reading image and base64-encodes it for inference.

- One GET per call, redirects followed, no caching
- Streams the body and enforces a byte limit
- MIME type from the upstream Content-Type, else sniffed with Pillow
"""

import base64
import io
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from fortunia.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MIME_TYPE = "image/jpeg"
ALLOWED_SCHEMES = frozenset({"http", "https"})
USER_AGENT = "FortuniaMediaFetcher/1.0"

FORMAT_TO_MIME = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "heif": "image/heic",
}


class MediaFetchError(Exception):
    """Image could not be retrieved."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class EncodedMedia:
    """Image bytes ready for an inline inference part."""

    mime_type: str
    data_b64: str
    size_bytes: int


def sniff_mime_type(data: bytes) -> str | None:
    """Identify the image format from its bytes, or None if Pillow can't."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img_format = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        return None
    return FORMAT_TO_MIME.get(img_format)


def resolve_mime_type(content_type: str | None, data: bytes) -> str:
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime.startswith("image/"):
            return mime
    return sniff_mime_type(data) or DEFAULT_MIME_TYPE


class MediaFetcher:
    """Fetches images over a shared httpx.AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self._client = client
        self.max_bytes = max_bytes
        self.timeout_s = timeout_s

    async def fetch(self, url: str) -> EncodedMedia:
        """Download url and return it base64-encoded.

        Raises:
            MediaFetchError: Bad URL, non-2xx status, transport failure,
                empty body or body over the size limit.
        """
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
            raise MediaFetchError("Image URL must be an absolute http(s) URL")

        try:
            async with self._client.stream(
                "GET",
                url,
                headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"},
                follow_redirects=True,
                timeout=self.timeout_s,
            ) as response:
                if not response.is_success:
                    raise MediaFetchError(
                        f"Failed to fetch image: HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type")
                chunks = []
                total_bytes = 0
                async for chunk in response.aiter_bytes():
                    total_bytes += len(chunk)
                    if total_bytes > self.max_bytes:
                        raise MediaFetchError(
                            f"Image exceeds maximum size of {self.max_bytes} bytes"
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise MediaFetchError("Image fetch timed out") from e
        except httpx.RequestError as e:
            raise MediaFetchError(f"Failed to fetch image: {type(e).__name__}") from e

        data = b"".join(chunks)
        if not data:
            raise MediaFetchError("Image response was empty")

        mime_type = resolve_mime_type(content_type, data)
        logger.debug("media.fetched", size_bytes=len(data), mime_type=mime_type)
        return EncodedMedia(
            mime_type=mime_type,
            data_b64=base64.b64encode(data).decode("ascii"),
            size_bytes=len(data),
        )
