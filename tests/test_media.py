"""Tests for the media fetcher.

Uses respx to mock the image host. No network access.
"""

import base64

import httpx
import pytest
import respx

from fortunia.services.media import (
    MediaFetcher,
    MediaFetchError,
    resolve_mime_type,
    sniff_mime_type,
)
from tests.helpers import png_bytes

IMAGE_URL = "https://images.fortunia.test/readings/palm.jpg"


@pytest.fixture
def fetcher(httpx_client) -> MediaFetcher:
    return MediaFetcher(httpx_client, max_bytes=64 * 1024, timeout_s=2.0)


class TestMimeType:
    def test_header_wins(self):
        assert resolve_mime_type("image/webp; charset=binary", b"") == "image/webp"

    def test_sniffed_when_header_is_not_an_image(self):
        assert resolve_mime_type("application/octet-stream", png_bytes()) == "image/png"

    def test_defaults_to_jpeg(self):
        assert resolve_mime_type(None, b"not an image") == "image/jpeg"
        assert sniff_mime_type(b"not an image") is None


class TestMediaFetcher:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_success(self, fetcher):
        data = png_bytes()
        respx.get(IMAGE_URL).respond(200, content=data, headers={"content-type": "image/png"})

        media = await fetcher.fetch(IMAGE_URL)

        assert media.mime_type == "image/png"
        assert base64.b64decode(media.data_b64) == data
        assert media.size_bytes == len(data)

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_is_followed(self, fetcher):
        target = "https://cdn.fortunia.test/palm.png"
        respx.get(IMAGE_URL).respond(302, headers={"location": target})
        respx.get(target).respond(200, content=png_bytes())

        media = await fetcher.fetch(IMAGE_URL)
        assert media.mime_type == "image/png"

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status", [403, 404, 500])
    async def test_non_success_status(self, fetcher, status):
        respx.get(IMAGE_URL).respond(status)

        with pytest.raises(MediaFetchError) as exc_info:
            await fetcher.fetch(IMAGE_URL)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    @respx.mock
    async def test_oversized_body_rejected(self, httpx_client):
        respx.get(IMAGE_URL).respond(200, content=b"x" * 2048)

        with pytest.raises(MediaFetchError, match="maximum size"):
            await MediaFetcher(httpx_client, max_bytes=1024).fetch(IMAGE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_body_rejected(self, fetcher):
        respx.get(IMAGE_URL).respond(200, content=b"")

        with pytest.raises(MediaFetchError, match="empty"):
            await fetcher.fetch(IMAGE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout(self, fetcher):
        respx.get(IMAGE_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(MediaFetchError, match="timed out"):
            await fetcher.fetch(IMAGE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error(self, fetcher):
        respx.get(IMAGE_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(MediaFetchError) as exc_info:
            await fetcher.fetch(IMAGE_URL)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url", ["ftp://images.fortunia.test/a.jpg", "file:///etc/passwd", "/relative.jpg"]
    )
    async def test_non_http_urls_rejected(self, fetcher, url):
        with pytest.raises(MediaFetchError, match="http"):
            await fetcher.fetch(url)
