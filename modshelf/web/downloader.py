"""
Fetches pictures and mod updates over HTTP with retry and exponential backoff.
"""

import asyncio
import logging
from pathlib import Path

import aiofiles
import aiohttp

from modshelf import __version__
from modshelf.exceptions import DownloadError
from modshelf.utils.naming import extension_for_mime

log = logging.getLogger(__name__)

USER_AGENT = f"modshelf/{__version__}"


class Downloader:
    """
    A small HTTP client owning one aiohttp session. Use it as an async context
    manager, or call ``close()`` when done.
    """

    CHUNK_SIZE = 131072  # 128 KB

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.5):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "Downloader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=60)
            self._session = aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            log.debug("Downloader session closed.")
        self._session = None

    async def _with_retries(self, url: str, handler):
        last_exception: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self._get_session().get(url, allow_redirects=True) as response:
                    response.raise_for_status()
                    return await handler(response)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for '{url}' "
                    f"failed: {e}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))
        raise DownloadError(f"Could not download '{url}': {last_exception}")

    async def fetch_image(self, url: str) -> tuple[bytes, str, str]:
        """
        Downloads a picture into memory.

        Returns:
            The bytes, the MIME type and a matching file extension.

        Raises:
            DownloadError: If every attempt fails or the response is not an image.
        """

        async def read(response: aiohttp.ClientResponse) -> tuple[bytes, str]:
            return await response.read(), response.headers.get("Content-Type", "")

        data, content_type = await self._with_retries(url, read)
        mime = content_type.split(";", 1)[0].strip().lower()
        if not mime.startswith("image/"):
            raise DownloadError(
                f"'{url}' did not return an image (content type '{mime or 'unknown'}')."
            )
        return data, mime, extension_for_mime(mime)

    async def download_file(self, url: str, destination: Path) -> Path:
        """Streams ``url`` to ``destination``; a partial file is removed on failure."""

        async def stream(response: aiohttp.ClientResponse) -> int:
            written = 0
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
            return written

        try:
            size = await self._with_retries(url, stream)
        except DownloadError:
            await asyncio.to_thread(destination.unlink, True)
            raise
        log.debug(f"Downloaded {size} bytes from '{url}' to '{destination.name}'.")
        return destination
