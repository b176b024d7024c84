import asyncio
import logging
from typing import Optional

import aiohttp

from vibeprompt.errors import ContentSourceMissing, FetchFailed
from vibeprompt.github import auth_headers
from vibeprompt.tree import BlobRef, ContentRef, NativeRef, Node, RemoteRef

logger = logging.getLogger(__name__)

RAW_MEDIA_TYPE = "application/vnd.github.v3.raw"


def decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class ContentAccessor:
    """Reads a file node's text from whichever source it was built from.

    There is no caching here; the session memoizes results so a refresh can
    simply drop its cache and read again.
    """

    def __init__(self, http: Optional[aiohttp.ClientSession] = None):
        self._http = http
        self._owns_http = http is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    async def close(self):
        if self._owns_http and self._http is not None:
            await self._http.close()
        self._http = None

    async def read(self, node: Node) -> str:
        if node.source is None:
            raise ContentSourceMissing(f"No content source available for {node.name}")
        return await self.read_ref(node.source)

    async def read_ref(self, ref: ContentRef) -> str:
        if isinstance(ref, RemoteRef):
            return await self._read_remote(ref)
        if isinstance(ref, BlobRef):
            return decode_text(ref.data)
        if isinstance(ref, NativeRef):
            data = await asyncio.to_thread(ref.path.read_bytes)
            return decode_text(data)
        raise ContentSourceMissing(f"Unknown content source {ref!r}")

    async def _read_remote(self, ref: RemoteRef) -> str:
        headers = auth_headers(ref.token)
        if ref.token and "/contents/" in ref.url:
            headers["Accept"] = RAW_MEDIA_TYPE
        try:
            async with self._session().get(ref.url, headers=headers) as resp:
                if resp.status != 200:
                    raise FetchFailed(
                        f"Failed to fetch remote file: {resp.reason}", status_text=resp.reason or ""
                    )
                data = await resp.read()
        except aiohttp.ClientError as e:
            raise FetchFailed(f"Failed to fetch remote file: {e}", status_text=str(e)) from e
        return decode_text(data)
