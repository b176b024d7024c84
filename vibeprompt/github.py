import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import aiohttp

from vibeprompt.config import GITHUB_API_BASE, RAW_GITHUB_BASE
from vibeprompt.errors import (
    InvalidRepositoryUrl,
    RateLimited,
    RemoteFetchError,
    RepositoryNotFound,
    Unauthorized,
)
from vibeprompt.ignore import IGNORE_FILE_NAME, is_path_system_ignored
from vibeprompt.tree import (
    Node,
    NodeKind,
    PathIndexBuilder,
    ProjectTree,
    RemoteOrigin,
    RemoteRef,
)

logger = logging.getLogger(__name__)


def parse_github_url(url: str) -> Tuple[str, str]:
    parsed = urlparse(url.strip())
    parts = [p for p in parsed.path.split("/") if p]
    if not parsed.scheme or not parsed.netloc or len(parts) < 2:
        raise InvalidRepositoryUrl("Invalid GitHub URL. Format: https://github.com/owner/repo")
    repo = parts[1][:-4] if parts[1].endswith(".git") else parts[1]
    return parts[0], repo


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


class GithubClient:
    """Reads repository metadata and the recursive tree listing."""

    def __init__(
        self,
        token: Optional[str] = None,
        http: Optional[aiohttp.ClientSession] = None,
        api_base: str = GITHUB_API_BASE,
        raw_base: str = RAW_GITHUB_BASE,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.raw_base = raw_base.rstrip("/")
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

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _get_json(self, url: str) -> Tuple[int, Optional[dict]]:
        headers = {"Accept": "application/vnd.github+json", "Cache-Control": "no-store"}
        headers.update(auth_headers(self.token))
        try:
            async with self._session().get(url, headers=headers) as resp:
                if resp.status != 200:
                    return resp.status, None
                return resp.status, await resp.json()
        except aiohttp.ClientError as e:
            raise RemoteFetchError(f"Failed to reach GitHub: {e}") from e

    async def default_branch(self, owner: str, repo: str) -> str:
        status, data = await self._get_json(f"{self.api_base}/{owner}/{repo}")
        if status == 404:
            raise RepositoryNotFound(
                "Repository not found. If it is private, please provide a valid Access Token."
            )
        if status == 403:
            raise RateLimited("GitHub API rate limit exceeded. Try again later.")
        if status == 401:
            raise Unauthorized("Invalid Access Token.")
        if status != 200 or data is None:
            raise RemoteFetchError("Failed to fetch repository details.")
        return data.get("default_branch") or "main"

    async def tree_listing(self, owner: str, repo: str, branch: str) -> Tuple[List[dict], bool]:
        url = f"{self.api_base}/{owner}/{repo}/git/trees/{quote(branch, safe='')}?recursive=1"
        status, data = await self._get_json(url)
        if status == 403:
            raise RateLimited("GitHub API rate limit exceeded.")
        if status == 404:
            raise RemoteFetchError("Failed to fetch file tree. Repository might be empty.")
        if status != 200 or data is None:
            raise RemoteFetchError("Failed to fetch file tree.")
        return data.get("tree") or [], bool(data.get("truncated"))

    def content_url(self, owner: str, repo: str, branch: str, path: str) -> str:
        if self.token:
            return f"{self.api_base}/{owner}/{repo}/contents/{quote(path)}?ref={quote(branch, safe='')}"
        return f"{self.raw_base}/{owner}/{repo}/{branch}/{quote(path)}"

    async def load_repo(self, url: str) -> ProjectTree:
        owner, repo = parse_github_url(url)
        branch = await self.default_branch(owner, repo)
        entries, truncated = await self.tree_listing(owner, repo, branch)
        if truncated:
            logger.warning("Repository %s/%s is too large, some files may be missing.", owner, repo)

        builder = PathIndexBuilder(Node(id=repo, name=repo, kind=NodeKind.DIRECTORY, path=repo))
        origin = RemoteOrigin(remote_url=url, auth_token=self.token)
        ignore_source = None

        for entry in entries:
            entry_path = entry.get("path") or ""
            kind = NodeKind.FILE if entry.get("type") == "blob" else NodeKind.DIRECTORY
            ref = None
            if kind is NodeKind.FILE:
                ref = RemoteRef(self.content_url(owner, repo, branch, entry_path), self.token)
                if entry_path == IGNORE_FILE_NAME:
                    ignore_source = ref
            if not entry_path or is_path_system_ignored(entry_path):
                continue
            builder.insert(entry_path.split("/"), kind, source=ref, origin=origin)

        logger.info("Loaded %d manifest entries from %s/%s@%s", len(entries), owner, repo, branch)
        return ProjectTree(root=builder.finish(), ignore_source=ignore_source, truncated=truncated)
