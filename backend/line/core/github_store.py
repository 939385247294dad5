"""GitHub contents API as a versioned blob store.

A file's blob SHA is its version tag: updating an existing file requires the
current SHA, and a stale one is rejected with 409 (or 422 "does not match").
"""

import base64
import logging
from urllib.parse import quote

import httpx

from line.core.errors import RemoteStoreError, VersionConflictError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"


class GitHubContentsStore:
    """Read and write single files in one repository branch.

    Manages a shared httpx client; call ``close()`` on shutdown.
    """

    def __init__(self, token: str, owner: str, repo: str, branch: str = "main"):
        if not token or not owner or not repo:
            raise ValueError("GitHub token, owner and repo are required")

        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._http = httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            timeout=10.0,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "line-rollcall-csv-storage",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    @property
    def location(self) -> str:
        return f"{self.owner}/{self.repo}@{self.branch}"

    async def close(self) -> None:
        await self._http.aclose()

    def _contents_path(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{quote(path, safe='/')}"

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return str(response.json().get("message") or response.text)
        except ValueError:
            return response.text or f"HTTP {response.status_code}"

    async def read(self, path: str) -> tuple[str, str] | None:
        """Return ``(content, sha)``; None when the file does not exist yet."""
        try:
            response = await self._http.get(
                self._contents_path(path), params={"ref": self.branch}
            )
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"GitHub read failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RemoteStoreError(
                f"GitHub API Error: {response.status_code} - {self._error_message(response)}"
            )

        data = response.json()
        encoded = data.get("content")
        if encoded is None:
            raise RemoteStoreError("GitHub response has no content field")
        content = base64.b64decode(encoded).decode("utf-8")
        return content, data["sha"]

    async def write(self, path: str, content: str, version: str | None, message: str) -> str:
        """Create or update the file and return the new blob SHA."""
        payload: dict[str, str] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if version:
            payload["sha"] = version

        try:
            response = await self._http.put(self._contents_path(path), json=payload)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"GitHub write failed: {e}") from e

        if response.status_code in (200, 201):
            sha = (response.json().get("content") or {}).get("sha")
            if not sha:
                raise RemoteStoreError("GitHub response is missing content.sha")
            return sha

        error = self._error_message(response)
        if response.status_code == 409 or "does not match" in error:
            raise VersionConflictError(f"GitHub API Error: {response.status_code} - {error}")
        raise RemoteStoreError(f"GitHub API Error: {response.status_code} - {error}")

    async def ping(self) -> None:
        """Raise unless the repository is reachable with the configured token."""
        try:
            response = await self._http.get(f"/repos/{self.owner}/{self.repo}")
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"GitHub unreachable: {e}") from e
        if response.status_code != 200:
            raise RemoteStoreError(
                f"GitHub API Error: {response.status_code} - {self._error_message(response)}"
            )
