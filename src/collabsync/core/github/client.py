"""
GitHub Git Data API client for collabsync.

A thin, request-scoped wrapper over the endpoints the sync subsystem needs:
repository creation, branch lookup, and blob/tree/commit/ref creation.

The client shapes requests, injects the caller's token, and maps HTTP
status codes onto the collabsync error taxonomy. It holds no business
logic and never retries; retries belong to the sync worker.

Example:
    >>> with GitHubClient("ghp_xxx") as client:
    ...     head = client.get_branch("alice", "codecollab-abc", "main")
    ...     blob_sha = client.create_blob("alice", "codecollab-abc", "hello")
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from collabsync.core.config.models import GitHubConfig
from collabsync.core.exceptions import (
    AuthError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    RemoteAPIError,
    SyncError,
    TransientNetworkError,
)
from collabsync.core.github.models import (
    AuthenticatedUser,
    BranchHead,
    GitCommit,
    RemoteRepository,
    TreeEntry,
)

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    """Extract the remote's message and nested error messages, if any."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:500]

    if not isinstance(data, dict):
        return str(data)[:500]

    parts: list[str] = []
    if message := data.get("message"):
        parts.append(str(message))
    for error in data.get("errors") or []:
        if isinstance(error, dict) and error.get("message"):
            parts.append(str(error["message"]))
        elif isinstance(error, str):
            parts.append(error)
    return "; ".join(parts)


def _retry_after(response: httpx.Response) -> float | None:
    """Seconds to wait according to Retry-After or X-RateLimit-Reset."""
    if retry_after := response.headers.get("Retry-After"):
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass
    if reset := response.headers.get("X-RateLimit-Reset"):
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            pass
    return None


def map_error(response: httpx.Response, method: str, path: str) -> SyncError:
    """
    Map an unsuccessful response onto the error taxonomy.

    Args:
        response: The non-2xx response
        method: HTTP method of the request
        path: Request path, used for context only

    Returns:
        The classified exception (not raised)
    """
    status = response.status_code
    detail = _error_detail(response)
    lowered = detail.lower()
    context: dict[str, Any] = {"method": method, "path": path, "status_code": status}
    summary = f"{method} {path} failed with {status}: {detail}" if detail else (
        f"{method} {path} failed with {status}"
    )

    if status == 401:
        return AuthError(f"GitHub rejected the access token: {detail or 'unauthorized'}", **context)

    if status in (403, 429):
        exhausted = response.headers.get("X-RateLimit-Remaining") == "0"
        if status == 429 or exhausted or "rate limit" in lowered:
            return RateLimitError(
                f"GitHub rate limit exceeded: {detail or status}",
                retry_after=_retry_after(response),
                **context,
            )
        return AuthError(f"GitHub denied access: {detail or 'forbidden'}", **context)

    if status == 404:
        return NotFoundError(summary, **context)

    if status == 409:
        return ConflictError(summary, retryable=True, **context)

    if status == 422:
        if "fast forward" in lowered or "fast-forward" in lowered:
            return ConflictError(summary, retryable=True, **context)
        if "already exists" in lowered:
            return ConflictError(summary, retryable=False, **context)
        return RemoteAPIError(summary, **context)

    if status >= 500:
        return TransientNetworkError(summary, **context)

    return RemoteAPIError(summary, **context)


class GitHubClient:
    """
    Request-scoped client for the GitHub REST and Git Data APIs.

    One instance is built per access token; it is never shared across
    users. Pass ``transport`` to serve requests from a fake in tests.
    """

    DEFAULT_API_URL = "https://api.github.com"

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        user_agent: str = "CodeCollab-App",
        api_version: str = "2022-11-28",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token: The caller's access token
            api_url: Base URL of the API
            timeout: Client-side timeout in seconds for every request
            user_agent: User-Agent header value
            api_version: X-GitHub-Api-Version header value
            transport: Optional httpx transport (tests use httpx.MockTransport)

        Raises:
            AuthError: If no token is given
        """
        if not token:
            raise AuthError("GitHub access token is required")

        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": api_version,
                "User-Agent": user_agent,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        token: str,
        config: GitHubConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> GitHubClient:
        """Build a client for ``token`` using configured API settings."""
        return cls(
            token,
            api_url=config.api_url,
            timeout=config.timeout_seconds,
            user_agent=config.user_agent,
            api_version=config.api_version,
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        logger.debug("GitHub request: %s %s", method, path)
        try:
            response = self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Timed out calling {method} {path}", method=method, path=path
            ) from e
        except httpx.HTTPError as e:
            raise TransientNetworkError(
                f"Network error calling {method} {path}: {e}", method=method, path=path
            ) from e

        if response.is_success:
            return response

        error = map_error(response, method, path)
        logger.debug("GitHub error on %s %s: %s", method, path, error)
        raise error

    @staticmethod
    def _repo_path(owner: str, repo: str) -> str:
        return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

    # ------------------------------------------------------------------
    # Account and repositories
    # ------------------------------------------------------------------

    def get_authenticated_user(self) -> AuthenticatedUser:
        """GET /user, including the token's OAuth scopes when reported."""
        response = self._request("GET", "/user")
        header = response.headers.get("X-OAuth-Scopes")
        scopes = None
        if header is not None:
            scopes = [scope.strip() for scope in header.split(",") if scope.strip()]
        return AuthenticatedUser(login=response.json()["login"], scopes=scopes)

    def create_repository(
        self,
        name: str,
        *,
        description: str = "",
        private: bool = True,
        auto_init: bool = True,
    ) -> RemoteRepository:
        """POST /user/repos."""
        response = self._request(
            "POST",
            "/user/repos",
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": auto_init,
            },
        )
        return RemoteRepository.from_api(response.json())

    def get_repository(self, owner: str, repo: str) -> RemoteRepository:
        """GET /repos/{owner}/{repo}."""
        response = self._request("GET", self._repo_path(owner, repo))
        return RemoteRepository.from_api(response.json())

    # ------------------------------------------------------------------
    # Git Data API
    # ------------------------------------------------------------------

    def get_branch(self, owner: str, repo: str, branch: str) -> BranchHead:
        """GET /repos/{owner}/{repo}/branches/{branch}."""
        path = f"{self._repo_path(owner, repo)}/branches/{quote(branch, safe='/')}"
        response = self._request("GET", path)
        return BranchHead.from_api(branch, response.json())

    def get_commit(self, owner: str, repo: str, sha: str) -> GitCommit:
        """GET /repos/{owner}/{repo}/git/commits/{sha}."""
        response = self._request("GET", f"{self._repo_path(owner, repo)}/git/commits/{sha}")
        return GitCommit.from_api(response.json())

    def create_blob(self, owner: str, repo: str, content: str, *, encoding: str = "utf-8") -> str:
        """POST /repos/{owner}/{repo}/git/blobs and return the blob SHA."""
        response = self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/git/blobs",
            json={"content": content, "encoding": encoding},
        )
        return str(response.json()["sha"])

    def create_tree(
        self,
        owner: str,
        repo: str,
        entries: list[TreeEntry],
        *,
        base_tree: str | None = None,
    ) -> str:
        """POST /repos/{owner}/{repo}/git/trees and return the tree SHA."""
        body: dict[str, Any] = {"tree": [entry.model_dump() for entry in entries]}
        if base_tree:
            body["base_tree"] = base_tree
        response = self._request("POST", f"{self._repo_path(owner, repo)}/git/trees", json=body)
        return str(response.json()["sha"])

    def create_commit(
        self,
        owner: str,
        repo: str,
        *,
        message: str,
        tree: str,
        parents: list[str],
    ) -> GitCommit:
        """POST /repos/{owner}/{repo}/git/commits."""
        response = self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return GitCommit.from_api(response.json())

    def update_ref(
        self,
        owner: str,
        repo: str,
        branch: str,
        sha: str,
        *,
        force: bool = False,
    ) -> None:
        """PATCH /repos/{owner}/{repo}/git/refs/heads/{branch}."""
        path = f"{self._repo_path(owner, repo)}/git/refs/heads/{quote(branch, safe='/')}"
        self._request("PATCH", path, json={"sha": sha, "force": force})


__all__ = ["GitHubClient", "map_error"]
