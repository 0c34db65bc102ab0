"""
Pytest configuration and shared fixtures.

Provides a temporary database, configuration, stores wired to that
database, and an in-memory fake of the GitHub endpoints collabsync uses,
served through httpx.MockTransport.
"""

from __future__ import annotations

import hashlib
import json
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from collabsync.core.audit import AuditLog
from collabsync.core.bindings import BindingStore, RepositoryBinding
from collabsync.core.config import SyncConfig, clear_cache
from collabsync.core.config.models import QueueConfig, RetryConfig, WorkerConfig
from collabsync.core.db import init_db
from collabsync.core.github import GitHubClient
from collabsync.core.queue import OperationQueue
from collabsync.core.service import SyncService
from collabsync.core.sync import BackoffPolicy
from collabsync.core.tokens import StaticTokenProvider

# ==============================================================================
# Clock
# ==============================================================================


class FakeClock:
    """Controllable clock; every call returns the current fake time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ==============================================================================
# Fake GitHub
# ==============================================================================


def _sha(*parts: str) -> str:
    return hashlib.sha1("\x00".join(parts).encode("utf-8")).hexdigest()


@dataclass
class FakeRepo:
    """State of one fake repository."""

    id: int
    owner: str
    name: str
    private: bool
    description: str
    branches: dict[str, str] = field(default_factory=dict)
    commits: dict[str, dict[str, Any]] = field(default_factory=dict)
    trees: dict[str, dict[str, str]] = field(default_factory=dict)
    blobs: dict[str, str] = field(default_factory=dict)

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    def head_files(self, branch: str = "main") -> dict[str, str]:
        """Path -> content at the head of a branch."""
        commit = self.commits[self.branches[branch]]
        return {path: self.blobs[sha] for path, sha in self.trees[commit["tree"]].items()}

    def add_commit(self, tree: dict[str, str], parents: list[str], message: str) -> str:
        tree_sha = _sha("tree", json.dumps(sorted(tree.items())))
        self.trees[tree_sha] = dict(tree)
        commit_sha = _sha("commit", tree_sha, *parents, message)
        self.commits[commit_sha] = {"tree": tree_sha, "parents": parents, "message": message}
        return commit_sha

    def api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner": {"login": self.owner},
            "html_url": self.html_url,
            "private": self.private,
        }


class FakeGitHub:
    """
    In-memory stand-in for the GitHub REST and Git Data APIs.

    Failures are injected with ``fail()``: the next request matching the
    method and path pattern gets the given status instead of being served.
    """

    def __init__(self, login: str = "alice", scopes: str | None = "repo, user") -> None:
        self.login = login
        self.scopes = scopes
        self.repos: dict[str, FakeRepo] = {}
        self.requests: list[httpx.Request] = []
        self.embed_tree = True
        self.before_ref_update: Callable[[FakeRepo, str], None] | None = None
        self._failures: list[tuple[str, re.Pattern[str], httpx.Response]] = []
        self._next_id = 1000
        self._lock = threading.RLock()

    # -- test helpers ------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, token: str = "test-token") -> GitHubClient:
        return GitHubClient(token, transport=self.transport)

    def client_factory(self, token: str) -> GitHubClient:
        return self.client(token)

    def fail(
        self,
        method: str,
        pattern: str,
        status: int,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        times: int = 1,
    ) -> None:
        """Answer the next ``times`` requests matching ``pattern`` with ``status``."""
        for _ in range(times):
            self._failures.append(
                (
                    method,
                    re.compile(pattern),
                    httpx.Response(status, json=body or {"message": "injected"}, headers=headers),
                )
            )

    def create_repo(
        self, name: str, *, branch: str = "main", files: dict[str, str] | None = None
    ) -> FakeRepo:
        """Create a repository directly, with one initial commit."""
        with self._lock:
            self._next_id += 1
            repo = FakeRepo(
                id=self._next_id, owner=self.login, name=name, private=True, description=""
            )
            tree = {}
            for path, content in (files or {"README.md": f"# {name}\n"}).items():
                blob_sha = _sha("blob", content)
                repo.blobs[blob_sha] = content
                tree[path] = blob_sha
            repo.branches[branch] = repo.add_commit(tree, [], "Initial commit")
            self.repos[name] = repo
            return repo

    def push_external_commit(self, repo: FakeRepo, branch: str = "main") -> str:
        """Move a branch as if someone else pushed to it."""
        with self._lock:
            head = repo.branches[branch]
            tree = dict(repo.trees[repo.commits[head]["tree"]])
            content = f"external {len(repo.commits)}"
            blob_sha = _sha("blob", content)
            repo.blobs[blob_sha] = content
            tree["EXTERNAL.md"] = blob_sha
            repo.branches[branch] = repo.add_commit(tree, [head], "External change")
            return repo.branches[branch]

    def count(self, method: str, pattern: str) -> int:
        regex = re.compile(pattern)
        return sum(
            1 for r in self.requests if r.method == method and regex.search(r.url.path)
        )

    # -- transport ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            path = request.url.path
            for index, (method, pattern, response) in enumerate(self._failures):
                if method == request.method and pattern.search(path):
                    del self._failures[index]
                    return response
            return self._route(request, path)

    def _route(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}

        if path == "/user" and request.method == "GET":
            headers = {"X-OAuth-Scopes": self.scopes} if self.scopes is not None else {}
            return httpx.Response(200, json={"login": self.login}, headers=headers)

        if path == "/user/repos" and request.method == "POST":
            if body["name"] in self.repos:
                return httpx.Response(
                    422,
                    json={
                        "message": "Repository creation failed.",
                        "errors": [{"message": "name already exists on this account"}],
                    },
                )
            repo = self.create_repo(body["name"])
            repo.private = body.get("private", True)
            repo.description = body.get("description", "")
            return httpx.Response(201, json=repo.api())

        match = re.fullmatch(r"/repos/([^/]+)/([^/]+)(/.*)?", path)
        if not match:
            return httpx.Response(404, json={"message": "Not Found"})
        owner, name, rest = match.group(1), match.group(2), match.group(3) or ""
        repo = self.repos.get(name)
        if repo is None or repo.owner != owner:
            return httpx.Response(404, json={"message": "Not Found"})

        if rest == "" and request.method == "GET":
            return httpx.Response(200, json=repo.api())

        if m := re.fullmatch(r"/branches/(.+)", rest):
            branch = m.group(1)
            if branch not in repo.branches:
                return httpx.Response(404, json={"message": "Branch not found"})
            sha = repo.branches[branch]
            commit: dict[str, Any] = {"sha": sha}
            if self.embed_tree:
                commit["commit"] = {"tree": {"sha": repo.commits[sha]["tree"]}}
            return httpx.Response(200, json={"name": branch, "commit": commit})

        if m := re.fullmatch(r"/git/commits/([0-9a-f]+)", rest):
            data = repo.commits.get(m.group(1))
            if data is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self._commit_json(repo, m.group(1)))

        if rest == "/git/blobs" and request.method == "POST":
            blob_sha = _sha("blob", body["content"])
            repo.blobs[blob_sha] = body["content"]
            return httpx.Response(201, json={"sha": blob_sha})

        if rest == "/git/trees" and request.method == "POST":
            tree = dict(repo.trees.get(body.get("base_tree"), {}))
            for entry in body["tree"]:
                if entry["sha"] is None:
                    tree.pop(entry["path"], None)
                else:
                    tree[entry["path"]] = entry["sha"]
            tree_sha = _sha("tree", json.dumps(sorted(tree.items())))
            repo.trees[tree_sha] = tree
            return httpx.Response(201, json={"sha": tree_sha})

        if rest == "/git/commits" and request.method == "POST":
            commit_sha = repo.add_commit(
                repo.trees[body["tree"]], body["parents"], body["message"]
            )
            return httpx.Response(201, json=self._commit_json(repo, commit_sha))

        if m := re.fullmatch(r"/git/refs/heads/(.+)", rest):
            branch = m.group(1)
            if self.before_ref_update is not None:
                self.before_ref_update(repo, branch)
            if branch not in repo.branches:
                return httpx.Response(422, json={"message": "Reference does not exist"})
            new_sha = body["sha"]
            parents = repo.commits[new_sha]["parents"]
            if not body.get("force") and repo.branches[branch] not in parents:
                return httpx.Response(422, json={"message": "Update is not a fast forward"})
            repo.branches[branch] = new_sha
            return httpx.Response(200, json={"ref": f"refs/heads/{branch}", "object": {"sha": new_sha}})

        return httpx.Response(404, json={"message": "Not Found"})

    def _commit_json(self, repo: FakeRepo, sha: str) -> dict[str, Any]:
        return {
            "sha": sha,
            "tree": {"sha": repo.commits[sha]["tree"]},
            "parents": [{"sha": p} for p in repo.commits[sha]["parents"]],
            "message": repo.commits[sha]["message"],
            "html_url": f"{repo.html_url}/commit/{sha}",
        }


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep user config, .env files and token variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in (
        "GITHUB_TOKEN",
        "COLLABSYNC_DB_PATH",
        "COLLABSYNC_API_URL",
        "COLLABSYNC_HTTP_TIMEOUT",
        "COLLABSYNC_MAX_RETRIES",
        "COLLABSYNC_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Initialized SQLite database in a temporary directory."""
    path = tmp_path / "sync.db"
    init_db(path)
    return path


@pytest.fixture
def config(db_path: Path) -> SyncConfig:
    """Configuration pointing at the temporary database, without retry delays."""
    return SyncConfig(
        queue=QueueConfig(db_path=db_path),
        retry=RetryConfig(base_delay=0.0, jitter_ratio=0.0),
        worker=WorkerConfig(poll_interval=0.01, blob_workers=2),
    )


@pytest.fixture
def queue(db_path: Path, clock: FakeClock) -> OperationQueue:
    return OperationQueue(db_path, clock=clock)


@pytest.fixture
def audit_log(db_path: Path, clock: FakeClock) -> AuditLog:
    return AuditLog(db_path, clock=clock)


@pytest.fixture
def bindings(db_path: Path, clock: FakeClock) -> BindingStore:
    return BindingStore(db_path, clock=clock)


@pytest.fixture
def service(db_path: Path, config: SyncConfig, clock: FakeClock) -> SyncService:
    return SyncService(db_path, config, clock=clock)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def tokens() -> StaticTokenProvider:
    return StaticTokenProvider({"user-1": "token-1", "user-2": "token-2"})


@pytest.fixture
def no_delay_policy() -> BackoffPolicy:
    return BackoffPolicy(base_delay=0.0, jitter_ratio=0.0)


@pytest.fixture
def bound_repo(github: FakeGitHub, bindings: BindingStore):
    """A fake repository bound to session 'abc'."""
    repo = github.create_repo("codecollab-abc")
    binding = bindings.bind(
        RepositoryBinding(
            session_id="abc",
            remote_repo_id=str(repo.id),
            repo_name=repo.name,
            repo_owner=repo.owner,
            repo_url=repo.html_url,
        )
    )
    return repo, binding
