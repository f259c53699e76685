"""Shared fixtures and in-process fakes for the GitHub, Linear and App clients."""

from __future__ import annotations

from typing import Any

import pytest
from cryptography.fernet import Fernet

from pr_bridge.models import RepositoryConfig
from pr_bridge.orchestrator import BridgeContext
from pr_bridge.store.memory import InMemoryStore
from pr_bridge.utils.github import GitHubAPIError


class FakeGitHubClient:
    """Records every call; responses are plain attributes tests can tweak."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.repository: dict[str, Any] | None = {"id": 100, "full_name": "octo/app"}
        self.issues: list[dict[str, Any]] = []
        self.issue_details: dict[int, dict[str, Any]] = {}
        self.labels: list[dict[str, Any]] = []
        self.assignees: list[dict[str, Any]] = []
        self.milestones: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()
        self.next_pr: dict[str, Any] = {
            "id": 9001,
            "number": 7,
            "html_url": "https://github.com/octo/app/pull/7",
            "body": "generated body",
        }
        self.closed = False

    async def __aenter__(self) -> FakeGitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed = True

    def _record(self, method: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((method, args, kwargs))
        if method in self.fail_on:
            raise GitHubAPIError(500, f"{method} failed")

    def calls_to(self, method: str) -> list[tuple[tuple[Any, ...], dict[str, Any]]]:
        return [(args, kwargs) for name, args, kwargs in self.calls if name == method]

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        self._record("get_repository", owner, repo)
        if self.repository is None:
            raise GitHubAPIError(404, "Not Found")
        return self.repository

    async def create_webhook(self, owner: str, repo: str, url: str, secret: str) -> dict:
        self._record("create_webhook", owner, repo, url, secret)
        return {"id": 1}

    async def get_repository_issues(self, owner: str, repo: str) -> list[dict[str, Any]]:
        self._record("get_repository_issues", owner, repo)
        return self.issues

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> dict[str, Any]:
        self._record("get_issue", owner, repo, issue_number)
        return self.issue_details.get(issue_number, {"number": issue_number})

    async def update_issue(self, owner: str, repo: str, issue_number: int, **fields: Any) -> dict:
        self._record("update_issue", owner, repo, issue_number, **fields)
        return {"number": issue_number, **fields}

    async def create_issue_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> dict[str, Any]:
        self._record("create_issue_comment", owner, repo, issue_number, body)
        return {"id": 1, "body": body}

    async def get_labels(self, owner: str, repo: str) -> list[dict[str, Any]]:
        self._record("get_labels", owner, repo)
        return self.labels

    async def create_label(self, owner: str, repo: str, name: str, **kwargs: Any) -> dict:
        self._record("create_label", owner, repo, name)
        label = {"name": name}
        self.labels.append(label)
        return label

    async def add_labels(
        self, owner: str, repo: str, issue_number: int, labels: list[str]
    ) -> list[dict[str, Any]]:
        self._record("add_labels", owner, repo, issue_number, labels)
        return [{"name": name} for name in labels]

    async def list_assignees(self, owner: str, repo: str) -> list[dict[str, Any]]:
        self._record("list_assignees", owner, repo)
        return self.assignees

    async def add_assignees(
        self, owner: str, repo: str, issue_number: int, assignees: list[str]
    ) -> dict[str, Any]:
        self._record("add_assignees", owner, repo, issue_number, assignees)
        return {"number": issue_number}

    async def get_milestones(self, owner: str, repo: str) -> list[dict[str, Any]]:
        self._record("get_milestones", owner, repo)
        return self.milestones

    async def create_milestone(self, owner: str, repo: str, title: str) -> dict[str, Any]:
        self._record("create_milestone", owner, repo, title)
        milestone = {"number": len(self.milestones) + 1, "title": title}
        self.milestones.append(milestone)
        return milestone

    async def create_pull_request(self, owner: str, repo: str, **kwargs: Any) -> dict[str, Any]:
        self._record("create_pull_request", owner, repo, **kwargs)
        return {**self.next_pr, "body": kwargs.get("body", "")}

    async def update_pull_request(
        self, owner: str, repo: str, pr_number: int, **fields: Any
    ) -> dict[str, Any]:
        self._record("update_pull_request", owner, repo, pr_number, **fields)
        return {"number": pr_number, **fields}


class FakeLinearClient:
    def __init__(
        self,
        issue: dict[str, Any] | None = None,
        relations: dict[str, Any] | None = None,
    ) -> None:
        self.issue = issue
        self.relations = relations or {}
        self.find_calls: list[tuple[str, int, str | None]] = []

    async def find_issue(
        self, team_key: str, number: int, team_id: str | None = None
    ) -> dict[str, Any] | None:
        self.find_calls.append((team_key, number, team_id))
        return self.issue

    async def resolve_issue_relations(self, issue_id: str) -> dict[str, Any]:
        return self.relations


class FakeAppClient:
    def __init__(
        self,
        installation: dict[str, Any] | None = None,
        source_client: FakeGitHubClient | None = None,
    ) -> None:
        self.installation = installation
        self.source_client = source_client
        self.token_requests: list[int] = []

    async def get_repository_installation(self, owner: str, repo: str) -> dict | None:
        return self.installation

    async def get_installation_token(self, installation_id: int) -> str:
        self.token_requests.append(installation_id)
        return "ghs_installation_token"

    async def get_installations(self) -> list[dict[str, Any]]:
        return [self.installation] if self.installation else []

    async def list_installation_repositories(self, installation_id: int) -> list[dict]:
        return [
            {
                "id": 100,
                "name": "app",
                "full_name": "octo/app",
                "owner": {"login": "octo"},
                "private": False,
                "html_url": "https://github.com/octo/app",
            }
        ]

    async def get_client_for_repo(self, owner: str, repo: str) -> FakeGitHubClient | None:
        return self.source_client

    def get_installation_url(self) -> str:
        return "https://github.com/apps/pr-bridge/installations/new"


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch: pytest.MonkeyPatch) -> str:
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", key)
    return key


@pytest.fixture()
def repository() -> RepositoryConfig:
    return RepositoryConfig(
        id="repo-1",
        name="app",
        owner="octo",
        github_id=100,
        webhook_secret="s3cret",
        created_by_user_id="user-1",
        github_app_installation_id=42,
    )


@pytest.fixture()
def linear_issue() -> dict[str, Any]:
    return {
        "id": "lin-uuid-123",
        "identifier": "LET-123",
        "number": 123,
        "title": "Add billing export",
        "description": "Export invoices as CSV",
        "url": "https://linear.app/acme/issue/LET-123",
        "priority": 2,
        "estimate": 3,
        "integrationSourceType": None,
    }


@pytest.fixture()
def linear_relations() -> dict[str, Any]:
    return {
        "state": {"id": "st-1", "name": "In Progress"},
        "assignee": {"id": "u-1", "name": "Jane Doe", "displayName": "jane"},
        "team": {"id": "team-1", "name": "Lettuce", "key": "LET"},
        "project": None,
        "projectMilestone": None,
        "labels": [{"id": "lbl-1", "name": "bug"}, {"id": "lbl-2", "name": "Backend"}],
        "attachments": [],
    }


@pytest.fixture()
def github_client() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def context(
    store: InMemoryStore,
    linear_issue: dict[str, Any],
    linear_relations: dict[str, Any],
) -> BridgeContext:
    return BridgeContext(
        store=store,
        linear_client=FakeLinearClient(linear_issue, linear_relations),
        app_client=FakeAppClient({"id": 42, "repository_selection": "all"}),
    )
