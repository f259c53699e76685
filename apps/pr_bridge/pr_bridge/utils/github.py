"""GitHub REST API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import GITHUB_API_URL, GITHUB_USER_AGENT

logger = logging.getLogger(__name__)

PER_PAGE = 100
MAX_PAGES = 100
HTTP_NO_CONTENT = 204


class GitHubAPIError(Exception):
    """Raised for any non-2xx response from the GitHub API."""

    def __init__(self, status_code: int, message: str, errors: Any = None) -> None:
        self.status_code = status_code
        self.message = message
        self.errors = errors
        super().__init__(f"GitHub API error: {status_code} {message}")


class GitHubClient:
    """Thin async wrapper over the repository, issue, PR, label and milestone endpoints.

    Pull requests share the issues API for labels, assignees and milestones,
    so those helpers take an ``issue_number`` that may be a PR number.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = GITHUB_API_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": GITHUB_USER_AGENT,
        }

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Path relative to the API root, e.g. ``/repos/o/r``
            json: Optional JSON request body
            params: Optional query parameters

        Returns:
            Decoded JSON, or None for 204 responses

        Raises:
            GitHubAPIError: If GitHub responds with a non-2xx status
        """
        response = await self._http.request(
            method,
            f"{self.base_url}{endpoint}",
            headers=self.headers,
            json=json,
            params=params,
        )

        if response.is_error:
            try:
                data = response.json()
            except ValueError:
                data = {}
            message = data.get("message") if isinstance(data, dict) else None
            errors = data.get("errors") if isinstance(data, dict) else None
            logger.debug(
                "GitHub %s %s failed (%s): %s", method, endpoint, response.status_code, message
            )
            raise GitHubAPIError(
                response.status_code, message or response.reason_phrase, errors
            )

        if response.status_code == HTTP_NO_CONTENT or not response.content:
            return None
        return response.json()

    # Repositories

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}")

    async def create_webhook(
        self, owner: str, repo: str, url: str, secret: str, events: list[str] | None = None
    ) -> dict[str, Any]:
        """Create a JSON webhook that delivers ``push`` events by default."""
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/hooks",
            json={
                "name": "web",
                "active": True,
                "events": events or ["push"],
                "config": {
                    "url": url,
                    "content_type": "json",
                    "secret": secret,
                    "insecure_ssl": "0",
                },
            },
        )

    # Issues

    async def get_repository_issues(self, owner: str, repo: str) -> list[dict[str, Any]]:
        """All issues (open and closed), following pagination up to 100 pages."""
        issues: list[dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            batch = await self.request(
                "GET",
                f"/repos/{owner}/{repo}/issues",
                params={"per_page": PER_PAGE, "page": page, "state": "all"},
            )
            if not batch:
                break
            issues.extend(batch)
            if len(batch) < PER_PAGE:
                break
        return issues

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}/issues/{issue_number}")

    async def update_issue(
        self, owner: str, repo: str, issue_number: int, **fields: Any
    ) -> dict[str, Any]:
        return await self.request(
            "PATCH", f"/repos/{owner}/{repo}/issues/{issue_number}", json=fields
        )

    async def create_issue_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> dict[str, Any]:
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )

    # Labels

    async def get_labels(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/labels", params={"per_page": PER_PAGE}
        )

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        label: dict[str, Any] = {"name": name}
        if color:
            label["color"] = color
        if description:
            label["description"] = description
        return await self.request("POST", f"/repos/{owner}/{repo}/labels", json=label)

    async def add_labels(
        self, owner: str, repo: str, issue_number: int, labels: list[str]
    ) -> list[dict[str, Any]]:
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/labels",
            json={"labels": labels},
        )

    # Assignees

    async def list_assignees(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/assignees", params={"per_page": PER_PAGE}
        )

    async def add_assignees(
        self, owner: str, repo: str, issue_number: int, assignees: list[str]
    ) -> dict[str, Any]:
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/assignees",
            json={"assignees": assignees},
        )

    # Milestones

    async def get_milestones(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/milestones", params={"per_page": PER_PAGE}
        )

    async def create_milestone(
        self, owner: str, repo: str, title: str, description: str | None = None
    ) -> dict[str, Any]:
        milestone: dict[str, Any] = {"title": title}
        if description:
            milestone["description"] = description
        return await self.request("POST", f"/repos/{owner}/{repo}/milestones", json=milestone)

    # Pull requests

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str = "",
        draft: bool = False,
    ) -> dict[str, Any]:
        logger.info(
            "Creating PR: head=%s, base=%s, repo=%s/%s, draft=%s",
            head,
            base,
            owner,
            repo,
            draft,
        )
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "head": head, "base": base, "body": body, "draft": draft},
        )

    async def update_pull_request(
        self, owner: str, repo: str, pr_number: int, **fields: Any
    ) -> dict[str, Any]:
        return await self.request("PATCH", f"/repos/{owner}/{repo}/pulls/{pr_number}", json=fields)
