"""GitHub App authentication: app JWTs, installations and installation tokens."""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from typing import Any

import httpx
import jwt

from ..config import (
    GITHUB_API_URL,
    GITHUB_APP_ID,
    GITHUB_APP_PRIVATE_KEY,
    GITHUB_APP_SLUG,
    GITHUB_USER_AGENT,
)
from .github import GitHubAPIError, GitHubClient

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs that live longer than 10 minutes
JWT_BACKDATE_SECONDS = 60
JWT_LIFETIME_SECONDS = 540

HTTP_NOT_FOUND = 404
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\r\n]+$")


class GitHubAppConfigError(ValueError):
    """Raised when the GitHub App id or private key is not configured."""


def normalize_private_key(raw: str) -> str:
    """Turn an environment value into a PEM string.

    Accepts a PEM, a PEM with literal ``\\n`` sequences, or base64 of a PEM.
    """
    if not raw:
        return ""

    value = raw.strip()
    if "BEGIN" in value and "END" in value and "PRIVATE KEY" in value:
        return value.replace("\\n", "\n")

    if _BASE64_RE.match(value):
        try:
            value = base64.b64decode(value).decode("utf-8").strip()
        except (binascii.Error, UnicodeDecodeError):
            logger.warning("GITHUB_APP_PRIVATE_KEY looks like base64 but could not be decoded")

    return value.replace("\\n", "\n")


class GitHubAppClient:
    """Authenticates as the GitHub App and mints installation tokens."""

    def __init__(
        self,
        app_id: str = GITHUB_APP_ID,
        private_key: str = GITHUB_APP_PRIVATE_KEY,
        *,
        app_slug: str = GITHUB_APP_SLUG,
        base_url: str = GITHUB_API_URL,
    ) -> None:
        self.app_id = str(app_id or "")
        self.private_key = normalize_private_key(private_key)
        self.app_slug = app_slug
        self.base_url = base_url.rstrip("/")

        if not self.app_id:
            msg = "GITHUB_APP_ID environment variable is required"
            raise GitHubAppConfigError(msg)
        if not self.private_key:
            msg = "GITHUB_APP_PRIVATE_KEY environment variable is required"
            raise GitHubAppConfigError(msg)

    def create_app_jwt(self) -> str:
        """Create a short-lived RS256 JWT identifying the app."""
        now = int(time.time())
        payload = {
            "iat": now - JWT_BACKDATE_SECONDS,
            "exp": now + JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": GITHUB_USER_AGENT,
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        async with httpx.AsyncClient() as http_client:
            response = await http_client.request(
                method,
                f"{self.base_url}{endpoint}",
                headers=self._headers(token),
                params=params,
            )
        if response.is_error:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise GitHubAPIError(response.status_code, message or response.reason_phrase)
        return response.json()

    async def get_installations(self) -> list[dict[str, Any]]:
        return await self._request(
            "GET", "/app/installations", self.create_app_jwt(), params={"per_page": 100}
        )

    async def get_installation_token(self, installation_id: int) -> str:
        data = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            self.create_app_jwt(),
        )
        return data["token"]

    async def list_installation_repositories(
        self, installation_id: int
    ) -> list[dict[str, Any]]:
        """Repositories the installation can access (first 100)."""
        token = await self.get_installation_token(installation_id)
        data = await self._request(
            "GET", "/installation/repositories", token, params={"per_page": 100}
        )
        return data.get("repositories", [])

    async def get_repository_installation(
        self, owner: str, repo: str
    ) -> dict[str, Any] | None:
        """Find the installation that grants access to ``owner/repo``.

        Args:
            owner: Repository owner login
            repo: Repository name

        Returns:
            The installation dict, or None if the app is not installed on the repo
        """
        full_name = f"{owner}/{repo}"
        for installation in await self.get_installations():
            if installation.get("repository_selection") == "all":
                account = (installation.get("account") or {}).get("login", "")
                if account.lower() == owner.lower():
                    return installation
                continue

            try:
                repositories = await self.list_installation_repositories(installation["id"])
            except (GitHubAPIError, httpx.HTTPError):
                logger.exception(
                    "Error checking repositories for installation %s", installation.get("id")
                )
                continue

            if any(r.get("full_name") == full_name for r in repositories):
                return installation

        return None

    async def get_client_for_repo(self, owner: str, repo: str) -> GitHubClient | None:
        """A REST client authenticated for ``owner/repo``, or None if not installed."""
        try:
            installation = await self._request(
                "GET", f"/repos/{owner}/{repo}/installation", self.create_app_jwt()
            )
        except GitHubAPIError as e:
            if e.status_code == HTTP_NOT_FOUND:
                return None
            raise
        token = await self.get_installation_token(installation["id"])
        return GitHubClient(token, base_url=self.base_url)

    def get_installation_url(self) -> str:
        if self.app_slug:
            return f"https://github.com/settings/apps/{self.app_slug}/installations"
        return f"https://github.com/apps/{self.app_id}"
