"""Protocol definitions for the bridge's external collaborators.

Persistence and PR-description generation are pluggable; the webhook
pipeline only depends on the protocols below.
"""

from typing import Any, Protocol, runtime_checkable

from .models import (
    GitHubLinearMapping,
    GitHubPrMapping,
    PrStatus,
    RepositoryConfig,
    WebhookEvent,
)


class StoreError(Exception):
    """Base class for persistence errors."""


class RepositoryNotFoundError(StoreError):
    """Raised when a repository or record id does not exist."""


class MappingExistsError(StoreError):
    """Raised when a GitHub-Linear mapping already exists for the issue and repository."""


class DuplicateRepositoryError(StoreError):
    """Raised when an active repository with the same (owner, github_id) exists."""


@runtime_checkable
class RepositoryStore(Protocol):
    """Persistence for repositories, webhook events and issue/PR mappings."""

    async def create_repository(
        self,
        *,
        name: str,
        owner: str,
        github_id: int,
        created_by_user_id: str,
        access_token: str | None = None,
        linear_team_id: str | None = None,
        github_app_installation_id: int | None = None,
    ) -> RepositoryConfig:
        """Link a repository, generating its webhook secret."""
        ...

    async def list_repositories(
        self, created_by_user_id: str | None = None
    ) -> list[RepositoryConfig]:
        """Active repositories, newest first."""
        ...

    async def get_repository(self, repository_id: str) -> RepositoryConfig | None:
        """Active repository by id."""
        ...

    async def get_repository_by_github_id(
        self, github_id: int, owner: str
    ) -> RepositoryConfig | None:
        """Active repository by GitHub id and owner login."""
        ...

    async def update_repository(self, repository_id: str, **changes: Any) -> RepositoryConfig:
        """Patch name, owner, access_token, linear_team_id, webhook_secret or installation id."""
        ...

    async def delete_repository(self, repository_id: str) -> None:
        """Soft-delete: mark the repository inactive."""
        ...

    async def create_webhook_event(
        self, *, repository_id: str, event_type: str, payload: dict[str, Any]
    ) -> WebhookEvent:
        ...

    async def mark_webhook_event_processed(
        self,
        event_id: str,
        *,
        processing_error: str | None = None,
        outcome: dict[str, Any] | None = None,
    ) -> None:
        ...

    async def get_webhook_event(self, event_id: str) -> WebhookEvent | None:
        ...

    async def get_unprocessed_webhook_events(self, limit: int = 10) -> list[WebhookEvent]:
        """Oldest unprocessed events first."""
        ...

    async def create_github_linear_mapping(
        self, *, linear_issue_id: str, github_issue_id: int, github_repository_id: str
    ) -> GitHubLinearMapping:
        """Insert if absent; raises MappingExistsError otherwise."""
        ...

    async def get_github_issue_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubLinearMapping | None:
        ...

    async def create_github_pr_mapping(
        self,
        *,
        linear_issue_id: str,
        github_pr_id: int,
        github_repository_id: str,
        github_pr_number: int,
        github_pr_url: str,
    ) -> GitHubPrMapping:
        ...

    async def update_github_pr_mapping(self, mapping_id: str, status: PrStatus) -> None:
        ...

    async def get_pr_mapping_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubPrMapping | None:
        ...


@runtime_checkable
class DescriptionGenerator(Protocol):
    """Produces a pull request description for a Linear issue."""

    async def generate(
        self, issue: dict[str, Any], custom_instructions: str = ""
    ) -> str:
        """Return free text; raise on failure."""
        ...
