"""In-process store used for local runs and tests."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import Any

from ..encryption import decrypt_token, encrypt_token, generate_webhook_secret
from ..models import (
    PR_STATUSES,
    GitHubLinearMapping,
    GitHubPrMapping,
    PrStatus,
    RepositoryConfig,
    WebhookEvent,
    utc_now,
)
from ..protocol import (
    DuplicateRepositoryError,
    MappingExistsError,
    RepositoryNotFoundError,
)

logger = logging.getLogger(__name__)

UPDATABLE_REPOSITORY_FIELDS = frozenset(
    {
        "name",
        "owner",
        "access_token",
        "linear_team_id",
        "webhook_secret",
        "github_app_installation_id",
    }
)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryStore:
    """Dict-backed RepositoryStore.

    A single asyncio lock serializes writes, so the mapping insert-if-absent
    check and the insert happen atomically.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.repositories: dict[str, RepositoryConfig] = {}
        self.webhook_events: dict[str, WebhookEvent] = {}
        self.issue_mappings: dict[str, GitHubLinearMapping] = {}
        self.pr_mappings: dict[str, GitHubPrMapping] = {}

    def _decrypted(self, repository: RepositoryConfig) -> RepositoryConfig:
        token = decrypt_token(repository.access_token) if repository.access_token else None
        return replace(repository, access_token=token or None)

    def _find_active(self, github_id: int, owner: str) -> RepositoryConfig | None:
        for repository in self.repositories.values():
            if (
                repository.is_active
                and repository.github_id == github_id
                and repository.owner == owner
            ):
                return repository
        return None

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
        async with self._lock:
            if self._find_active(github_id, owner) is not None:
                msg = f"Repository {owner}/{name} is already linked"
                raise DuplicateRepositoryError(msg)

            repository = RepositoryConfig(
                id=_new_id(),
                name=name,
                owner=owner,
                github_id=github_id,
                webhook_secret=generate_webhook_secret(),
                created_by_user_id=created_by_user_id,
                github_app_installation_id=github_app_installation_id,
                access_token=encrypt_token(access_token) if access_token else None,
                linear_team_id=linear_team_id,
            )
            self.repositories[repository.id] = repository
        logger.info("Linked repository %s (%s)", repository.full_name, repository.id)
        return self._decrypted(repository)

    async def list_repositories(
        self, created_by_user_id: str | None = None
    ) -> list[RepositoryConfig]:
        repositories = [
            r
            for r in self.repositories.values()
            if r.is_active
            and (created_by_user_id is None or r.created_by_user_id == created_by_user_id)
        ]
        repositories.sort(key=lambda r: r.created_at, reverse=True)
        return [self._decrypted(r) for r in repositories]

    async def get_repository(self, repository_id: str) -> RepositoryConfig | None:
        repository = self.repositories.get(repository_id)
        if repository is None or not repository.is_active:
            return None
        return self._decrypted(repository)

    async def get_repository_by_github_id(
        self, github_id: int, owner: str
    ) -> RepositoryConfig | None:
        repository = self._find_active(github_id, owner)
        return self._decrypted(repository) if repository else None

    async def update_repository(self, repository_id: str, **changes: Any) -> RepositoryConfig:
        unknown = set(changes) - UPDATABLE_REPOSITORY_FIELDS
        if unknown:
            msg = f"Cannot update repository fields: {sorted(unknown)}"
            raise ValueError(msg)

        async with self._lock:
            repository = self.repositories.get(repository_id)
            if repository is None or not repository.is_active:
                msg = f"Repository {repository_id} not found"
                raise RepositoryNotFoundError(msg)

            updates = {k: v for k, v in changes.items() if v is not None}
            if "access_token" in updates:
                updates["access_token"] = encrypt_token(updates["access_token"])
            repository = replace(repository, **updates, updated_at=utc_now())
            self.repositories[repository_id] = repository
        return self._decrypted(repository)

    async def delete_repository(self, repository_id: str) -> None:
        async with self._lock:
            repository = self.repositories.get(repository_id)
            if repository is None or not repository.is_active:
                msg = f"Repository {repository_id} not found"
                raise RepositoryNotFoundError(msg)
            self.repositories[repository_id] = replace(
                repository, is_active=False, updated_at=utc_now()
            )
        logger.info("Deactivated repository %s", repository.full_name)

    async def create_webhook_event(
        self, *, repository_id: str, event_type: str, payload: dict[str, Any]
    ) -> WebhookEvent:
        event = WebhookEvent(
            id=_new_id(),
            repository_id=repository_id,
            event_type=event_type,
            payload=payload,
        )
        async with self._lock:
            self.webhook_events[event.id] = event
        return event

    async def mark_webhook_event_processed(
        self,
        event_id: str,
        *,
        processing_error: str | None = None,
        outcome: dict[str, Any] | None = None,
    ) -> None:
        async with self._lock:
            event = self.webhook_events.get(event_id)
            if event is None:
                msg = f"Webhook event {event_id} not found"
                raise RepositoryNotFoundError(msg)
            now = utc_now()
            self.webhook_events[event_id] = replace(
                event,
                processed=True,
                processing_error=processing_error,
                outcome=outcome,
                processed_at=now,
                updated_at=now,
            )

    async def get_webhook_event(self, event_id: str) -> WebhookEvent | None:
        return self.webhook_events.get(event_id)

    async def get_unprocessed_webhook_events(self, limit: int = 10) -> list[WebhookEvent]:
        pending = [e for e in self.webhook_events.values() if not e.processed]
        pending.sort(key=lambda e: e.created_at)
        return pending[:limit]

    async def create_github_linear_mapping(
        self, *, linear_issue_id: str, github_issue_id: int, github_repository_id: str
    ) -> GitHubLinearMapping:
        async with self._lock:
            if self._find_issue_mapping(linear_issue_id, github_repository_id):
                msg = "Mapping already exists for this Linear issue and repository"
                raise MappingExistsError(msg)
            mapping = GitHubLinearMapping(
                id=_new_id(),
                linear_issue_id=linear_issue_id,
                github_issue_id=github_issue_id,
                github_repository_id=github_repository_id,
            )
            self.issue_mappings[mapping.id] = mapping
        return mapping

    def _find_issue_mapping(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubLinearMapping | None:
        return next(
            (
                m
                for m in self.issue_mappings.values()
                if m.linear_issue_id == linear_issue_id
                and m.github_repository_id == github_repository_id
            ),
            None,
        )

    async def get_github_issue_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubLinearMapping | None:
        return self._find_issue_mapping(linear_issue_id, github_repository_id)

    async def create_github_pr_mapping(
        self,
        *,
        linear_issue_id: str,
        github_pr_id: int,
        github_repository_id: str,
        github_pr_number: int,
        github_pr_url: str,
    ) -> GitHubPrMapping:
        mapping = GitHubPrMapping(
            id=_new_id(),
            linear_issue_id=linear_issue_id,
            github_pr_id=github_pr_id,
            github_repository_id=github_repository_id,
            github_pr_number=github_pr_number,
            github_pr_url=github_pr_url,
        )
        async with self._lock:
            self.pr_mappings[mapping.id] = mapping
        return mapping

    async def update_github_pr_mapping(self, mapping_id: str, status: PrStatus) -> None:
        if status not in PR_STATUSES:
            msg = f"Invalid PR status: {status}"
            raise ValueError(msg)
        async with self._lock:
            mapping = self.pr_mappings.get(mapping_id)
            if mapping is None:
                msg = "PR mapping not found"
                raise RepositoryNotFoundError(msg)
            self.pr_mappings[mapping_id] = replace(mapping, status=status, updated_at=utc_now())

    async def get_pr_mapping_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubPrMapping | None:
        return next(
            (
                m
                for m in self.pr_mappings.values()
                if m.linear_issue_id == linear_issue_id
                and m.github_repository_id == github_repository_id
            ),
            None,
        )
