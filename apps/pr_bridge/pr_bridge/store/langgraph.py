"""RepositoryStore backed by the LangGraph platform key-value store."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, replace
from typing import Any

from langgraph_sdk import get_client

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
from .memory import UPDATABLE_REPOSITORY_FIELDS

logger = logging.getLogger(__name__)

NAMESPACE_ROOT = "pr_bridge"
SEARCH_PAGE_SIZE = 100
HTTP_NOT_FOUND = 404


def _is_not_found(exc: Exception) -> bool:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None) == HTTP_NOT_FOUND


class LangGraphStore:
    """Persist records as items under ``("pr_bridge", <kind>)`` namespaces.

    GitHub-Linear mappings are keyed by ``<linear issue id>:<repository id>``,
    so concurrent inserts for the same pair write the same item instead of
    creating duplicates.
    """

    def __init__(self, url: str | None = None, client: Any | None = None) -> None:
        self._client = client or get_client(url=url)

    @property
    def _store(self) -> Any:
        return self._client.store

    @staticmethod
    def _ns(kind: str) -> tuple[str, str]:
        return (NAMESPACE_ROOT, kind)

    async def _get(self, kind: str, key: str) -> dict[str, Any] | None:
        try:
            item = await self._store.get_item(self._ns(kind), key)
        except Exception as e:
            if _is_not_found(e):
                return None
            raise
        if not item:
            return None
        return item.get("value")

    async def _put(self, kind: str, key: str, value: dict[str, Any]) -> None:
        await self._store.put_item(self._ns(kind), key, value)

    async def _search(
        self, kind: str, filter_: dict[str, Any] | None = None, max_items: int | None = None
    ) -> list[dict[str, Any]]:
        values: list[dict[str, Any]] = []
        offset = 0
        while True:
            response = await self._store.search_items(
                self._ns(kind), filter=filter_, limit=SEARCH_PAGE_SIZE, offset=offset
            )
            items = response.get("items", [])
            values.extend(item["value"] for item in items)
            if len(items) < SEARCH_PAGE_SIZE or (max_items and len(values) >= max_items):
                break
            offset += SEARCH_PAGE_SIZE
        return values[:max_items] if max_items else values

    @staticmethod
    def _repository(value: dict[str, Any]) -> RepositoryConfig:
        repository = RepositoryConfig(**value)
        token = decrypt_token(repository.access_token) if repository.access_token else None
        return replace(repository, access_token=token or None)

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
        if await self.get_repository_by_github_id(github_id, owner) is not None:
            msg = f"Repository {owner}/{name} is already linked"
            raise DuplicateRepositoryError(msg)

        repository = RepositoryConfig(
            id=uuid.uuid4().hex,
            name=name,
            owner=owner,
            github_id=github_id,
            webhook_secret=generate_webhook_secret(),
            created_by_user_id=created_by_user_id,
            github_app_installation_id=github_app_installation_id,
            access_token=encrypt_token(access_token) if access_token else None,
            linear_team_id=linear_team_id,
        )
        await self._put("repositories", repository.id, asdict(repository))
        logger.info("Linked repository %s (%s)", repository.full_name, repository.id)
        return self._repository(asdict(repository))

    async def list_repositories(
        self, created_by_user_id: str | None = None
    ) -> list[RepositoryConfig]:
        filter_: dict[str, Any] = {"is_active": True}
        if created_by_user_id is not None:
            filter_["created_by_user_id"] = created_by_user_id
        values = await self._search("repositories", filter_)
        values.sort(key=lambda v: v["created_at"], reverse=True)
        return [self._repository(v) for v in values]

    async def get_repository(self, repository_id: str) -> RepositoryConfig | None:
        value = await self._get("repositories", repository_id)
        if not value or not value.get("is_active"):
            return None
        return self._repository(value)

    async def get_repository_by_github_id(
        self, github_id: int, owner: str
    ) -> RepositoryConfig | None:
        values = await self._search(
            "repositories",
            {"github_id": github_id, "owner": owner, "is_active": True},
            max_items=1,
        )
        return self._repository(values[0]) if values else None

    async def update_repository(self, repository_id: str, **changes: Any) -> RepositoryConfig:
        unknown = set(changes) - UPDATABLE_REPOSITORY_FIELDS
        if unknown:
            msg = f"Cannot update repository fields: {sorted(unknown)}"
            raise ValueError(msg)

        value = await self._get("repositories", repository_id)
        if not value or not value.get("is_active"):
            msg = f"Repository {repository_id} not found"
            raise RepositoryNotFoundError(msg)

        updates = {k: v for k, v in changes.items() if v is not None}
        if "access_token" in updates:
            updates["access_token"] = encrypt_token(updates["access_token"])
        value.update(updates, updated_at=utc_now())
        await self._put("repositories", repository_id, value)
        return self._repository(value)

    async def delete_repository(self, repository_id: str) -> None:
        value = await self._get("repositories", repository_id)
        if not value or not value.get("is_active"):
            msg = f"Repository {repository_id} not found"
            raise RepositoryNotFoundError(msg)
        value.update(is_active=False, updated_at=utc_now())
        await self._put("repositories", repository_id, value)

    async def create_webhook_event(
        self, *, repository_id: str, event_type: str, payload: dict[str, Any]
    ) -> WebhookEvent:
        event = WebhookEvent(
            id=uuid.uuid4().hex,
            repository_id=repository_id,
            event_type=event_type,
            payload=payload,
        )
        await self._put("webhook_events", event.id, asdict(event))
        return event

    async def mark_webhook_event_processed(
        self,
        event_id: str,
        *,
        processing_error: str | None = None,
        outcome: dict[str, Any] | None = None,
    ) -> None:
        value = await self._get("webhook_events", event_id)
        if value is None:
            msg = f"Webhook event {event_id} not found"
            raise RepositoryNotFoundError(msg)
        now = utc_now()
        value.update(
            processed=True,
            processing_error=processing_error,
            outcome=outcome,
            processed_at=now,
            updated_at=now,
        )
        await self._put("webhook_events", event_id, value)

    async def get_webhook_event(self, event_id: str) -> WebhookEvent | None:
        value = await self._get("webhook_events", event_id)
        return WebhookEvent(**value) if value else None

    async def get_unprocessed_webhook_events(self, limit: int = 10) -> list[WebhookEvent]:
        values = await self._search("webhook_events", {"processed": False})
        values.sort(key=lambda v: v["created_at"])
        return [WebhookEvent(**v) for v in values[:limit]]

    async def create_github_linear_mapping(
        self, *, linear_issue_id: str, github_issue_id: int, github_repository_id: str
    ) -> GitHubLinearMapping:
        key = f"{linear_issue_id}:{github_repository_id}"
        if await self._get("issue_mappings", key) is not None:
            msg = "Mapping already exists for this Linear issue and repository"
            raise MappingExistsError(msg)
        mapping = GitHubLinearMapping(
            id=key,
            linear_issue_id=linear_issue_id,
            github_issue_id=github_issue_id,
            github_repository_id=github_repository_id,
        )
        await self._put("issue_mappings", key, asdict(mapping))
        return mapping

    async def get_github_issue_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubLinearMapping | None:
        value = await self._get("issue_mappings", f"{linear_issue_id}:{github_repository_id}")
        return GitHubLinearMapping(**value) if value else None

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
            id=uuid.uuid4().hex,
            linear_issue_id=linear_issue_id,
            github_pr_id=github_pr_id,
            github_repository_id=github_repository_id,
            github_pr_number=github_pr_number,
            github_pr_url=github_pr_url,
        )
        await self._put("pr_mappings", mapping.id, asdict(mapping))
        return mapping

    async def update_github_pr_mapping(self, mapping_id: str, status: PrStatus) -> None:
        if status not in PR_STATUSES:
            msg = f"Invalid PR status: {status}"
            raise ValueError(msg)
        value = await self._get("pr_mappings", mapping_id)
        if value is None:
            msg = "PR mapping not found"
            raise RepositoryNotFoundError(msg)
        value.update(status=status, updated_at=utc_now())
        await self._put("pr_mappings", mapping_id, value)

    async def get_pr_mapping_by_linear_issue(
        self, linear_issue_id: str, github_repository_id: str
    ) -> GitHubPrMapping | None:
        values = await self._search(
            "pr_mappings",
            {"linear_issue_id": linear_issue_id, "github_repository_id": github_repository_id},
            max_items=1,
        )
        return GitHubPrMapping(**values[0]) if values else None
