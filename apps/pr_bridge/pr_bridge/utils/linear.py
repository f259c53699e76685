"""Linear GraphQL API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import LINEAR_ACCESS_TOKEN, LINEAR_API_KEY, LINEAR_API_URL

logger = logging.getLogger(__name__)

ISSUE_FIELDS = """
    id
    identifier
    number
    title
    description
    url
    priority
    estimate
    integrationSourceType
"""

FIND_ISSUE_QUERY = f"""
query FindIssue($filter: IssueFilter!) {{
    issues(filter: $filter, first: 1) {{
        nodes {{
            {ISSUE_FIELDS}
        }}
    }}
}}
"""

# Each relation is fetched by its own query so one failing relation
# leaves the others intact.
RELATION_SELECTIONS: dict[str, str] = {
    "state": "state { id name type }",
    "assignee": "assignee { id name displayName }",
    "team": "team { id name key }",
    "project": "project { id name }",
    "projectMilestone": "projectMilestone { id name }",
    "labels": "labels { nodes { id name } }",
    "attachments": "attachments { nodes { id url title sourceType } }",
}


class LinearAPIError(Exception):
    """Raised when the Linear API returns an HTTP error or GraphQL errors."""


class LinearClient:
    """Minimal async client for the Linear GraphQL API.

    Args:
        api_key: Personal API key, sent as-is in the Authorization header
        access_token: OAuth access token, sent as a Bearer token
    """

    def __init__(
        self,
        api_key: str | None = None,
        access_token: str | None = None,
        *,
        url: str = LINEAR_API_URL,
    ) -> None:
        if not api_key and not access_token:
            msg = "Either api_key or access_token is required"
            raise ValueError(msg)
        self.url = url
        self.authorization = api_key if api_key else f"Bearer {access_token}"

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL document and return its ``data``.

        Raises:
            LinearAPIError: On HTTP failures or a non-empty ``errors`` list
        """
        async with httpx.AsyncClient() as http_client:
            try:
                response = await http_client.post(
                    self.url,
                    headers={
                        "Authorization": self.authorization,
                        "Content-Type": "application/json",
                    },
                    json={"query": query, "variables": variables or {}},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                msg = f"Linear request failed: {e}"
                raise LinearAPIError(msg) from e

        result = response.json()
        if result.get("errors"):
            messages = "; ".join(err.get("message", "") for err in result["errors"])
            msg = f"Linear GraphQL error: {messages}"
            raise LinearAPIError(msg)
        return result.get("data") or {}

    async def find_issue(
        self, team_key: str, number: int, team_id: str | None = None
    ) -> dict[str, Any] | None:
        """Look up an issue by team key and number.

        Args:
            team_key: Team key, e.g. "LET"
            number: Issue number within the team
            team_id: Optional team id to further restrict the match

        Returns:
            The issue's scalar fields, or None if no issue matches
        """
        conditions: list[dict[str, Any]] = [
            {"number": {"eq": number}},
            {"team": {"key": {"eq": team_key}}},
        ]
        if team_id:
            conditions.append({"team": {"id": {"eq": team_id}}})

        data = await self.graphql(FIND_ISSUE_QUERY, {"filter": {"and": conditions}})
        nodes = (data.get("issues") or {}).get("nodes") or []
        return nodes[0] if nodes else None

    async def get_issue_relation(self, issue_id: str, relation: str) -> Any:
        """Fetch a single relation of an issue; connections are unwrapped to their nodes."""
        selection = RELATION_SELECTIONS[relation]
        query = f"""
        query IssueRelation($id: String!) {{
            issue(id: $id) {{
                {selection}
            }}
        }}
        """
        data = await self.graphql(query, {"id": issue_id})
        value = (data.get("issue") or {}).get(relation)
        if isinstance(value, dict) and "nodes" in value:
            return value["nodes"]
        return value

    async def resolve_issue_relations(
        self, issue_id: str, relations: tuple[str, ...] = tuple(RELATION_SELECTIONS)
    ) -> dict[str, Any]:
        """Resolve relations concurrently, mapping each failure to None.

        Returns:
            Dict keyed by relation name
        """

        async def _resolve(relation: str) -> Any:
            try:
                return await self.get_issue_relation(issue_id, relation)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Failed to resolve %s for Linear issue %s", relation, issue_id, exc_info=True
                )
                return None

        values = await asyncio.gather(*(_resolve(r) for r in relations))
        return dict(zip(relations, values, strict=True))


def build_linear_client(
    api_key: str = LINEAR_API_KEY, access_token: str = LINEAR_ACCESS_TOKEN
) -> LinearClient | None:
    """Build a client from the API key, falling back to an access token."""
    if api_key:
        return LinearClient(api_key=api_key)
    if access_token:
        return LinearClient(access_token=access_token)
    logger.warning("Neither LINEAR_API_KEY nor LINEAR_ACCESS_TOKEN is set")
    return None
