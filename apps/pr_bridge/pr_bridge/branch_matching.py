"""Match branch names to Linear issues."""

from __future__ import annotations

import logging
import re
from typing import Any

from .models import (
    BranchMatchResult,
    Confidence,
    GitHubIssueRef,
    MatchedLinearIssue,
    NamedRef,
    RepositoryConfig,
)
from .protocol import MappingExistsError, RepositoryStore
from .utils.linear import LinearClient

logger = logging.getLogger(__name__)

ISSUE_ID_RE = re.compile(r"([A-Z]+-\d+)", re.IGNORECASE | re.ASCII)
ISSUE_PARTS_RE = re.compile(r"^([A-Z]+)-(\d+)$", re.ASCII)
GITHUB_ISSUE_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/issues/(\d+)")

VALID_STATES = ("In Progress", "Todo", "Backlog")
MIN_TITLE_WORD_LENGTH = 4


def extract_linear_issue_id(branch_name: str) -> str | None:
    """Return the first ``TEAM-123`` identifier in a branch name, upper-cased.

    The scan is not anchored, so ``fix/backport-LET-12-again`` yields ``LET-12``.
    """
    match = ISSUE_ID_RE.search(branch_name)
    return match.group(1).upper() if match else None


def parse_github_issue_url(text: str | None) -> GitHubIssueRef | None:
    """Extract ``owner/repo#number`` from a GitHub issue URL embedded in text."""
    if not text or not isinstance(text, str):
        return None
    match = GITHUB_ISSUE_URL_RE.search(text)
    if not match:
        return None
    owner, repo, number = match.group(1), match.group(2), int(match.group(3))
    return GitHubIssueRef(id=f"{owner}/{repo}#{number}", owner=owner, repo=repo, number=number)


def calculate_match_confidence(
    branch_name: str, linear_issue_id: str, issue: MatchedLinearIssue
) -> Confidence:
    """Score how well a branch name matches an issue.

    ``high`` when the branch carries the identifier verbatim, ``medium`` when it
    contains a title word longer than three characters, else ``low``.
    """
    branch_lower = branch_name.lower()
    if linear_issue_id.lower() in branch_lower:
        return "high"

    title_words = [w for w in issue.title.lower().split(" ") if len(w) >= MIN_TITLE_WORD_LENGTH]
    if any(word in branch_lower for word in title_words):
        return "medium"

    return "low"


def _named(value: Any, name_key: str = "name") -> NamedRef | None:
    if not isinstance(value, dict) or not value.get("id"):
        return None
    return NamedRef(id=value["id"], name=value.get(name_key) or value.get("name") or "")


def find_github_issue(
    issue: dict[str, Any], attachments: list[dict[str, Any]] | None
) -> GitHubIssueRef | None:
    """Find the GitHub issue attached to a Linear issue.

    Checks the integration source first, then attachment URLs; an attachment
    match wins over the integration source.
    """
    github_issue = None
    source_type = issue.get("integrationSourceType") or ""
    if "github" in str(source_type).lower():
        github_issue = parse_github_issue_url(issue.get("externalId"))

    for attachment in attachments or []:
        ref = parse_github_issue_url(attachment.get("url"))
        if ref:
            github_issue = ref
            break

    return github_issue


def _no_match(
    branch_name: str, linear_issue_id: str | None, confidence: Confidence = "none"
) -> BranchMatchResult:
    return BranchMatchResult(
        branch_name=branch_name,
        linear_issue_id=linear_issue_id,
        matched_issue=None,
        confidence=confidence,
    )


async def match_branch_with_linear_issues(
    branch_name: str,
    repository: RepositoryConfig,
    linear_client: LinearClient | None,
) -> BranchMatchResult:
    """Resolve a branch name to a Linear issue and score the match.

    Args:
        branch_name: Branch name without ``refs/heads/``
        repository: Repository config; its ``linear_team_id`` narrows the lookup
        linear_client: Linear client, or None when Linear is not configured

    Returns:
        BranchMatchResult; ``matched_issue`` is None unless an issue in an
        actionable state was found
    """
    linear_issue_id = extract_linear_issue_id(branch_name)
    if not linear_issue_id:
        return _no_match(branch_name, None)

    if linear_client is None:
        logger.warning("No Linear client configured; cannot match %s", branch_name)
        return _no_match(branch_name, linear_issue_id)

    parts = ISSUE_PARTS_RE.match(linear_issue_id)
    if not parts:
        return _no_match(branch_name, linear_issue_id)

    team_key, issue_number = parts.group(1), int(parts.group(2))

    try:
        issue = await linear_client.find_issue(
            team_key, issue_number, team_id=repository.linear_team_id
        )
        if not issue:
            logger.info("No Linear issue %s found for branch %s", linear_issue_id, branch_name)
            return _no_match(branch_name, linear_issue_id)

        relations = await linear_client.resolve_issue_relations(issue["id"])

        state = relations.get("state") or {}
        state_name = state.get("name") or ""
        if state_name and state_name not in VALID_STATES:
            logger.info(
                "Linear issue %s is in state %r; not eligible for a PR",
                linear_issue_id,
                state_name,
            )
            return _no_match(branch_name, linear_issue_id, "low")

        team = _named(relations.get("team")) or NamedRef(id="", name="")
        matched_issue = MatchedLinearIssue(
            id=issue["id"],
            identifier=issue.get("identifier") or linear_issue_id,
            title=issue.get("title") or "",
            description=issue.get("description"),
            url=issue.get("url") or "",
            state=state_name,
            team=team,
            assignee=_named(relations.get("assignee"), name_key="displayName"),
            labels=[
                NamedRef(id=label["id"], name=label["name"])
                for label in relations.get("labels") or []
                if label.get("name")
            ],
            priority=issue.get("priority") or 0,
            estimate=issue.get("estimate") or None,
            project=_named(relations.get("project")),
            milestone=_named(relations.get("projectMilestone")),
            github_issue=find_github_issue(issue, relations.get("attachments")),
        )
    except Exception:
        logger.exception("Failed to match branch %s with Linear", branch_name)
        return _no_match(branch_name, linear_issue_id)

    confidence = calculate_match_confidence(branch_name, linear_issue_id, matched_issue)
    return BranchMatchResult(
        branch_name=branch_name,
        linear_issue_id=linear_issue_id,
        matched_issue=matched_issue,
        confidence=confidence,
    )


async def process_branches_batch(
    branches: list[str],
    repository: RepositoryConfig,
    linear_client: LinearClient | None,
) -> list[BranchMatchResult]:
    """Match several branches one after another."""
    return [
        await match_branch_with_linear_issues(branch, repository, linear_client)
        for branch in branches
    ]


async def get_or_create_github_linear_mapping(
    store: RepositoryStore,
    linear_issue_id: str,
    github_issue_id: int,
    repository_id: str,
) -> bool:
    """Record a Linear issue ↔ GitHub issue mapping unless one exists.

    Returns:
        True if the mapping exists afterwards, False if the store failed
    """
    try:
        await store.create_github_linear_mapping(
            linear_issue_id=linear_issue_id,
            github_issue_id=github_issue_id,
            github_repository_id=repository_id,
        )
    except MappingExistsError:
        return True
    except Exception:
        logger.exception("Failed to record GitHub-Linear mapping for %s", linear_issue_id)
        return False
    return True
