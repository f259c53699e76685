"""Open draft pull requests for Linear issues and mirror their metadata.

Called once per new-branch push. Every network step after PR creation is
best-effort: failures are logged, recorded in a ``MetadataReport`` and never
stop the remaining steps.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .branch_matching import match_branch_with_linear_issues
from .config import DEFAULT_BASE_BRANCH, PREVENT_DUPLICATE_PRS
from .description import generate_pr_description
from .models import (
    BranchMatchResult,
    GitHubIssueRef,
    MatchedLinearIssue,
    MetadataReport,
    NamedRef,
    PipelineReport,
    RepositoryConfig,
    StepResult,
)
from .protocol import DescriptionGenerator, RepositoryStore
from .utils.github import GitHubClient
from .utils.github_app import GitHubAppClient
from .utils.linear import LinearClient

logger = logging.getLogger(__name__)


@dataclass
class BridgeContext:
    """Collaborators for one webhook delivery."""

    store: RepositoryStore
    linear_client: LinearClient | None = None
    app_client: GitHubAppClient | None = None
    description_generator: DescriptionGenerator | None = None
    base_branch: str = DEFAULT_BASE_BRANCH
    prevent_duplicate_prs: bool = PREVENT_DUPLICATE_PRS


async def process_new_branch(
    branch_name: str,
    repository: RepositoryConfig,
    payload: dict[str, Any],
    github_client: GitHubClient,
    context: BridgeContext,
) -> PipelineReport:
    """Match a freshly pushed branch to a Linear issue and open a PR for it.

    Args:
        branch_name: Branch name without ``refs/heads/``
        repository: The linked repository the push came from
        payload: The push webhook payload
        github_client: Client authenticated for the repository
        context: Store, Linear, app client and description generator

    Returns:
        PipelineReport describing what happened; never raises
    """
    report = PipelineReport(branch_name=branch_name)
    try:
        logger.info("Processing new branch %s in %s", branch_name, repository.full_name)
        match = await match_branch_with_linear_issues(
            branch_name, repository, context.linear_client
        )
        report.linear_issue_id = match.linear_issue_id
        report.confidence = match.confidence

        if match.matched_issue is None:
            logger.info("No matching Linear issue found for branch: %s", branch_name)
            report.skipped_reason = "no_matching_issue"
            return report

        logger.info(
            "Found matching Linear issue %s - %s (confidence: %s)",
            match.matched_issue.identifier,
            match.matched_issue.title,
            match.confidence,
        )

        if match.confidence == "low":
            logger.info("Skipping low confidence match for branch: %s", branch_name)
            report.skipped_reason = "low_confidence"
            return report

        return await create_pr_for_linear_issue(
            match, repository, payload, github_client, context, report=report
        )
    except Exception as e:
        logger.exception("Error processing new branch %s", branch_name)
        report.error = f"{type(e).__name__}: {e}"
        return report


async def create_pr_for_linear_issue(
    match: BranchMatchResult,
    repository: RepositoryConfig,
    payload: dict[str, Any],
    github_client: GitHubClient,
    context: BridgeContext,
    *,
    report: PipelineReport | None = None,
) -> PipelineReport:
    """Create a draft PR for a matched issue, record it, then apply metadata."""
    issue = match.matched_issue
    if issue is None:
        msg = "create_pr_for_linear_issue requires a matched issue"
        raise ValueError(msg)

    report = report or PipelineReport(
        branch_name=match.branch_name,
        linear_issue_id=match.linear_issue_id,
        confidence=match.confidence,
    )
    repo_payload = payload.get("repository") or {}
    owner = (repo_payload.get("owner") or {}).get("login") or repository.owner
    name = repo_payload.get("name") or repository.name

    try:
        if context.prevent_duplicate_prs:
            existing = await context.store.get_pr_mapping_by_linear_issue(issue.id, repository.id)
            if existing is not None:
                logger.warning(
                    "PR #%s already exists for %s (%s); not creating another",
                    existing.github_pr_number,
                    issue.identifier,
                    existing.github_pr_url,
                )
                report.skipped_reason = "pr_already_exists"
                report.pr_number = existing.github_pr_number
                report.pr_url = existing.github_pr_url
                return report

        title = f"{issue.identifier} | {issue.title}"
        body = await generate_pr_description(issue, context.description_generator)

        pr = await github_client.create_pull_request(
            owner,
            name,
            title=title,
            head=match.branch_name,
            base=context.base_branch,
            body=body,
            draft=True,
        )
        report.pr_number = pr.get("number")
        report.pr_url = pr.get("html_url")
        logger.info(
            "Created PR #%s for Linear issue %s: %s",
            pr.get("number"),
            issue.identifier,
            pr.get("html_url"),
        )

        await context.store.create_github_pr_mapping(
            linear_issue_id=issue.id,
            github_pr_id=pr["id"],
            github_repository_id=repository.id,
            github_pr_number=pr["number"],
            github_pr_url=pr.get("html_url", ""),
        )
    except Exception as e:
        logger.exception("Error creating PR for Linear issue %s", issue.identifier)
        report.error = f"{type(e).__name__}: {e}"
        return report

    report.metadata = await link_github_issue_and_apply_metadata(
        pr, issue, repository, github_client, context
    )
    return report


async def _run_step(
    report: MetadataReport,
    name: str,
    step: Callable[[], Awaitable[StepResult]],
) -> StepResult:
    try:
        result = await step()
    except Exception as e:  # noqa: BLE001
        logger.warning("Metadata step %s failed", name, exc_info=True)
        return report.add(StepResult.fail(name, e))
    return report.add(result)


async def link_github_issue_and_apply_metadata(
    pr: dict[str, Any],
    issue: MatchedLinearIssue,
    repository: RepositoryConfig,
    github_client: GitHubClient,
    context: BridgeContext,
) -> MetadataReport:
    """Link the related GitHub issue and copy labels, assignee and milestone onto the PR.

    Steps run in order: repository access, issue link, issue milestone,
    labels, assignee, milestone. Only a failed repository access check stops
    the remaining steps.
    """
    report = MetadataReport()
    owner, name = repository.owner, repository.name

    async def repository_access() -> StepResult:
        await github_client.get_repository(owner, name)
        return StepResult(name="repository_access")

    if not (await _run_step(report, "repository_access", repository_access)).ok:
        logger.error("Repository %s is not reachable; skipping PR metadata", repository.full_name)
        return report

    mapping = None
    if issue.github_issue is None:
        try:
            mapping = await context.store.get_github_issue_by_linear_issue(
                issue.id, repository.id
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to look up GitHub issue mapping for %s", issue.id, exc_info=True)

    async def issue_link() -> StepResult:
        ref = issue.github_issue
        if ref is not None and not _is_same_repo(ref, repository):
            await link_cross_repo_issue(pr, ref, repository, github_client)
            return StepResult(name="issue_link", detail=f"Fixes {ref.id}")
        number = ref.number if ref is not None else mapping.github_issue_id if mapping else None
        if number is None:
            logger.info("No GitHub issue found for Linear issue %s", issue.identifier)
            return StepResult.skip("issue_link", "no GitHub issue reference or mapping")
        if await link_issue_to_pr(repository, pr, number, github_client):
            return StepResult(name="issue_link", detail=f"Closes #{number}")
        return StepResult.skip("issue_link", f"issue #{number} not found in repository")

    async def issue_milestone() -> StepResult:
        ref = issue.github_issue
        if ref is not None and not _is_same_repo(ref, repository):
            return await mirror_cross_repo_milestone(
                pr, ref, repository, github_client, context.app_client
            )
        number = ref.number if ref is not None else mapping.github_issue_id if mapping else None
        if number is None:
            return StepResult.skip("issue_milestone", "no GitHub issue to mirror")
        milestone = await mirror_issue_milestone(repository, pr, number, github_client)
        if milestone is None:
            return StepResult.skip("issue_milestone", f"issue #{number} has no milestone")
        return StepResult(name="issue_milestone", detail=f"milestone #{milestone}")

    async def labels() -> StepResult:
        if not issue.labels:
            return StepResult.skip("labels", "Linear issue has no labels")
        created = await ensure_and_apply_labels_to_pr(repository, pr, issue.labels, github_client)
        return StepResult(
            name="labels",
            detail=f"applied {len(issue.labels)}, created {len(created)}",
        )

    async def assignee() -> StepResult:
        login = await try_assign_pr_assignee(repository, pr, issue, github_client)
        if login is None:
            return StepResult.skip("assignee", "no matching GitHub assignee")
        return StepResult(name="assignee", detail=login)

    async def milestone() -> StepResult:
        if issue.milestone is None:
            return StepResult.skip("milestone", "Linear issue has no milestone")
        number = await apply_linear_milestone_to_pr(
            repository, pr, issue.milestone, github_client
        )
        return StepResult(name="milestone", detail=f"milestone #{number}")

    await _run_step(report, "issue_link", issue_link)
    await _run_step(report, "issue_milestone", issue_milestone)
    await _run_step(report, "labels", labels)
    await _run_step(report, "assignee", assignee)
    await _run_step(report, "milestone", milestone)

    if report.failures:
        logger.warning(
            "PR #%s metadata applied with failures: %s",
            pr.get("number"),
            ", ".join(s.name for s in report.failures),
        )
    else:
        logger.info("PR #%s metadata applied", pr.get("number"))
    return report


def _is_same_repo(ref: GitHubIssueRef, repository: RepositoryConfig) -> bool:
    return ref.owner == repository.owner and ref.repo == repository.name


def append_to_body(body: str | None, line: str) -> str:
    return f"{body or ''}\n\n{line}"


async def link_issue_to_pr(
    repository: RepositoryConfig,
    pr: dict[str, Any],
    issue_number: int,
    github_client: GitHubClient,
) -> bool:
    """Append ``Closes #n`` to the PR body if issue ``n`` exists in the repository.

    Returns:
        True if the PR body was updated
    """
    issues = await github_client.get_repository_issues(repository.owner, repository.name)
    if not any(i.get("number") == issue_number for i in issues):
        logger.info("GitHub issue #%s not found in %s", issue_number, repository.full_name)
        return False

    await github_client.update_pull_request(
        repository.owner,
        repository.name,
        pr["number"],
        body=append_to_body(pr.get("body"), f"Closes #{issue_number}"),
    )
    logger.info("Linked GitHub issue #%s to PR #%s", issue_number, pr["number"])
    return True


async def link_cross_repo_issue(
    pr: dict[str, Any],
    ref: GitHubIssueRef,
    repository: RepositoryConfig,
    github_client: GitHubClient,
) -> None:
    """Reference an issue in another repository with ``Fixes owner/repo#n``."""
    await github_client.update_pull_request(
        repository.owner,
        repository.name,
        pr["number"],
        body=append_to_body(pr.get("body"), f"Fixes {ref.owner}/{ref.repo}#{ref.number}"),
    )
    logger.info("Linked cross-repo issue %s to PR #%s", ref.id, pr["number"])


async def mirror_issue_milestone(
    repository: RepositoryConfig,
    pr: dict[str, Any],
    issue_number: int,
    github_client: GitHubClient,
) -> int | None:
    """Copy a same-repo issue's milestone number onto the PR."""
    source_issue = await github_client.get_issue(repository.owner, repository.name, issue_number)
    milestone = source_issue.get("milestone")
    if not milestone:
        return None
    await github_client.update_issue(
        repository.owner, repository.name, pr["number"], milestone=milestone["number"]
    )
    logger.info("Applied milestone #%s to PR #%s", milestone["number"], pr["number"])
    return milestone["number"]


async def mirror_cross_repo_milestone(
    pr: dict[str, Any],
    ref: GitHubIssueRef,
    repository: RepositoryConfig,
    github_client: GitHubClient,
    app_client: GitHubAppClient | None,
) -> StepResult:
    """Mirror a cross-repo issue's milestone by title and leave a back-reference comment."""
    if app_client is None:
        return StepResult.skip("issue_milestone", "no GitHub App client for source repository")

    source_client = await app_client.get_client_for_repo(ref.owner, ref.repo)
    if source_client is None:
        return StepResult.skip(
            "issue_milestone", f"GitHub App not installed on {ref.owner}/{ref.repo}"
        )

    async with source_client:
        source_issue = await source_client.get_issue(ref.owner, ref.repo, ref.number)
        title = (source_issue.get("milestone") or {}).get("title")
        applied = None
        if title:
            applied = await apply_linear_milestone_to_pr(
                repository, pr, NamedRef(id="", name=title), github_client
            )

        try:
            await source_client.create_issue_comment(
                ref.owner, ref.repo, ref.number, f"Linked PR: {pr.get('html_url')}"
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to add back-reference comment on %s", ref.id, exc_info=True)

    if applied is None:
        return StepResult.skip("issue_milestone", f"{ref.id} has no milestone")
    return StepResult(name="issue_milestone", detail=f"milestone #{applied}")


async def ensure_and_apply_labels_to_pr(
    repository: RepositoryConfig,
    pr: dict[str, Any],
    labels: list[NamedRef],
    github_client: GitHubClient,
) -> list[str]:
    """Create missing labels in the repository, then apply all of them to the PR.

    Existing labels are matched case-insensitively. A failed creation is
    logged and the label is still included in the apply call.

    Returns:
        Names of the labels that were created
    """
    names = [label.name for label in labels]
    existing = await github_client.get_labels(repository.owner, repository.name)
    existing_names = {label["name"].lower() for label in existing}

    created: list[str] = []
    for label_name in names:
        if label_name.lower() in existing_names:
            continue
        try:
            await github_client.create_label(repository.owner, repository.name, label_name)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Failed to create label %r (may already exist)", label_name, exc_info=True
            )
            continue
        existing_names.add(label_name.lower())
        created.append(label_name)
        logger.info("Created missing GitHub label: %s", label_name)

    await github_client.add_labels(repository.owner, repository.name, pr["number"], names)
    logger.info("Applied %d labels to PR #%s", len(names), pr["number"])
    return created


def match_assignee_login(assignee_name: str, logins: list[str]) -> str | None:
    """Pick a collaborator login for a Linear display name.

    Exact case-insensitive matches win; otherwise the first login that
    contains, or is contained in, the display name.
    """
    wanted = assignee_name.lower()
    for login in logins:
        if login.lower() == wanted:
            return login
    for login in logins:
        candidate = login.lower()
        if candidate in wanted or wanted in candidate:
            return login
    return None


async def try_assign_pr_assignee(
    repository: RepositoryConfig,
    pr: dict[str, Any],
    issue: MatchedLinearIssue,
    github_client: GitHubClient,
) -> str | None:
    """Assign the PR to the collaborator matching the Linear assignee, if any."""
    if issue.assignee is None or not issue.assignee.name:
        logger.info("No Linear assignee to match for %s", issue.identifier)
        return None

    candidates = await github_client.list_assignees(repository.owner, repository.name)
    login = match_assignee_login(issue.assignee.name, [u["login"] for u in candidates])
    if login is None:
        logger.info("No matching GitHub assignee found for %r", issue.assignee.name)
        return None

    await github_client.add_assignees(repository.owner, repository.name, pr["number"], [login])
    logger.info("Assigned PR #%s to %s", pr["number"], login)
    return login


async def apply_linear_milestone_to_pr(
    repository: RepositoryConfig,
    pr: dict[str, Any],
    milestone: NamedRef,
    github_client: GitHubClient,
) -> int:
    """Find or create the GitHub milestone titled like ``milestone`` and set it on the PR.

    Returns:
        The GitHub milestone number applied
    """
    milestones = await github_client.get_milestones(repository.owner, repository.name)
    wanted = milestone.name.lower()
    matching = next((m for m in milestones if m["title"].lower() == wanted), None)

    if matching is None:
        logger.info("Creating GitHub milestone %r", milestone.name)
        matching = await github_client.create_milestone(
            repository.owner, repository.name, milestone.name
        )

    await github_client.update_issue(
        repository.owner, repository.name, pr["number"], milestone=matching["number"]
    )
    logger.info(
        "Applied milestone %r (#%s) to PR #%s", milestone.name, matching["number"], pr["number"]
    )
    return matching["number"]
