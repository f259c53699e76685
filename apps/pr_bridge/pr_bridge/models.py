"""Records persisted by the store and transient pipeline results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

Confidence = Literal["high", "medium", "low", "none"]
PrStatus = Literal["open", "closed", "merged"]

PR_STATUSES: tuple[str, ...] = ("open", "closed", "merged")


def utc_now() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(tz=UTC).isoformat()


@dataclass
class RepositoryConfig:
    """A GitHub repository linked to the bridge."""

    id: str
    name: str
    owner: str
    github_id: int
    webhook_secret: str
    created_by_user_id: str = ""
    github_app_installation_id: int | None = None
    access_token: str | None = None
    """Legacy OAuth token. Encrypted at rest, plaintext on records returned by the store."""
    linear_team_id: str | None = None
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def has_github_app(self) -> bool:
        return self.github_app_installation_id is not None

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize without secrets for API responses."""
        data = asdict(self)
        data.pop("webhook_secret")
        data.pop("access_token")
        data["has_github_app"] = self.has_github_app
        return data


@dataclass
class WebhookEvent:
    """Append-only audit record of one webhook delivery."""

    id: str
    repository_id: str
    event_type: str
    payload: dict[str, Any]
    processed: bool = False
    processing_error: str | None = None
    outcome: dict[str, Any] | None = None
    processed_at: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str | None = None


@dataclass
class GitHubLinearMapping:
    """Known relationship between a Linear issue and a GitHub issue number."""

    id: str
    linear_issue_id: str
    github_issue_id: int
    github_repository_id: str
    created_at: str = field(default_factory=utc_now)


@dataclass
class GitHubPrMapping:
    """A pull request opened for a Linear issue."""

    id: str
    linear_issue_id: str
    github_pr_id: int
    github_repository_id: str
    github_pr_number: int
    github_pr_url: str
    status: PrStatus = "open"
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class NamedRef:
    id: str
    name: str


@dataclass
class GitHubIssueRef:
    """A GitHub issue referenced from Linear, e.g. ``octo/app#12``."""

    id: str
    owner: str
    repo: str
    number: int


@dataclass
class MatchedLinearIssue:
    id: str
    identifier: str
    title: str
    url: str
    state: str
    team: NamedRef
    description: str | None = None
    assignee: NamedRef | None = None
    labels: list[NamedRef] = field(default_factory=list)
    priority: int = 0
    estimate: float | None = None
    project: NamedRef | None = None
    milestone: NamedRef | None = None
    github_issue: GitHubIssueRef | None = None

    def summary(self) -> dict[str, Any]:
        """The fields handed to the PR description generator."""
        return {
            "id": self.id,
            "identifier": self.identifier,
            "title": self.title,
            "description": self.description,
            "url": self.url,
        }


@dataclass
class BranchMatchResult:
    branch_name: str
    linear_issue_id: str | None
    matched_issue: MatchedLinearIssue | None
    confidence: Confidence


@dataclass
class StepResult:
    """Outcome of one best-effort metadata step."""

    name: str
    ok: bool = True
    skipped: bool = False
    detail: str | None = None
    error: str | None = None

    @classmethod
    def skip(cls, name: str, detail: str) -> StepResult:
        return cls(name=name, ok=True, skipped=True, detail=detail)

    @classmethod
    def fail(cls, name: str, exc: BaseException) -> StepResult:
        return cls(name=name, ok=False, error=f"{type(exc).__name__}: {exc}")


@dataclass
class MetadataReport:
    steps: list[StepResult] = field(default_factory=list)

    def add(self, step: StepResult) -> StepResult:
        self.steps.append(step)
        return step

    def get(self, name: str) -> StepResult | None:
        return next((s for s in self.steps if s.name == name), None)

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]


@dataclass
class PipelineReport:
    """Structured outcome of processing one new branch."""

    branch_name: str
    linear_issue_id: str | None = None
    confidence: Confidence = "none"
    pr_number: int | None = None
    pr_url: str | None = None
    skipped_reason: str | None = None
    error: str | None = None
    metadata: MetadataReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
