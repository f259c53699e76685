"""FastAPI routes: GitHub webhook receiver and admin endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .description import build_description_generator
from .models import PipelineReport, RepositoryConfig
from .orchestrator import BridgeContext, process_new_branch
from .protocol import (
    DescriptionGenerator,
    DuplicateRepositoryError,
    RepositoryNotFoundError,
    RepositoryStore,
)
from .signature import verify_github_signature
from .store import build_store
from .utils.github import GitHubAPIError, GitHubClient
from .utils.github_app import GitHubAppClient, GitHubAppConfigError
from .utils.linear import LinearClient, build_linear_client

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/github/webhooks"
BRANCH_REF_PREFIX = "refs/heads/"

GitHubClientFactory = Callable[[str], GitHubClient]


class RepositoryCreate(BaseModel):
    name: str
    owner: str
    github_id: int
    created_by_user_id: str
    access_token: str | None = None
    linear_team_id: str | None = None


class RepositoryUpdate(BaseModel):
    name: str | None = None
    owner: str | None = None
    access_token: str | None = None
    linear_team_id: str | None = None
    webhook_secret: str | None = None


class CreateWebhookRequest(BaseModel):
    owner: str = ""
    repo: str = ""
    url: str = ""
    secret: str = ""


class GenerateRequest(BaseModel):
    issue: dict[str, Any]
    custom_instructions: str = ""


def get_store(request: Request) -> RepositoryStore:
    return request.app.state.store


def get_app_client(request: Request) -> GitHubAppClient:
    app_client = request.app.state.app_client
    if app_client is None:
        raise HTTPException(status_code=500, detail="GitHub App is not configured")
    return app_client


def get_context(request: Request) -> BridgeContext:
    state = request.app.state
    return BridgeContext(
        store=state.store,
        linear_client=state.linear_client,
        app_client=state.app_client,
        description_generator=state.description_generator,
    )


router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get(WEBHOOK_PATH)
async def github_webhook_verify() -> dict[str, str]:
    """Verify endpoint for GitHub webhook setup."""
    return {"status": "Webhook endpoint is active"}


@router.post(WEBHOOK_PATH)
async def github_webhook(  # noqa: PLR0911
    request: Request,
    context: BridgeContext = Depends(get_context),  # noqa: B008
) -> dict[str, bool]:
    """Handle GitHub webhook deliveries.

    Only ``push`` events that create a branch with a single commit start the
    Linear → PR pipeline; every other event is recorded and acknowledged.
    """
    body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256")
    event_type = request.headers.get("X-GitHub-Event")
    delivery_id = request.headers.get("X-GitHub-Delivery")
    log_extra = {"delivery_id": delivery_id, "event_type": event_type}

    if not signature or not event_type:
        raise HTTPException(status_code=400, detail="Missing required headers")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Failed to parse webhook JSON", extra=log_extra)
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from None

    repo_data = payload.get("repository") if isinstance(payload, dict) else None
    if (
        not isinstance(repo_data, dict)
        or not repo_data.get("id")
        or not (repo_data.get("owner") or {}).get("login")
        or not repo_data.get("name")
    ):
        raise HTTPException(status_code=400, detail="Invalid repository data in payload")

    owner = repo_data["owner"]["login"]
    name = repo_data["name"]
    log_extra["repository"] = f"{owner}/{name}"

    try:
        repository = await context.store.get_repository_by_github_id(repo_data["id"], owner)
        if repository is None:
            raise HTTPException(status_code=404, detail="Repository not found")

        if not verify_github_signature(body, signature, repository.webhook_secret):
            logger.warning("Invalid webhook signature", extra=log_extra)
            raise HTTPException(status_code=401, detail="Invalid signature")

        if context.app_client is None:
            msg = "GitHub App is not configured"
            raise RuntimeError(msg)

        installation = await context.app_client.get_repository_installation(owner, name)
        if not installation:
            logger.error("No GitHub App installation found for %s/%s", owner, name)
            raise HTTPException(status_code=403, detail="GitHub App not installed on repository")

        logger.info("Using GitHub App installation %s", installation["id"], extra=log_extra)
        token = await context.app_client.get_installation_token(installation["id"])
        async with request.app.state.github_client_factory(token) as github_client:
            event = await context.store.create_webhook_event(
                repository_id=repository.id, event_type=event_type, payload=payload
            )
            report = await dispatch_event(event_type, payload, repository, github_client, context)

        await context.store.mark_webhook_event_processed(
            event.id,
            processing_error=report.error if report else None,
            outcome=report.to_dict() if report else None,
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception("Webhook processing error", extra=log_extra)
        raise HTTPException(status_code=500, detail="Internal server error") from None

    return {"success": True}


async def dispatch_event(
    event_type: str,
    payload: dict[str, Any],
    repository: RepositoryConfig,
    github_client: GitHubClient,
    context: BridgeContext,
) -> PipelineReport | None:
    if event_type == "push":
        return await handle_push_event(payload, repository, github_client, context)
    if event_type == "ping":
        logger.info("Webhook ping received for repository %s", repository.full_name)
    else:
        logger.info("Unhandled webhook event type: %s", event_type)
    return None


def is_new_branch_push(payload: dict[str, Any]) -> bool:
    """A push that created a branch and carries exactly one commit."""
    ref = payload.get("ref") or ""
    commits = payload.get("commits") or []
    return ref.startswith(BRANCH_REF_PREFIX) and bool(payload.get("created")) and len(commits) == 1


async def handle_push_event(
    payload: dict[str, Any],
    repository: RepositoryConfig,
    github_client: GitHubClient,
    context: BridgeContext,
) -> PipelineReport | None:
    ref = payload.get("ref") or ""
    if not ref.startswith(BRANCH_REF_PREFIX):
        logger.debug("Ignoring push to non-branch ref %s", ref)
        return None

    branch_name = ref.removeprefix(BRANCH_REF_PREFIX)
    if not is_new_branch_push(payload):
        logger.info("Push to existing branch: %s in %s", branch_name, repository.full_name)
        return None

    logger.info("New branch created: %s in %s", branch_name, repository.full_name)
    return await process_new_branch(branch_name, repository, payload, github_client, context)


@router.get("/api/github-app/installations")
async def list_installations(
    app_client: GitHubAppClient = Depends(get_app_client),  # noqa: B008
) -> dict[str, Any]:
    return {"installations": await app_client.get_installations()}


@router.get("/api/github-app/install-url")
async def get_install_url(
    app_client: GitHubAppClient = Depends(get_app_client),  # noqa: B008
) -> dict[str, str]:
    return {"url": app_client.get_installation_url()}


@router.get("/api/github-app/repositories")
async def list_app_repositories(
    installation_id: int | None = None,
    app_client: GitHubAppClient = Depends(get_app_client),  # noqa: B008
) -> dict[str, Any]:
    """Repositories accessible to one installation, or to all of them."""
    if installation_id is not None:
        installation_ids = [installation_id]
    else:
        installation_ids = [i["id"] for i in await app_client.get_installations()]

    repositories: list[dict[str, Any]] = []
    for iid in installation_ids:
        for repo in await app_client.list_installation_repositories(iid):
            repositories.append(
                {
                    "id": repo.get("id"),
                    "name": repo.get("name"),
                    "full_name": repo.get("full_name"),
                    "owner": (repo.get("owner") or {}).get("login"),
                    "private": repo.get("private"),
                    "html_url": repo.get("html_url"),
                    "installation_id": iid,
                }
            )
    return {"repositories": repositories}


@router.post("/api/github-app/create-webhook")
async def create_repository_webhook(
    body: CreateWebhookRequest,
    request: Request,
    app_client: GitHubAppClient = Depends(get_app_client),  # noqa: B008
) -> dict[str, bool]:
    if not body.owner or not body.repo or not body.url or not body.secret:
        raise HTTPException(status_code=400, detail="Missing required fields")

    installation = await app_client.get_repository_installation(body.owner, body.repo)
    if not installation:
        raise HTTPException(
            status_code=403, detail="GitHub App is not installed on this repository"
        )

    token = await app_client.get_installation_token(installation["id"])
    async with request.app.state.github_client_factory(token) as github_client:
        try:
            await github_client.create_webhook(body.owner, body.repo, body.url, body.secret)
        except GitHubAPIError as e:
            logger.exception("Failed to create webhook on %s/%s", body.owner, body.repo)
            raise HTTPException(status_code=500, detail=e.message) from e
    return {"success": True}


@router.post("/api/repositories", status_code=201)
async def create_repository(
    body: RepositoryCreate,
    request: Request,
    store: RepositoryStore = Depends(get_store),  # noqa: B008
) -> dict[str, Any]:
    """Link a repository and return its generated webhook secret."""
    installation_id = None
    app_client: GitHubAppClient | None = request.app.state.app_client
    if app_client is not None:
        try:
            installation = await app_client.get_repository_installation(body.owner, body.name)
            installation_id = installation["id"] if installation else None
        except Exception:  # noqa: BLE001
            logger.warning(
                "Could not resolve installation for %s/%s", body.owner, body.name, exc_info=True
            )

    try:
        repository = await store.create_repository(
            name=body.name,
            owner=body.owner,
            github_id=body.github_id,
            created_by_user_id=body.created_by_user_id,
            access_token=body.access_token,
            linear_team_id=body.linear_team_id,
            github_app_installation_id=installation_id,
        )
    except DuplicateRepositoryError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return {"id": repository.id, "webhook_secret": repository.webhook_secret}


@router.get("/api/repositories")
async def list_repositories(
    created_by_user_id: str | None = None,
    store: RepositoryStore = Depends(get_store),  # noqa: B008
) -> dict[str, Any]:
    repositories = await store.list_repositories(created_by_user_id)
    return {"repositories": [r.to_public_dict() for r in repositories]}


@router.get("/api/repositories/{repository_id}")
async def get_repository(
    repository_id: str,
    store: RepositoryStore = Depends(get_store),  # noqa: B008
) -> dict[str, Any]:
    repository = await store.get_repository(repository_id)
    if repository is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository.to_public_dict()


@router.patch("/api/repositories/{repository_id}")
async def update_repository(
    repository_id: str,
    body: RepositoryUpdate,
    store: RepositoryStore = Depends(get_store),  # noqa: B008
) -> dict[str, Any]:
    try:
        repository = await store.update_repository(
            repository_id, **body.model_dump(exclude_none=True)
        )
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail="Repository not found") from e
    return repository.to_public_dict()


@router.delete("/api/repositories/{repository_id}")
async def delete_repository(
    repository_id: str,
    store: RepositoryStore = Depends(get_store),  # noqa: B008
) -> dict[str, bool]:
    try:
        await store.delete_repository(repository_id)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail="Repository not found") from e
    return {"success": True}


@router.post("/api/generate")
async def generate_description(body: GenerateRequest, request: Request) -> dict[str, str]:
    """Generate a PR description for an issue summary."""
    generator: DescriptionGenerator | None = request.app.state.description_generator
    if generator is None:
        raise HTTPException(status_code=503, detail="PR description generation is not configured")
    try:
        text = await generator.generate(body.issue, body.custom_instructions)
    except Exception:
        logger.exception("Failed to generate PR description")
        raise HTTPException(status_code=500, detail="Failed to generate PR description") from None
    return {"text": text}


async def _error_response(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def _default_app_client() -> GitHubAppClient | None:
    try:
        return GitHubAppClient()
    except GitHubAppConfigError as e:
        logger.warning("GitHub App disabled: %s", e)
        return None


def create_app(
    *,
    store: RepositoryStore | None = None,
    app_client: GitHubAppClient | None = None,
    linear_client: LinearClient | None = None,
    description_generator: DescriptionGenerator | None = None,
    github_client_factory: GitHubClientFactory = GitHubClient,
    use_env_defaults: bool = True,
) -> FastAPI:
    """Build the FastAPI app with explicitly constructed collaborators.

    Args:
        store: Persistence backend; defaults to ``STORE_BACKEND``
        app_client: GitHub App client; built from the environment when omitted
        linear_client: Linear client; built from the environment when omitted
        description_generator: PR description generator
        github_client_factory: Builds a REST client from an installation token
        use_env_defaults: Build omitted collaborators from the environment
    """
    app = FastAPI(title="pr-bridge")
    app.state.store = store if store is not None else build_store()
    app.state.app_client = app_client
    app.state.linear_client = linear_client
    app.state.description_generator = description_generator
    app.state.github_client_factory = github_client_factory

    if use_env_defaults:
        if app_client is None:
            app.state.app_client = _default_app_client()
        if linear_client is None:
            app.state.linear_client = build_linear_client()
        if description_generator is None:
            app.state.description_generator = build_description_generator()

    app.add_exception_handler(HTTPException, _error_response)
    app.include_router(router)
    return app
