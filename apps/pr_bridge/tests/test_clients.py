"""GitHub, GitHub App and Linear HTTP client tests."""

from __future__ import annotations

import base64
import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pytest_httpx import HTTPXMock

from pr_bridge.utils.github import GitHubAPIError, GitHubClient
from pr_bridge.utils.github_app import (
    GitHubAppClient,
    GitHubAppConfigError,
    normalize_private_key,
)
from pr_bridge.utils.linear import (
    RELATION_SELECTIONS,
    LinearAPIError,
    LinearClient,
    build_linear_client,
)

API = "https://api.github.com"
LINEAR_URL = "https://api.linear.app/graphql"


@pytest.fixture(scope="module")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def private_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture()
async def github_client():
    async with GitHubClient("ghs_token", base_url=API) as client:
        yield client


class TestGitHubClient:
    async def test_create_pull_request_body(
        self, github_client: GitHubClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/repos/octo/app/pulls",
            json={"id": 1, "number": 7, "html_url": "https://github.com/octo/app/pull/7"},
            status_code=201,
        )

        pr = await github_client.create_pull_request(
            "octo", "app", title="LET-1 | Fix", head="LET-1-fix", base="main", body="b", draft=True
        )

        assert pr["number"] == 7
        request = httpx_mock.get_requests()[0]
        assert request.headers["Authorization"] == "Bearer ghs_token"
        assert request.headers["Accept"] == "application/vnd.github+json"
        assert json.loads(request.content) == {
            "title": "LET-1 | Fix",
            "head": "LET-1-fix",
            "base": "main",
            "body": "b",
            "draft": True,
        }

    async def test_error_raises(self, github_client: GitHubClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/repos/octo/app/labels",
            status_code=422,
            json={"message": "Validation Failed", "errors": [{"code": "already_exists"}]},
        )

        with pytest.raises(GitHubAPIError) as exc_info:
            await github_client.create_label("octo", "app", "bug")

        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "Validation Failed"
        assert exc_info.value.errors == [{"code": "already_exists"}]

    async def test_no_content(self, github_client: GitHubClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="PATCH", url=f"{API}/repos/octo/app/issues/7", status_code=204
        )
        assert await github_client.update_issue("octo", "app", 7, milestone=3) is None
        assert json.loads(httpx_mock.get_requests()[0].content) == {"milestone": 3}

    async def test_issue_pagination(
        self, github_client: GitHubClient, httpx_mock: HTTPXMock
    ) -> None:
        base = f"{API}/repos/octo/app/issues?per_page=100&state=all"
        httpx_mock.add_response(
            url=f"{base}&page=1", json=[{"number": n} for n in range(1, 101)]
        )
        httpx_mock.add_response(url=f"{base}&page=2", json=[{"number": 101}])

        issues = await github_client.get_repository_issues("octo", "app")

        assert len(issues) == 101
        assert len(httpx_mock.get_requests()) == 2


class TestNormalizePrivateKey:
    def test_literal_newlines(self, private_key_pem: str) -> None:
        escaped = private_key_pem.replace("\n", "\\n")
        assert normalize_private_key(escaped).strip() == private_key_pem.strip()

    def test_base64(self, private_key_pem: str) -> None:
        encoded = base64.b64encode(private_key_pem.encode()).decode()
        assert normalize_private_key(encoded) == private_key_pem.strip()

    def test_empty(self) -> None:
        assert normalize_private_key("") == ""


class TestGitHubAppClient:
    @pytest.fixture()
    def app_client(self, private_key_pem: str) -> GitHubAppClient:
        return GitHubAppClient("12345", private_key_pem, app_slug="pr-bridge", base_url=API)

    def test_requires_configuration(self, private_key_pem: str) -> None:
        with pytest.raises(GitHubAppConfigError, match="GITHUB_APP_ID"):
            GitHubAppClient("", private_key_pem)
        with pytest.raises(GitHubAppConfigError, match="GITHUB_APP_PRIVATE_KEY"):
            GitHubAppClient("12345", "")

    def test_app_jwt(self, app_client: GitHubAppClient, private_key: rsa.RSAPrivateKey) -> None:
        token = app_client.create_app_jwt()
        claims = jwt.decode(token, private_key.public_key(), algorithms=["RS256"])
        assert claims["iss"] == "12345"
        assert claims["exp"] - claims["iat"] == 600

    async def test_installation_token(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/app/installations/42/access_tokens",
            json={"token": "ghs_abc"},
            status_code=201,
        )
        assert await app_client.get_installation_token(42) == "ghs_abc"
        auth = httpx_mock.get_requests()[0].headers["Authorization"]
        assert auth.startswith("Bearer ey")

    async def test_repository_installation_all(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{API}/app/installations?per_page=100",
            json=[
                {"id": 1, "account": {"login": "other-org"}, "repository_selection": "all"},
                {"id": 2, "account": {"login": "Octo"}, "repository_selection": "all"},
            ],
        )
        installation = await app_client.get_repository_installation("octo", "app")
        assert installation is not None
        assert installation["id"] == 2

    async def test_repository_installation_all_on_other_account(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{API}/app/installations?per_page=100",
            json=[{"id": 5, "account": {"login": "other-org"}, "repository_selection": "all"}],
        )
        assert await app_client.get_repository_installation("octo", "app") is None

    async def test_repository_installation_selected(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{API}/app/installations?per_page=100",
            json=[
                {"id": 1, "repository_selection": "selected"},
                {"id": 2, "repository_selection": "selected"},
            ],
        )
        for installation_id, full_name in ((1, "acme/lib"), (2, "octo/app")):
            httpx_mock.add_response(
                method="POST",
                url=f"{API}/app/installations/{installation_id}/access_tokens",
                json={"token": f"t{installation_id}"},
            )
            httpx_mock.add_response(
                url=f"{API}/installation/repositories?per_page=100",
                match_headers={"Authorization": f"Bearer t{installation_id}"},
                json={"repositories": [{"full_name": full_name}]},
            )

        installation = await app_client.get_repository_installation("octo", "app")
        assert installation is not None
        assert installation["id"] == 2

    async def test_repository_installation_missing(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{API}/app/installations?per_page=100",
            json=[{"id": 1, "repository_selection": "selected"}],
        )
        httpx_mock.add_response(
            method="POST", url=f"{API}/app/installations/1/access_tokens", status_code=500
        )
        assert await app_client.get_repository_installation("octo", "app") is None

    async def test_client_for_repo_not_installed(
        self, app_client: GitHubAppClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{API}/repos/acme/lib/installation",
            status_code=404,
            json={"message": "Not Found"},
        )
        assert await app_client.get_client_for_repo("acme", "lib") is None

    def test_installation_url(self, app_client: GitHubAppClient) -> None:
        assert (
            app_client.get_installation_url()
            == "https://github.com/settings/apps/pr-bridge/installations"
        )


class TestLinearClient:
    def test_authorization_header(self) -> None:
        assert LinearClient(api_key="lin_api_x").authorization == "lin_api_x"
        assert LinearClient(access_token="tok").authorization == "Bearer tok"
        with pytest.raises(ValueError, match="required"):
            LinearClient()

    def test_build_linear_client(self) -> None:
        assert build_linear_client("", "") is None
        client = build_linear_client("", "oauth")
        assert client is not None
        assert client.authorization == "Bearer oauth"

    async def test_find_issue_filter(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=LINEAR_URL,
            json={"data": {"issues": {"nodes": [{"id": "lin-1", "identifier": "LET-1"}]}}},
        )
        client = LinearClient(api_key="lin_api_x", url=LINEAR_URL)

        issue = await client.find_issue("LET", 1, team_id="team-1")

        assert issue == {"id": "lin-1", "identifier": "LET-1"}
        sent = json.loads(httpx_mock.get_requests()[0].content)
        assert sent["variables"]["filter"] == {
            "and": [
                {"number": {"eq": 1}},
                {"team": {"key": {"eq": "LET"}}},
                {"team": {"id": {"eq": "team-1"}}},
            ]
        }

    async def test_find_issue_none(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=LINEAR_URL, json={"data": {"issues": {"nodes": []}}})
        client = LinearClient(api_key="lin_api_x", url=LINEAR_URL)
        assert await client.find_issue("LET", 404) is None

    async def test_graphql_errors(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=LINEAR_URL, json={"errors": [{"message": "bad filter"}]})
        client = LinearClient(api_key="lin_api_x", url=LINEAR_URL)
        with pytest.raises(LinearAPIError, match="bad filter"):
            await client.graphql("query { viewer { id } }")

    async def test_resolve_relations_isolates_failures(self, httpx_mock: HTTPXMock) -> None:
        values = {
            "state": {"id": "s", "name": "Todo", "type": "unstarted"},
            "team": {"id": "t", "name": "Lettuce", "key": "LET"},
            "project": None,
            "projectMilestone": None,
            "labels": {"nodes": [{"id": "l", "name": "bug"}]},
            "attachments": {"nodes": []},
        }

        def respond(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["query"]
            relation = next(r for r, sel in RELATION_SELECTIONS.items() if sel in query)
            if relation == "assignee":
                return httpx.Response(500)
            return httpx.Response(200, json={"data": {"issue": {relation: values[relation]}}})

        httpx_mock.add_callback(respond, url=LINEAR_URL, is_reusable=True)
        client = LinearClient(api_key="lin_api_x", url=LINEAR_URL)

        relations = await client.resolve_issue_relations("lin-1")

        assert relations["assignee"] is None
        assert relations["state"]["name"] == "Todo"
        assert relations["labels"] == [{"id": "l", "name": "bug"}]
        assert relations["attachments"] == []
        assert set(relations) == set(RELATION_SELECTIONS)
