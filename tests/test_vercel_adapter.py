from __future__ import annotations

import allure
import httpx
import pytest

from shipyard.deployment.models import (
    CustomDomainConfig,
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentStatus,
    GitSource,
)
from shipyard.deployment.vercel import VERCEL_CNAME_TARGET, VercelAdapter
from shipyard.errors import ErrorKind, InvalidConfigError, ProjectCreationFailedError

from fakes import RouteTable

pytestmark = [
    allure.epic("Deployments"),
    allure.feature("Vercel Adapter"),
]

PROJECT = {"id": "prj_1", "name": "demo"}
DOMAIN = "demo.shipyard.link"


def _adapter(routes: RouteTable, **kwargs) -> VercelAdapter:
    return VercelAdapter("token-xyz", transport=routes.transport(), **kwargs)


def test_files_deploy_creates_project_and_scopes_team() -> None:
    routes = RouteTable(
        {
            ("GET", "/v9/projects/demo"): (404, {"error": {"code": "not_found"}}),
            ("POST", "/v10/projects"): (200, PROJECT),
            ("POST", "/v13/deployments"): (
                200,
                {"id": "dpl_1", "url": "demo-abc.vercel.app", "readyState": "QUEUED"},
            ),
        },
    )
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        files={"index.html": "<p>hi</p>"},
    )

    result = _adapter(routes, team_id="team_7").deploy(request)

    assert result.success
    assert result.deployment_id == "dpl_1"
    assert result.url == "https://demo-abc.vercel.app"
    assert result.status == DeploymentStatus.PENDING
    assert result.project_id == "prj_1"
    assert all(request.url.params["teamId"] == "team_7" for request in routes.requests)
    body = routes.json_body("POST", "/v13/deployments")
    assert body["files"] == [{"file": "index.html", "data": "<p>hi</p>"}]
    assert body["project"] == "prj_1"


def test_git_deploy_links_repository() -> None:
    routes = RouteTable(
        {
            ("GET", "/v9/projects/demo"): (200, PROJECT),
            ("PATCH", "/v9/projects/prj_1"): (200, PROJECT),
            ("POST", "/v13/deployments"): (
                200,
                {"uid": "dpl_2", "url": "demo-git.vercel.app", "state": "BUILDING"},
            ),
        },
    )
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        git=GitSource(
            url="https://gitlab.com/acme/web.git",
            branch="main",
            build_command="pnpm build",
            output_directory="out",
        ),
    )

    result = _adapter(routes).deploy(request)

    assert result.deployment_id == "dpl_2"
    assert result.status == DeploymentStatus.BUILDING
    assert routes.json_body("PATCH", "/v9/projects/prj_1")["gitRepository"] == {
        "repo": "acme/web",
        "type": "gitlab",
    }
    deployment = routes.json_body("POST", "/v13/deployments")
    assert deployment["gitSource"] == {"type": "gitlab", "repo": "acme/web", "ref": "main"}
    assert deployment["projectSettings"]["buildCommand"] == "pnpm build"
    assert "teamId" not in routes.requests[0].url.params


def test_unknown_git_host_is_rejected_without_http() -> None:
    routes = RouteTable({})
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        git=GitSource(url="https://github.com.evil.example/acme/web"),
    )

    with pytest.raises(InvalidConfigError):
        _adapter(routes).deploy(request)
    assert routes.requests == []


def test_project_without_id_is_project_creation_error() -> None:
    routes = RouteTable({("POST", "/v10/projects"): (200, {"name": "demo"})})
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        files={"index.html": "x"},
    )

    with pytest.raises(ProjectCreationFailedError) as excinfo:
        _adapter(routes).deploy(request)

    assert excinfo.value.operation == "create_project"
    assert excinfo.value.details == {"missing": ["id"]}
    assert ("POST", "/v13/deployments") not in routes.calls()


@pytest.mark.parametrize("name", ["a/b", "demo?teamId=other", "-demo", "demo\n"])
def test_unsafe_project_names_are_rejected_without_http(name: str) -> None:
    routes = RouteTable({})
    request = DeploymentRequest(
        project_name=name,
        platform=DeploymentPlatform.VERCEL,
        files={"index.html": "x"},
    )

    with pytest.raises(InvalidConfigError):
        _adapter(routes).deploy(request)
    assert routes.requests == []


def test_domain_setup_treats_conflict_on_same_project_as_success() -> None:
    routes = RouteTable(
        {
            ("POST", "/v10/projects/prj_1/domains"): (409, {"error": {"code": "domain_taken"}}),
            ("GET", f"/v9/projects/prj_1/domains/{DOMAIN}"): (
                200,
                {
                    "name": DOMAIN,
                    "verified": False,
                    "verification": [
                        {
                            "type": "TXT",
                            "domain": f"_vercel.{DOMAIN}",
                            "value": "vc-domain-verify=abc",
                            "reason": "pending_domain_verification",
                        },
                    ],
                },
            ),
            ("GET", f"/v6/domains/{DOMAIN}/config"): (200, {"configuredBy": "CNAME"}),
        },
    )
    adapter = _adapter(routes)
    config = CustomDomainConfig(subdomain="demo", domain=DOMAIN)

    first = adapter.setup_custom_domain(config, "prj_1")
    second = adapter.setup_custom_domain(config, "prj_1")

    assert first.success and second.success
    assert first == second
    assert [(record.type, record.value) for record in first.dns_records] == [
        ("CNAME", VERCEL_CNAME_TARGET),
        ("TXT", "vc-domain-verify=abc"),
    ]
    assert not first.verified


def test_domain_setup_conflict_with_other_project_degrades() -> None:
    routes = RouteTable(
        {("POST", "/v10/projects/prj_1/domains"): (409, {"error": {"code": "domain_taken"}})},
    )

    result = _adapter(routes).setup_custom_domain(
        CustomDomainConfig(subdomain="demo", domain=DOMAIN),
        "prj_1",
    )

    assert not result.success
    assert result.error_kind == ErrorKind.DOMAIN_ADD_FAILED


def test_deploy_survives_domain_failure() -> None:
    routes = RouteTable(
        {
            ("GET", "/v9/projects/demo"): (200, PROJECT),
            ("POST", "/v13/deployments"): (
                200,
                {"id": "dpl_3", "url": "demo.vercel.app", "readyState": "READY"},
            ),
            ("POST", "/v10/projects/prj_1/domains"): (403, {"error": {"code": "forbidden"}}),
        },
    )
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        files={"index.html": "x"},
        subdomain="demo",
    )

    result = _adapter(routes).deploy(request)

    assert result.success
    assert result.status == DeploymentStatus.READY
    assert result.custom_domain is None
    assert "HTTP 403" in result.metadata["domain_error"]
    assert result.metadata["domain_error_kind"] == "domain_add_failed"


def test_deploy_attaches_domain_when_setup_succeeds() -> None:
    routes = RouteTable(
        {
            ("GET", "/v9/projects/demo"): (200, PROJECT),
            ("POST", "/v13/deployments"): (200, {"id": "dpl_4", "readyState": "BUILDING"}),
            ("POST", "/v10/projects/prj_1/domains"): (200, {"name": DOMAIN, "verified": True}),
        },
    )
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.VERCEL,
        files={"index.html": "x"},
        subdomain="Demo",
    )

    result = _adapter(routes).deploy(request)

    assert result.custom_domain == DOMAIN
    assert result.url is None


def test_verify_is_read_only() -> None:
    routes = RouteTable(
        {("GET", f"/v9/projects/prj_1/domains/{DOMAIN}"): (200, {"verified": True})},
    )

    result = _adapter(routes).verify_custom_domain(DOMAIN, "prj_1")

    assert result.success and result.verified
    assert {request.method for request in routes.requests} == {"GET"}


@pytest.mark.parametrize(
    ("ready_state", "expected"),
    [
        ("INITIALIZING", DeploymentStatus.PENDING),
        ("BUILDING", DeploymentStatus.BUILDING),
        ("READY", DeploymentStatus.READY),
        ("ERROR", DeploymentStatus.ERROR),
        ("CANCELED", DeploymentStatus.CANCELLED),
        (None, DeploymentStatus.PENDING),
    ],
)
def test_status_mapping(ready_state: str | None, expected: DeploymentStatus) -> None:
    routes = RouteTable(
        {("GET", "/v13/deployments/dpl_1"): (200, {"id": "dpl_1", "readyState": ready_state})},
    )

    assert _adapter(routes).get_deployment_status("dpl_1").status == expected


def test_delete_calls_deployment_endpoint() -> None:
    routes = RouteTable({("DELETE", "/v13/deployments/dpl_1"): (200, {"state": "DELETED"})})

    assert _adapter(routes).delete_deployment("dpl_1").success


def test_list_clamps_small_limit_and_parses_epoch_ms() -> None:
    def _list(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "deployments": [
                    {
                        "uid": "dpl_a",
                        "name": "demo",
                        "url": "demo-a.vercel.app",
                        "state": "READY",
                        "created": 1_790_000_000_000,
                    },
                    {"uid": "dpl_b", "name": "demo", "url": "demo-b.vercel.app"},
                ],
            },
        )

    routes = RouteTable({("GET", "/v6/deployments"): _list})

    listing = _adapter(routes).list_deployments(limit=0)

    assert routes.requests[0].url.params["limit"] == "1"
    assert [item.deployment_id for item in listing.deployments] == ["dpl_a"]
    assert listing.deployments[0].url == "https://demo-a.vercel.app"
    assert listing.deployments[0].created_at.tzinfo is not None
