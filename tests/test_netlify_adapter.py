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
from shipyard.deployment.netlify import NetlifyAdapter
from shipyard.errors import (
    DeploymentFailedError,
    ErrorKind,
    InvalidConfigError,
    ProjectCreationFailedError,
    StatusFetchFailedError,
)

from fakes import RouteTable

pytestmark = [
    allure.epic("Deployments"),
    allure.feature("Netlify Adapter"),
]

API = "/api/v1"
SITE = {
    "id": "site-1",
    "name": "demo",
    "ssl_url": "https://demo.netlify.app",
    "admin_url": "https://app.netlify.com/sites/demo",
    "default_domain": "demo.netlify.app",
}


def _adapter(routes: RouteTable, **kwargs) -> NetlifyAdapter:
    return NetlifyAdapter("token-abc", transport=routes.transport(), **kwargs)


def _files_request(**kwargs) -> DeploymentRequest:
    return DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.NETLIFY,
        files={"/index.html": "<h1>hi</h1>"},
        **kwargs,
    )


def test_empty_token_is_invalid_config() -> None:
    with pytest.raises(InvalidConfigError):
        NetlifyAdapter("")


def test_files_deploy_creates_missing_site() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/demo.netlify.app"): (404, {"message": "Not Found"}),
            ("POST", f"{API}/sites"): (201, SITE),
            ("POST", f"{API}/sites/site-1/deploys"): (
                200,
                {
                    "id": "dep-1",
                    "state": "uploaded",
                    "deploy_ssl_url": "https://dep-1--demo.netlify.app",
                },
            ),
        },
    )

    result = _adapter(routes).deploy(_files_request())

    assert result.success
    assert result.platform == DeploymentPlatform.NETLIFY
    assert result.status == DeploymentStatus.PENDING
    assert result.deployment_id == "dep-1"
    assert result.url == "https://dep-1--demo.netlify.app"
    assert result.project_id == "site-1"
    assert routes.json_body("POST", f"{API}/sites/site-1/deploys") == {
        "files": {"index.html": "<h1>hi</h1>"},
        "async": False,
    }
    assert routes.requests[0].headers["Authorization"] == "Bearer token-abc"


def test_files_deploy_reuses_existing_site_in_team() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/demo.netlify.app"): (200, SITE),
            ("POST", f"{API}/sites/site-1/deploys"): (200, {"id": "dep-2", "state": "ready"}),
        },
    )

    result = _adapter(routes, team_id="team-9").deploy(_files_request())

    assert result.status == DeploymentStatus.READY
    assert ("POST", f"{API}/team-9/sites") not in routes.calls()
    assert len(routes.requests) == 2


@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"files": None, "git": None},
        {"files": {"a": "b"}, "git": GitSource(url="https://github.com/o/r")},
        {"files": None, "git": GitSource(url="not a url")},
        {"files": {"a": "b"}, "git": None, "project_name": "  "},
        {"files": {"a": "b"}, "git": None, "project_name": "demo/../other"},
        {"files": {"a": "b"}, "git": None, "project_name": "demo?x=1"},
        {"files": {"a": "b"}, "git": None, "project_name": "demo#frag"},
    ],
)
def test_invalid_requests_fail_before_any_http_call(request_kwargs) -> None:
    routes = RouteTable({})
    payload = {"project_name": "demo", "platform": DeploymentPlatform.NETLIFY}
    payload.update(request_kwargs)

    with pytest.raises(InvalidConfigError) as excinfo:
        _adapter(routes).deploy(DeploymentRequest(**payload))

    assert routes.requests == []
    assert excinfo.value.kind == ErrorKind.INVALID_CONFIG
    assert excinfo.value.platform == "netlify"


def test_git_deploy_links_repo_and_triggers_build() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/demo.netlify.app"): (200, SITE),
            ("PATCH", f"{API}/sites/site-1"): (200, SITE),
            ("POST", f"{API}/sites/site-1/builds"): (
                200,
                {"id": "build-1", "deploy_id": "dep-9", "done": False},
            ),
        },
    )
    request = DeploymentRequest(
        project_name="demo",
        platform=DeploymentPlatform.NETLIFY,
        git=GitSource(url="git@github.com:acme/site.git", branch="release"),
        environment={"NODE_ENV": "production"},
    )

    result = _adapter(routes).deploy(request)

    assert result.deployment_id == "dep-9"
    assert result.status == DeploymentStatus.BUILDING
    assert result.metadata["git_repo"] == "acme/site"
    link = routes.json_body("PATCH", f"{API}/sites/site-1")
    assert link["repo"] == {
        "provider": "github",
        "repo": "acme/site",
        "branch": "release",
        "cmd": "npm run build",
        "dir": "dist",
    }
    assert link["build_settings"]["env"] == {"NODE_ENV": "production"}


def test_provider_error_is_wrapped_with_status_and_body() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/demo.netlify.app"): (200, SITE),
            ("POST", f"{API}/sites/site-1/deploys"): (500, {"message": "internal"}),
        },
    )

    with pytest.raises(DeploymentFailedError) as excinfo:
        _adapter(routes).deploy(_files_request())

    error = excinfo.value
    assert error.status_code == 500
    assert error.platform == "netlify"
    assert error.operation == "deploy_files"
    assert "internal" in (error.provider_error or "")
    assert str(error).startswith("[netlify]")


def test_timeouts_are_wrapped_into_operation_error() -> None:
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    routes = RouteTable({("GET", f"{API}/deploys/dep-1"): _timeout})

    with pytest.raises(StatusFetchFailedError) as excinfo:
        _adapter(routes).get_deployment_status("dep-1")

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.TimeoutException)


def test_site_lookup_without_id_is_project_creation_error() -> None:
    routes = RouteTable({("GET", f"{API}/sites/demo.netlify.app"): (200, {"name": "demo"})})

    with pytest.raises(ProjectCreationFailedError) as excinfo:
        _adapter(routes).deploy(_files_request())

    assert excinfo.value.platform == "netlify"
    assert excinfo.value.operation == "get_site"
    assert excinfo.value.details == {"missing": ["id"]}
    assert "demo" in (excinfo.value.provider_error or "")


def test_non_object_deploy_body_is_deployment_error() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/demo.netlify.app"): (200, SITE),
            ("POST", f"{API}/sites/site-1/deploys"): (200, ["unexpected"]),
        },
    )

    with pytest.raises(DeploymentFailedError) as excinfo:
        _adapter(routes).deploy(_files_request())

    assert excinfo.value.operation == "deploy_files"
    assert "list" in excinfo.value.message


def test_non_list_site_listing_degrades() -> None:
    routes = RouteTable({("GET", f"{API}/sites"): (200, {"sites": []})})

    listing = _adapter(routes).list_deployments()

    assert not listing.success
    assert listing.error_kind == ErrorKind.LIST_FAILED


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        ("enqueued", DeploymentStatus.PENDING),
        ("processing", DeploymentStatus.BUILDING),
        ("ready", DeploymentStatus.READY),
        ("rejected", DeploymentStatus.ERROR),
        ("something-new", DeploymentStatus.PENDING),
    ],
)
def test_status_mapping(state: str, expected: DeploymentStatus) -> None:
    routes = RouteTable(
        {("GET", f"{API}/deploys/dep-1"): (200, {"id": "dep-1", "state": state})},
    )

    result = _adapter(routes).get_deployment_status("dep-1")

    assert result.status == expected
    assert result.success is (expected == DeploymentStatus.READY)


def test_domain_setup_is_idempotent_when_already_attached() -> None:
    attached = {**SITE, "custom_domain": "demo.shipyard.link"}
    routes = RouteTable({("GET", f"{API}/sites/site-1"): (200, attached)})
    adapter = _adapter(routes)
    config = CustomDomainConfig(subdomain="demo", domain="demo.shipyard.link")

    first = adapter.setup_custom_domain(config, "site-1")
    second = adapter.setup_custom_domain(config, "site-1")

    assert first.success and second.success
    assert first.dns_records == second.dns_records
    assert first.dns_records[0].value == "demo.netlify.app"
    assert ("PATCH", f"{API}/sites/site-1") not in routes.calls()


def test_domain_setup_patches_site_when_domain_differs() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites/site-1"): (200, SITE),
            ("PATCH", f"{API}/sites/site-1"): (200, {**SITE, "custom_domain": "x.shipyard.link"}),
            ("GET", f"{API}/sites/site-1/dns"): (
                200,
                [{"records": [{"type": "TXT", "hostname": "x.shipyard.link", "value": "v"}]}],
            ),
        },
    )

    result = _adapter(routes).setup_custom_domain(
        CustomDomainConfig(subdomain="x", domain="x.shipyard.link"),
        "site-1",
    )

    assert result.success
    assert routes.json_body("PATCH", f"{API}/sites/site-1") == {"custom_domain": "x.shipyard.link"}
    assert [record.type for record in result.dns_records] == ["CNAME", "TXT"]


def test_domain_setup_without_project_degrades() -> None:
    routes = RouteTable({})

    result = _adapter(routes).setup_custom_domain(
        CustomDomainConfig(subdomain="x", domain="x.shipyard.link"),
    )

    assert not result.success
    assert result.error_kind == ErrorKind.INVALID_CONFIG
    assert routes.requests == []


def test_verify_checks_custom_domain_and_aliases() -> None:
    routes = RouteTable(
        {("GET", f"{API}/sites/site-1"): (200, {**SITE, "domain_aliases": ["a.shipyard.link"]})},
    )
    adapter = _adapter(routes)

    assert adapter.verify_custom_domain("a.shipyard.link", "site-1").verified
    assert not adapter.verify_custom_domain("b.shipyard.link", "site-1").verified


def test_delete_removes_owning_site() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/deploys/dep-1"): (200, {"id": "dep-1", "site_id": "site-1"}),
            ("DELETE", f"{API}/sites/site-1"): (204, None),
        },
    )

    result = _adapter(routes).delete_deployment("dep-1")

    assert result.success
    assert routes.calls()[-1] == ("DELETE", f"{API}/sites/site-1")


def test_delete_without_site_degrades() -> None:
    routes = RouteTable({("GET", f"{API}/deploys/dep-1"): (200, {"id": "dep-1"})})

    result = _adapter(routes).delete_deployment("dep-1")

    assert not result.success
    assert result.error_kind == ErrorKind.DELETE_FAILED


def test_list_clamps_limit_and_tags_platform() -> None:
    routes = RouteTable(
        {
            ("GET", f"{API}/sites"): (
                200,
                [
                    {
                        **SITE,
                        "created_at": "2026-10-01T10:00:00.000Z",
                        "published_deploy": {"id": "dep-1", "state": "ready"},
                    },
                ],
            ),
        },
    )

    listing = _adapter(routes).list_deployments(limit=500)

    assert listing.success
    assert routes.requests[0].url.params["per_page"] == "100"
    item = listing.deployments[0]
    assert item.deployment_id == "dep-1"
    assert item.platform == DeploymentPlatform.NETLIFY
    assert item.created_at.year == 2026
    assert item.created_at.tzinfo is not None


def test_list_failure_degrades() -> None:
    routes = RouteTable({("GET", f"{API}/sites"): (401, {"message": "unauthorized"})})

    listing = _adapter(routes).list_deployments()

    assert not listing.success
    assert listing.error_kind == ErrorKind.LIST_FAILED
