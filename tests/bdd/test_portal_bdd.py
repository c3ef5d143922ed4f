from __future__ import annotations

from typing import Any

import portal.main as portal_main
import pytest
from fastapi.testclient import TestClient
from portal.config import PortalSettings
from pytest_bdd import given, parsers, scenario, then, when

pytestmark = pytest.mark.bdd

SETTINGS = PortalSettings(jobboard_base_url="http://jobboard.test", gemini_api_key="test-key")


class StubResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers: dict[str, str] = {}

    def json(self) -> Any:
        return self._payload


class StubAsyncClient:
    def __init__(self, response: StubResponse, capture: dict[str, Any]) -> None:
        self.response = response
        self.capture = capture

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> StubResponse:
        self.capture["method"] = method
        self.capture["url"] = url
        self.capture["params"] = params
        return self.response


@scenario("features/portal.feature", "Proxy job listings from the job board API")
def test_portal_proxy() -> None:
    pass


@scenario("features/portal.feature", "Recommendations require an uploaded CV")
def test_recommendations_require_cv() -> None:
    pass


@pytest.fixture
def context() -> dict[str, object]:
    return {}


def install_upstream(
    context: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
    response: StubResponse,
) -> None:
    capture: dict[str, Any] = {}
    monkeypatch.setattr(
        portal_main.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response=response, capture=capture),
    )
    context["capture"] = capture


@given("the job board upstream returns one job")
def given_upstream_returns_job(
    context: dict[str, object], monkeypatch: pytest.MonkeyPatch
) -> None:
    upstream_payload = [{"job_id": "J1", "job_title": "Backend Engineer", "company": "Acme"}]
    install_upstream(context, monkeypatch, StubResponse(200, upstream_payload))
    context["upstream_payload"] = upstream_payload


@given("the job board upstream has no CV for the user")
def given_upstream_has_no_cv(
    context: dict[str, object], monkeypatch: pytest.MonkeyPatch
) -> None:
    install_upstream(
        context,
        monkeypatch,
        StubResponse(404, {"message": "CV not found for this user.", "error": None}),
    )


@when("the portal job listing is requested", target_fixture="response")
def when_job_listing_is_requested():
    with TestClient(portal_main.create_app(settings=SETTINGS)) as client:
        return client.get("/api/jobs", params={"location": "Remote"})


@when("the portal recommendations are requested", target_fixture="response")
def when_recommendations_are_requested():
    with TestClient(portal_main.create_app(settings=SETTINGS)) as client:
        return client.post("/api/users/u1/recommendations")


@then("the portal response is successful")
def then_portal_response_is_successful(response) -> None:
    assert response.status_code == 200


@then("the portal response wraps the job board payload")
def then_portal_response_wraps_payload(context: dict[str, object], response) -> None:
    assert response.json()["jobboard_response"] == context["upstream_payload"]
    assert context["capture"]["url"] == "http://jobboard.test/api/jobs"
    assert context["capture"]["params"] == {"location": "Remote"}


@then(parsers.parse("the portal responds with status {status_code:d}"))
def then_portal_responds_with_status(response, status_code: int) -> None:
    assert response.status_code == status_code
