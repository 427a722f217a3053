from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import page, redirect
from seo_solver.gsc import client as gsc_client
from seo_solver.gsc import oauth

NO_VIEWPORT = "<html><head></head><body></body></html>"
INSPECT_URL = f"{gsc_client.SEARCH_CONSOLE_API_BASE}/urlInspection/index:inspect"


def validate_mobile(client, site_url="https://example.com"):
    return client.post("/validate", json={"site_url": site_url, "checks": ["mobile"]})


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0", "implementation": "python-fastapi"}


class TestValidate:
    def test_mobile_example(self, client, web):
        web.serve("https://example.com", page(NO_VIEWPORT))
        response = validate_mobile(client)

        assert response.status_code == 200
        payload = response.json()
        assert payload["summary"]["total_issues"] == 1
        assert payload["summary"]["by_category"] == {
            "structured_data": 0, "indexing": 0, "performance": 0, "mobile": 1,
        }
        issue = payload["issues"][0]
        assert issue["type"] == "no_viewport"
        assert issue["severity"] == "error"
        assert issue["auto_fixable"] is True
        assert issue["id"].startswith("iss_")
        assert payload["gsc_used"] is False
        assert "gsc_property" not in payload

    @pytest.mark.parametrize("body", [
        {"site_url": "not a url"},
        {"site_url": "ftp://example.com/"},
        {"site_url": "https://example.com", "checks": ["speed"]},
        {"site_url": "https://example.com", "max_urls": 0},
        {"checks": ["mobile"]},
    ])
    def test_invalid_body(self, client, body):
        response = client.post("/validate", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert response.json()["error"]["details"]["errors"]

    def test_malformed_json(self, client):
        response = client.post("/validate", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("site_url", ["http://localhost:8000/", "http://127.0.0.1/", "http://192.168.1.10/"])
    def test_private_hosts_rejected(self, client, web, site_url):
        response = validate_mobile(client, site_url)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert web.requests == []

    def test_api_key_required_when_configured(self, client, web, monkeypatch):
        monkeypatch.setenv("API_SECRET_KEY", "sekret")
        web.serve("https://example.com", page(NO_VIEWPORT))

        response = validate_mobile(client)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

        response = client.post(
            "/validate", json={"site_url": "https://example.com", "checks": ["mobile"]},
            headers={"X-API-Key": "sekret"},
        )
        assert response.status_code == 200

    def test_rate_limited(self, client, web, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "2")
        web.serve("https://example.com", page(NO_VIEWPORT))

        assert validate_mobile(client).status_code == 200
        assert validate_mobile(client).status_code == 200
        response = validate_mobile(client)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert response.json()["error"]["details"]["limit"] == 2

    def test_unparseable_redirect_location_still_completes(self, client, web):
        web.serve("https://example.com", redirect("/a"))
        web.serve("https://example.com/a", redirect("http://[bad-host/"))

        response = client.post("/validate", json={
            "site_url": "https://example.com/", "checks": ["indexing"], "use_gsc": False,
        })

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["urls_checked"] == 1

    def test_empty_checks_runs_nothing(self, client, web):
        response = client.post("/validate", json={"site_url": "https://example.com", "checks": []})

        assert response.status_code == 200
        assert response.json()["urls_checked"] == 0
        assert response.json()["summary"]["total_issues"] == 0
        assert web.requests == []

    def test_unexpected_failure_is_internal_error(self, client, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("database on fire")

        monkeypatch.setattr("seo_solver.main.run_validation", explode)
        response = validate_mobile(client)

        assert response.status_code == 500
        assert response.json() == {"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}}


class TestIssues:
    def test_open_filter_excludes_patched_issues(self, client, web):
        web.serve("https://example.com", page(NO_VIEWPORT))
        web.serve("https://example.com/robots.txt", page(""))
        response = client.post("/validate", json={"site_url": "https://example.com", "checks": ["mobile", "indexing"]})
        created = {i["id"] for i in response.json()["issues"]}
        assert len(created) == 2

        listed = client.get("/sites/example.com/issues", params={"status": "open"}).json()
        assert listed["site_id"] == "example.com"
        assert listed["returned"] == 2
        assert listed["next_cursor"] is None
        assert {i["id"] for i in listed["issues"]} == created

        fixed_id = sorted(created)[0]
        assert client.patch(f"/issues/{fixed_id}", json={"status": "fixed"}).status_code == 200

        listed = client.get("/sites/example.com/issues", params={"status": "open"}).json()
        assert {i["id"] for i in listed["issues"]} == created - {fixed_id}
        assert all(i["status"] == "open" for i in listed["issues"])

    def test_patch_is_idempotent(self, client, web, repo):
        web.serve("https://example.com", page(NO_VIEWPORT))
        issue_id = validate_mobile(client).json()["issues"][0]["id"]

        first = client.patch(f"/issues/{issue_id}", json={"status": "wontfix"})
        second = client.patch(f"/issues/{issue_id}", json={"status": "wontfix"})

        assert first.status_code == second.status_code == 200
        assert second.json()["id"] == issue_id
        assert second.json()["status"] == "wontfix"
        assert second.json()["updated_at"]
        listed = client.get("/sites/example.com/issues").json()
        assert listed["returned"] == 1
        assert listed["issues"][0]["status"] == "wontfix"

    def test_patch_unknown_issue(self, client):
        response = client.patch("/issues/iss_doesnotexist", json={"status": "fixed"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_patch_invalid_status(self, client):
        response = client.patch("/issues/iss_whatever", json={"status": "done"})
        assert response.status_code == 400

    def test_pagination(self, client, web):
        web.serve("https://example.com", page(NO_VIEWPORT))
        for _ in range(3):
            validate_mobile(client)

        first = client.get("/sites/example.com/issues", params={"limit": 2}).json()
        assert first["returned"] == 2
        assert first["next_cursor"]

        second = client.get(
            "/sites/example.com/issues", params={"limit": 2, "cursor": first["next_cursor"]},
        ).json()
        assert second["returned"] == 1
        assert second["next_cursor"] is None
        assert not {i["id"] for i in first["issues"]} & {i["id"] for i in second["issues"]}

    @pytest.mark.parametrize("params", [
        {"limit": 0}, {"limit": 501}, {"status": "closed"}, {"category": "speed"}, {"severity": "info"},
    ])
    def test_invalid_query(self, client, params):
        response = client.get("/sites/example.com/issues", params=params)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_site_has_no_issues(self, client):
        assert client.get("/sites/nobody.test/issues").json() == {
            "site_id": "nobody.test", "returned": 0, "next_cursor": None, "issues": [],
        }


class TestSites:
    def test_register_and_list(self, client):
        response = client.post("/sites", json={"site_url": "https://www.example.com/"})

        assert response.status_code == 201
        site = response.json()
        assert site["site_id"] == "example.com"
        assert site["check_schedule"] == "daily"
        assert site["next_check"]
        assert site["created_at"]

        sites = client.get("/sites").json()["sites"]
        assert [s["site_id"] for s in sites] == ["example.com"]
        assert sites[0]["open_issues"] == 0

    def test_invalid_schedule(self, client):
        response = client.post("/sites", json={"site_url": "https://example.com/", "check_schedule": "hourly"})
        assert response.status_code == 400


class TestGoogleAuth:
    def test_auth_redirect_stores_state(self, client, repo):
        response = client.get("/auth/google", params={"site_id": "example.com"}, follow_redirects=False)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(oauth.GOOGLE_AUTH_URL)
        state = parse_qs(urlparse(location).query)["state"][0]
        stored = client.portal.call(repo.get_state_token, state)
        assert stored["site_id"] == "example.com"
        assert not oauth.is_expired(stored["expires_at"])

    def test_callback_stores_token(self, client, web, repo):
        web.serve(oauth.GOOGLE_TOKEN_URL, {"status_code": 200, "json": {
            "access_token": "access", "refresh_token": "refresh", "expires_in": 3599,
            "scope": "https://www.googleapis.com/auth/webmasters.readonly",
        }})
        started = client.get("/auth/google", params={"site_id": "example.com"}, follow_redirects=False)
        state = parse_qs(urlparse(started.headers["location"]).query)["state"][0]

        response = client.get("/auth/google/callback", params={"code": "abc", "state": state})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["site_id"] == "example.com"

        replay = client.get("/auth/google/callback", params={"code": "abc", "state": state})
        assert replay.status_code == 400
        assert replay.json()["error"]["code"] == "INVALID_STATE"

    def test_callback_unknown_state(self, client):
        response = client.get("/auth/google/callback", params={"code": "abc", "state": "forged"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_callback_missing_params(self, client):
        response = client.get("/auth/google/callback", params={"code": "abc"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_callback_error_from_google(self, client):
        response = client.get("/auth/google/callback", params={"error": "access_denied"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "OAUTH_ERROR"

    def test_callback_token_exchange_failure(self, client, web):
        web.serve(oauth.GOOGLE_TOKEN_URL, {"status_code": 400, "json": {"error": "invalid_grant"}})
        started = client.get("/auth/google", follow_redirects=False)
        state = parse_qs(urlparse(started.headers["location"]).query)["state"][0]

        response = client.get("/auth/google/callback", params={"code": "abc", "state": state})
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "API_ERROR"

    @pytest.mark.parametrize("reply", [
        httpx.ConnectError("refused"),
        {"status_code": 200, "json": {"refresh_token": "refresh"}},
    ])
    def test_callback_token_endpoint_unusable(self, client, web, repo, reply):
        web.serve(oauth.GOOGLE_TOKEN_URL, reply)
        started = client.get("/auth/google", follow_redirects=False)
        state = parse_qs(urlparse(started.headers["location"]).query)["state"][0]

        response = client.get("/auth/google/callback", params={"code": "abc", "state": state})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "API_ERROR"
        assert client.portal.call(repo.get_google_token, "default") is None


class TestSearchConsole:
    def test_not_connected(self, client):
        response = client.get("/gsc/properties")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NOT_CONNECTED"

    def test_properties_and_inspect(self, client, web):
        web.serve(oauth.GOOGLE_TOKEN_URL, {"status_code": 200, "json": {"access_token": "access", "expires_in": 3600}})
        started = client.get("/auth/google", follow_redirects=False)
        state = parse_qs(urlparse(started.headers["location"]).query)["state"][0]
        assert client.get("/auth/google/callback", params={"code": "c", "state": state}).status_code == 200

        web.serve(f"{gsc_client.GSC_API_BASE}/sites", {"status_code": 200, "json": {
            "siteEntry": [{"siteUrl": "https://example.com/", "permissionLevel": "siteOwner"}],
        }})
        properties = client.get("/gsc/properties").json()
        assert properties["properties"] == [{"url": "https://example.com/", "permission": "siteOwner"}]

        web.serve(INSPECT_URL, {"status_code": 200, "json": {"inspectionResult": {
            "indexStatusResult": {"verdict": "FAIL", "coverageState": "Server error (5xx)"},
        }}})
        inspected = client.get(
            "/gsc/inspect", params={"url": "https://example.com/a", "site_url": "https://example.com/"},
        ).json()
        assert [i["type"] for i in inspected["issues"]] == ["server_error_5xx", "duplicate_without_canonical"]
        assert inspected["issues_count"] == 2

    def test_inspect_upstream_failure(self, client, web, repo):
        web.serve(INSPECT_URL, {"status_code": 500, "json": {}})
        client.portal.call(repo.put_google_token, {
            "site_id": "default", "access_token": "a", "refresh_token": "r",
            "expires_at": oauth.calculate_expires_at(3600),
        })

        response = client.get("/gsc/inspect", params={"url": "https://example.com/", "site_url": "https://example.com/"})
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "API_ERROR"
