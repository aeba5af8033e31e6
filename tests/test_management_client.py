"""Tests for the management API client"""

from __future__ import annotations

import base64
import json

import pytest
import requests

from idpctl.domain.config import TransportConfig
from idpctl.infrastructure.http_client import session_with_retries
from idpctl.infrastructure.management.client import (
    ManagementAPIError,
    ManagementClient,
    client_info_header,
)

DOMAIN = "tenant.example.test"


@pytest.fixture
def client_for(fake_adapter, sleeps):
    """Build a client whose transport chain ends in a fake adapter"""

    def _build(*outcomes, config=None):
        base = fake_adapter(*outcomes)
        session = session_with_retries(config, base=base, sleep=sleeps.append)
        return ManagementClient(DOMAIN, "token-123", session=session), base

    return _build


class TestManagementClientInit:
    """Tests for ManagementClient initialization"""

    def test_requires_domain(self):
        with pytest.raises(ValueError, match="domain"):
            ManagementClient(None, "token")

    def test_requires_access_token(self):
        with pytest.raises(ValueError, match="Access token"):
            ManagementClient(DOMAIN, "")

    def test_default_headers(self):
        client = ManagementClient(DOMAIN, "token-123")

        headers = client.session.headers
        assert headers["Authorization"] == "Bearer token-123"
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"].startswith("idpctl/")
        assert "Auth0-Client" in headers
        client.close()

    def test_scheme_is_stripped_from_domain(self):
        client = ManagementClient(f"https://{DOMAIN}/", "token")
        assert client.base_url == f"https://{DOMAIN}/api/v2/"
        client.close()

    def test_default_session_uses_retry_chain(self):
        config = TransportConfig(max_retries=1)
        client = ManagementClient(DOMAIN, "token", transport_config=config)

        adapter = client.session.get_adapter(f"https://{DOMAIN}/api/v2/clients")
        assert type(adapter).__name__ == "RateLimitAdapter"
        assert adapter.next_adapter.policy.config.max_retries == 1
        client.close()


def test_client_info_header_is_base64_json():
    encoded = client_info_header()
    padded = encoded + "=" * (-len(encoded) % 4)
    info = json.loads(base64.urlsafe_b64decode(padded))
    assert info["name"] == "idpctl"
    assert "version" in info
    assert "python" in info["env"]


class TestNewRequest:
    """Tests for ManagementClient.new_request"""

    def test_builds_api_url_with_query(self):
        client = ManagementClient(DOMAIN, "token")
        request = client.new_request("get", "/stats/daily/", params={"from": "20221101"})

        assert request.method == "GET"
        assert request.url == f"https://{DOMAIN}/api/v2/stats/daily?from=20221101"
        assert request.headers["Authorization"] == "Bearer token"
        assert request.body is None

    def test_payload_is_json_encoded(self):
        client = ManagementClient(DOMAIN, "token")
        request = client.new_request("POST", "clients", payload={"name": "ssoTest"})

        assert json.loads(request.body) == {"name": "ssoTest"}
        assert request.headers["Content-Type"] == "application/json"

    def test_absolute_url_is_kept(self):
        client = ManagementClient(DOMAIN, "token")
        request = client.new_request("GET", f"https://{DOMAIN}/api/v2/users/abc")
        assert request.url == f"https://{DOMAIN}/api/v2/users/abc"


class TestRequest:
    """Tests for ManagementClient.request"""

    def test_returns_decoded_json(self, client_for, make_response):
        client, base = client_for(make_response(200, {"friendly_name": "Acme"}))

        assert client.request("GET", "tenants/settings") == {"friendly_name": "Acme"}
        assert base.requests[0].url == f"https://{DOMAIN}/api/v2/tenants/settings"

    def test_empty_body_returns_none(self, client_for, make_response):
        client, _ = client_for(make_response(204))
        assert client.request("DELETE", "clients/abc") is None

    def test_error_response_raises(self, client_for, make_response):
        body = {"statusCode": 404, "error": "Not Found", "message": "The client does not exist"}
        client, _ = client_for(make_response(404, body))

        with pytest.raises(ManagementAPIError) as excinfo:
            client.request("GET", "clients/missing")

        assert excinfo.value.status_code == 404
        assert excinfo.value.error == "Not Found"
        assert str(excinfo.value) == "404 Not Found: The client does not exist"

    def test_non_json_error_response_raises(self, client_for, make_response):
        response = make_response(400)
        response._content = b"bad request"
        client, _ = client_for(response)

        with pytest.raises(ManagementAPIError) as excinfo:
            client.request("GET", "clients")

        assert excinfo.value.status_code == 400
        assert excinfo.value.message == "bad request"

    @pytest.mark.parametrize("status_field", [None, "oops", [400]])
    def test_unusable_status_field_uses_response_status(self, client_for, make_response, status_field):
        body = {"statusCode": status_field, "error": "Bad Request", "message": "payload rejected"}
        client, _ = client_for(make_response(400, body))

        with pytest.raises(ManagementAPIError) as excinfo:
            client.request("POST", "clients", payload={})

        assert excinfo.value.status_code == 400
        assert str(excinfo.value) == "400 Bad Request: payload rejected"

    def test_server_errors_are_retried(self, client_for, make_response, sleeps):
        client, base = client_for(make_response(503), make_response(200, {"ok": True}))

        assert client.request("POST", "clients", payload={"name": "x"}) == {"ok": True}
        assert base.calls == 2
        assert len(sleeps) == 1

    def test_exhausted_retries_surface_last_response(self, client_for, make_response):
        client, base = client_for(make_response(500, {"statusCode": 500, "error": "Internal Server Error"}))

        with pytest.raises(ManagementAPIError) as excinfo:
            client.request("GET", "clients")

        assert excinfo.value.status_code == 500
        assert base.calls == 4

    def test_transport_errors_propagate(self, client_for):
        error = requests.exceptions.TooManyRedirects("Exceeded 30 redirects.")
        client, base = client_for(error)

        with pytest.raises(requests.exceptions.TooManyRedirects):
            client.request("GET", "clients")
        assert base.calls == 1

    def test_context_manager_closes_session(self, client_for, make_response):
        client, base = client_for(make_response(200))
        with client:
            pass
        assert base.closed is True
