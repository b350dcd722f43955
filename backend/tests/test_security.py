"""Security tests: bearer identity, internal token, rate limiting and public endpoints"""
import pytest
from fastapi import status
from unittest.mock import Mock, patch

from tokenguard.core.security import get_bearer_token, get_client_identifier
from tokenguard.db import redis as redis_module


def request_with_headers(headers):
    request = Mock()
    request.headers = headers
    request.client.host = "203.0.113.7"
    return request


class TestBearerParsing:
    def test_extracts_token(self):
        assert get_bearer_token(request_with_headers({"Authorization": "Bearer abc123"})) == "abc123"

    def test_scheme_is_case_insensitive(self):
        assert get_bearer_token(request_with_headers({"Authorization": "bearer abc123"})) == "abc123"

    @pytest.mark.parametrize("header", [None, "", "Basic abc123", "Bearer", "Bearer   "])
    def test_rejects_other_forms(self, header):
        headers = {} if header is None else {"Authorization": header}
        assert get_bearer_token(request_with_headers(headers)) is None

    def test_client_identifier_prefers_token(self):
        request = request_with_headers({"Authorization": "Bearer abc123"})
        assert get_client_identifier(request) == "token:abc123"

    def test_client_identifier_uses_forwarded_ip(self):
        request = request_with_headers({"X-Forwarded-For": "198.51.100.1, 10.0.0.1"})
        assert get_client_identifier(request) == "ip:198.51.100.1"


@pytest.mark.critical
class TestAuthentication:
    def test_protected_routes_require_auth(self, client):
        assert client.get("/api/usage/current").status_code == status.HTTP_401_UNAUTHORIZED
        assert client.get("/api/usage/logs").status_code == status.HTTP_401_UNAUTHORIZED
        assert client.post("/api/keys", json={}).status_code == status.HTTP_401_UNAUTHORIZED
        assert client.post("/api/proxy", json={}).status_code == status.HTTP_401_UNAUTHORIZED

    def test_revoked_session_rejected(self, client, auth_headers, mock_redis):
        assert client.get("/api/usage/current", headers=auth_headers).status_code == status.HTTP_200_OK

        token = auth_headers["Authorization"].split(" ", 1)[1]
        redis_module.delete_session(token)

        response = client.get("/api/usage/current", headers=auth_headers)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid authorization token"}

    def test_set_session_resolves_user(self, client, mock_redis, test_user):
        redis_module.set_session("issued-token", test_user.id)
        response = client.get("/api/usage/current", headers={"Authorization": "Bearer issued-token"})
        assert response.status_code == status.HTTP_200_OK

    def test_internal_endpoints_closed_without_configured_token(self, client, test_user):
        from tokenguard.core.config import settings

        with patch.object(settings, "INTERNAL_API_TOKEN", ""):
            response = client.post(
                "/api/usage/check",
                json={"userId": test_user.id},
                headers={"X-Internal-Token": ""}
            )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.critical
class TestRateLimiting:
    def test_requests_over_limit_get_429(self, client, auth_headers):
        with patch.object(redis_module, "RATE_LIMIT_REQUESTS", 2):
            assert client.get("/api/usage/current", headers=auth_headers).status_code == status.HTTP_200_OK
            assert client.get("/api/usage/current", headers=auth_headers).status_code == status.HTTP_200_OK
            response = client.get("/api/usage/current", headers=auth_headers)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {"error": "Rate limit exceeded. Please try again later."}

    def test_state_changing_requests_use_strict_limit(self, client, internal_headers, test_user):
        with patch.object(redis_module, "RATE_LIMIT_STRICT_REQUESTS", 1):
            first = client.post("/api/usage/check", json={"userId": test_user.id}, headers=internal_headers)
            second = client.post("/api/usage/check", json={"userId": test_user.id}, headers=internal_headers)

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    def test_health_is_not_rate_limited(self, client):
        with patch.object(redis_module, "RATE_LIMIT_REQUESTS", 0):
            response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK


class TestPublicEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    def test_metrics(self, client, internal_headers, test_user):
        client.post("/api/usage/check", json={"userId": test_user.id}, headers=internal_headers)

        response = client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert "tokenguard_proxy_requests_total" in response.text
        assert "tokenguard_tokens_committed_total" in response.text
