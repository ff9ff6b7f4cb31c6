"""
Tests for token verification and role checks.

Requests go through the real ``get_current_user`` dependency with tokens
signed by the test secret.
"""

from datetime import date

import pytest

from speddy.auth import DEFAULT_ROLE, decode_jwt_token, role_from_claims

from .factories import PROVIDER_ID, make_token

SESSIONS_URL = "/api/v1/sessions?start_date=2025-01-13&end_date=2025-01-17"
GENERATE_URL = "/api/v1/admin/instances/generate"


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestDecodeToken:
    def test_valid_token(self):
        payload = decode_jwt_token(make_token())
        assert payload["sub"] == PROVIDER_ID

    def test_wrong_secret(self):
        assert decode_jwt_token(make_token(secret="another-secret-key-that-is-32-chars!")) is None

    def test_expired(self):
        assert decode_jwt_token(make_token(expires_in=-60)) is None

    def test_wrong_audience(self):
        assert decode_jwt_token(make_token(audience="anon")) is None

    def test_garbage(self):
        assert decode_jwt_token("not-a-jwt") is None


class TestRoleFromClaims:
    def test_user_metadata(self):
        assert role_from_claims({"user_metadata": {"role": "SEA"}}) == "sea"

    def test_app_metadata_fallback(self):
        assert role_from_claims({"user_metadata": {}, "app_metadata": {"role": "speech"}}) == "speech"

    def test_default(self):
        assert role_from_claims({}) == DEFAULT_ROLE


class TestAuthenticatedRequests:
    """Bearer tokens on real endpoints."""

    @pytest.fixture(autouse=True)
    def empty_grid(self, mock_services):
        mock_services["sessions"].sessions_for_range.return_value = []

    def test_missing_token(self, auth_client):
        response = auth_client.get(SESSIONS_URL)
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing authentication token"

    def test_invalid_token(self, auth_client):
        response = auth_client.get(SESSIONS_URL, headers=_bearer("not-a-jwt"))
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    def test_expired_token(self, auth_client):
        response = auth_client.get(SESSIONS_URL, headers=_bearer(make_token(expires_in=-60)))
        assert response.status_code == 401

    def test_user_passed_to_service(self, auth_client, mock_services):
        response = auth_client.get(
            SESSIONS_URL, headers=_bearer(make_token(role="sea", metadata_key="app_metadata"))
        )

        assert response.status_code == 200
        user = mock_services["sessions"].sessions_for_range.await_args.args[0]
        assert user.id == PROVIDER_ID
        assert user.role == "sea"


class TestAdminAccess:
    def test_provider_forbidden(self, auth_client, mock_services):
        response = auth_client.post(GENERATE_URL, json={}, headers=_bearer(make_token()))

        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient permissions"
        mock_services["instances"].generate_for_all_templates.assert_not_called()

    def test_admin_allowed(self, auth_client, mock_services):
        mock_services["instances"].generate_for_all_templates.return_value = {
            "total": 2,
            "created": 10,
            "errors": [{"template_id": "t2", "error": "Template session must have student_id and provider_id"}],
            "end_date": date(2025, 6, 30),
        }

        response = auth_client.post(
            GENERATE_URL,
            json={"weeks_ahead": 4},
            headers=_bearer(make_token(role="site_admin")),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["created"] == 10
        assert data["end_date"] == "2025-06-30"
        options = mock_services["instances"].generate_for_all_templates.await_args.args[0]
        assert options.weeks_ahead == 4
