"""
Tests for access token verification and role resolution.
"""

from datetime import timedelta
from types import SimpleNamespace

from jose import jwt

from redetour.auth.jwt import (
    ALGORITHM,
    UserRole,
    create_access_token,
    get_token,
    resolve_role,
    verify_token,
)


def _make_request(headers=None, cookies=None):
    return SimpleNamespace(headers=headers or {}, cookies=cookies or {})


class TestResolveRole:
    def test_app_metadata_wins(self):
        payload = {
            "app_metadata": {"role": "admin"},
            "user_metadata": {"role": "afiliado"},
            "role": "authenticated",
        }
        assert resolve_role(payload) == UserRole.ADMIN

    def test_user_metadata_fallback(self):
        payload = {"user_metadata": {"role": "parceiro"}, "role": "authenticated"}
        assert resolve_role(payload) == UserRole.PARTNER

    def test_top_level_role(self):
        assert resolve_role({"role": "afiliado"}) == UserRole.AFFILIATE

    def test_database_role_means_client(self):
        assert resolve_role({"role": "authenticated"}) == UserRole.CLIENT

    def test_empty_payload(self):
        assert resolve_role({}) == UserRole.CLIENT


class TestVerifyToken:
    def test_round_trip(self):
        token = create_access_token("user-1", UserRole.AFFILIATE, email="a@redetour.com")
        payload = verify_token(token)
        assert payload == {
            "user_id": "user-1",
            "role": UserRole.AFFILIATE,
            "email": "a@redetour.com",
        }

    def test_expired_token(self):
        token = create_access_token("user-1", expires_delta=timedelta(seconds=-30))
        assert verify_token(token) is None

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "user-1"}, "another-secret", algorithm=ALGORITHM)
        assert verify_token(token) is None

    def test_missing_subject(self):
        token = jwt.encode({"role": "admin"}, "test-jwt-secret", algorithm=ALGORITHM)
        assert verify_token(token) is None

    def test_garbage(self):
        assert verify_token("not-a-token") is None


class TestGetToken:
    def test_bearer_header(self):
        request = _make_request(headers={"Authorization": "Bearer abc.def.ghi"})
        assert get_token(request) == "abc.def.ghi"

    def test_cookie(self):
        request = _make_request(cookies={"access_token": "cookie-token"})
        assert get_token(request) == "cookie-token"

    def test_header_preferred_over_cookie(self):
        request = _make_request(
            headers={"Authorization": "Bearer header-token"},
            cookies={"access_token": "cookie-token"},
        )
        assert get_token(request) == "header-token"

    def test_other_scheme_ignored(self):
        request = _make_request(headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert get_token(request) is None
