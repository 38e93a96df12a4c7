from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt

from app.db import get_db
from app.errors import ApiError
from app.main import app
from app.models import UserRole
from app.security import create_access_token, decode_token
from app.settings import Settings
from support import add_user, make_sqlite_session, override_get_db

TEST_SETTINGS = Settings(jwt_secret="unit-test-secret", access_token_minutes=30)


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("app.security.get_settings", return_value=TEST_SETTINGS)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_token_round_trip(self) -> None:
        token, expires_in, claims = create_access_token(user_id=12, role=UserRole.ADMIN)

        payload = decode_token(token)

        self.assertEqual(expires_in, 1800)
        self.assertEqual(payload["sub"], "12")
        self.assertEqual(payload["role"], "ADMIN")
        self.assertEqual(payload["jti"], claims["jti"])

    def test_wrong_token_type_is_rejected(self) -> None:
        _, _, claims = create_access_token(user_id=12)
        forged = jwt.encode({**claims, "typ": "refresh"}, TEST_SETTINGS.jwt_secret, algorithm="HS256")

        with self.assertRaises(ApiError) as ctx:
            decode_token(forged)

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        _, _, claims = create_access_token(user_id=12)
        forged = jwt.encode(claims, "someone-else", algorithm="HS256")

        with self.assertRaises(ApiError):
            decode_token(forged)


class BearerAuthenticationTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("app.security.get_settings", return_value=TEST_SETTINGS)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = make_sqlite_session()
        self.addCleanup(self.db.close)
        app.dependency_overrides[get_db] = override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _headers(self, user_id: int, role: UserRole = UserRole.USER) -> dict[str, str]:
        token, _, _ = create_access_token(user_id=user_id, role=role)
        return {"Authorization": f"Bearer {token}"}

    def test_archived_user_is_rejected(self) -> None:
        user = add_user(self.db, name="Former", is_archived=True)

        response = self.client.get("/api/sessions/active", headers=self._headers(user.id))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "USER_ARCHIVED")

    def test_stored_role_overrides_token_claim(self) -> None:
        user = add_user(self.db, name="Asha", role=UserRole.USER)

        response = self.client.get("/api/admin/team-scores", headers=self._headers(user.id, UserRole.ADMIN))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_unknown_user_is_unauthorized(self) -> None:
        response = self.client.get("/api/sessions/active", headers=self._headers(404))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_valid_token_reaches_endpoint(self) -> None:
        user = add_user(self.db, name="Asha")

        response = self.client.get("/api/billing-cycles", headers=self._headers(user.id))

        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
