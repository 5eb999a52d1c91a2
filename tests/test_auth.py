"""
Tests for the token lifecycle (moynalog.services.auth).
"""
from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import patch

from _helpers import (
    INN,
    NOW,
    _make_api,
    _mock_response,
    _sent_body,
    _sent_headers,
    _sent_url,
    _token_body,
)
from moynalog import (
    AuthStatus,
    NalogApiError,
    NalogConfigurationError,
    PhoneAuthRequiredError,
    SessionState,
)


class TestAuthenticateDispatch(unittest.TestCase):

    def test_no_credentials_is_configuration_error(self):
        api = _make_api()
        with patch.object(api._runtime._session, "request") as mock_req:
            with self.assertRaises(NalogConfigurationError):
                api.auth()
        mock_req.assert_not_called()
        self.assertEqual(api.get_auth_state(), SessionState())

    def test_inn_without_password_is_configuration_error(self):
        api = _make_api(inn=INN)
        with patch.object(api._runtime._session, "request") as mock_req:
            with self.assertRaises(NalogConfigurationError):
                api.auth()
        mock_req.assert_not_called()
        self.assertEqual(api.get_auth_state(), SessionState(inn=INN))

    def test_phone_only_raises_guidance_error(self):
        api = _make_api(phone="+7 999 123-45-67")
        with patch.object(api._runtime._session, "request") as mock_req:
            with self.assertRaises(PhoneAuthRequiredError) as ctx:
                api.auth()
        mock_req.assert_not_called()
        self.assertIn("request_sms_code", str(ctx.exception))
        self.assertEqual(api.get_auth_state(), SessionState())

    def test_invalid_inn_is_configuration_error(self):
        with self.assertRaises(NalogConfigurationError):
            _make_api(inn="not-an-inn", password="pw")

    def test_inn_password_login(self):
        api = _make_api(inn=INN, password="secret")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, _token_body("T1", "R1"))
            result = api.auth()

        self.assertEqual(result.token, "T1")
        state = api.get_auth_state()
        self.assertEqual(state.access_token, "T1")
        self.assertEqual(state.refresh_token, "R1")
        self.assertEqual(state.inn, INN)
        self.assertEqual(state.token_expire_in, NOW + timedelta(hours=1))

        self.assertTrue(_sent_url(mock_req).endswith("/auth/lkfl"))
        body = _sent_body(mock_req)
        self.assertEqual(body["inn"], INN)
        self.assertEqual(body["password"], "secret")
        self.assertEqual(body["deviceInfo"]["sourceType"], "WEB")
        self.assertIn("userAgent", body["deviceInfo"]["metaDetails"])

    def test_held_refresh_token_takes_precedence(self):
        api = _make_api(inn=INN, password="secret", refresh_token="R0")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, _token_body("T2", "R2"))
            api.auth()

        mock_req.assert_called_once()
        self.assertTrue(_sent_url(mock_req).endswith("/auth/token"))
        self.assertEqual(_sent_body(mock_req)["refreshToken"], "R0")
        state = api.get_auth_state()
        self.assertEqual((state.access_token, state.refresh_token), ("T2", "R2"))
        self.assertEqual(state.token_expire_in, NOW + timedelta(hours=1))

    def test_login_failure_propagates_code(self):
        api = _make_api(inn=INN, password="wrong")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(
                401, {"code": "AUTH_ERROR", "message": "Invalid credentials"}
            )
            with self.assertRaises(NalogApiError) as ctx:
                api.auth()
        self.assertEqual(ctx.exception.code, "AUTH_ERROR")
        self.assertEqual(ctx.exception.message, "Invalid credentials")
        self.assertEqual(api.get_auth_state(), SessionState(inn=INN))


class TestRefresh(unittest.TestCase):

    def test_refresh_without_token_fails_immediately(self):
        api = _make_api()
        with patch.object(api._runtime._session, "request") as mock_req:
            with self.assertRaises(NalogApiError):
                api.refresh_access_token()
        mock_req.assert_not_called()

    def test_failed_refresh_leaves_session_untouched(self):
        api = _make_api(inn=INN, password="secret")
        api.tokens.set_tokens("OLD", "R0", INN, token_expire_in=NOW + timedelta(minutes=1))
        before = api.get_auth_state()
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(401, {"message": "expired"})
            with self.assertRaises(NalogApiError):
                api.refresh_access_token()
        mock_req.assert_called_once()  # no fallback to password login
        self.assertEqual(api.get_auth_state(), before)

    def test_malformed_token_response(self):
        api = _make_api(refresh_token="R0")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, {"unexpected": True})
            with self.assertRaises(NalogApiError):
                api.refresh_access_token()
        self.assertEqual(api.get_auth_state().refresh_token, "R0")
        self.assertIsNone(api.get_auth_state().access_token)


class TestEnsureValidToken(unittest.TestCase):

    def test_fresh_token_is_reused(self):
        api = _make_api(inn=INN, password="secret")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, _token_body())
            api.ensure_valid_token()
            api.ensure_valid_token()
        mock_req.assert_called_once()
        self.assertIs(api.tokens.status, AuthStatus.FRESH)

    def test_unauthenticated_call_logs_in_first(self):
        api = _make_api(inn=INN, password="secret")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.side_effect = [
                _mock_response(200, _token_body("T1", "R1")),
                _mock_response(200, {"totalAmount": 0}),
            ]
            api.call("incomes/summary")
        self.assertTrue(_sent_url(mock_req, 0).endswith("/auth/lkfl"))
        self.assertEqual(_sent_headers(mock_req, 1)["Authorization"], "Bearer T1")

    def test_stale_token_refreshed_before_call(self):
        api = _make_api()
        api.tokens.set_tokens("OLD", "R0", INN, token_expire_in=NOW + timedelta(minutes=1))
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.side_effect = [
                _mock_response(200, _token_body("NEW", "R1")),
                _mock_response(200, {"ok": True}),
            ]
            self.assertEqual(api.call("incomes/summary"), {"ok": True})

        self.assertEqual(mock_req.call_count, 2)
        self.assertTrue(_sent_url(mock_req, 0).endswith("/auth/token"))
        self.assertNotIn("Authorization", _sent_headers(mock_req, 0))
        self.assertTrue(_sent_url(mock_req, 1).endswith("/incomes/summary"))
        self.assertEqual(_sent_headers(mock_req, 1)["Authorization"], "Bearer NEW")

    def test_refresh_failure_surfaces_from_domain_call(self):
        api = _make_api()
        api.tokens.set_tokens("OLD", "R0", INN, token_expire_in=NOW - timedelta(minutes=1))
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(400, {"code": "REFRESH_EXPIRED"})
            with self.assertRaises(NalogApiError) as ctx:
                api.call("incomes/summary")
        mock_req.assert_called_once()
        self.assertEqual(ctx.exception.code, "REFRESH_EXPIRED")

    def test_phone_only_domain_call_raises_guidance(self):
        api = _make_api(phone="9991234567")
        with patch.object(api._runtime._session, "request") as mock_req:
            with self.assertRaises(PhoneAuthRequiredError):
                api.call("incomes/summary")
        mock_req.assert_not_called()


class TestPhoneFlow(unittest.TestCase):

    def test_request_sms_code_uses_v2_and_does_not_touch_session(self):
        api = _make_api()
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(
                200, {"challengeToken": "CH", "expireDate": "2025-01-15T12:02:00Z", "expireIn": 120}
            )
            self.assertEqual(api.request_sms_code("8 (999) 123-45-67"), "CH")

        self.assertEqual(_sent_url(mock_req), "https://lknpd.nalog.ru/api/v2/auth/challenge/sms/start")
        body = _sent_body(mock_req)
        self.assertEqual(body["phone"], "79991234567")
        self.assertTrue(body["requireTpToBeActive"])
        self.assertEqual(body["deviceData"], {"sourceType": "WEB"})
        self.assertEqual(api.get_auth_state(), SessionState())

    def test_request_sms_code_switches_only_api_version_segment(self):
        api = _make_api(base_url="https://proxy.example/v1/lknpd/api/v1")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, {"challengeToken": "CH"})
            api.request_sms_code("79991234567")
        self.assertEqual(_sent_url(mock_req), "https://proxy.example/v2/lknpd/api/v1/auth/challenge/sms/start")

    def test_request_sms_code_error(self):
        api = _make_api()
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(422, {"code": "PHONE", "message": "Bad phone"})
            with self.assertRaises(NalogApiError) as ctx:
                api.request_sms_code("79991234567")
        self.assertEqual(ctx.exception.message, "Bad phone")

    def test_auth_by_phone_fills_inn_from_profile(self):
        api = _make_api()
        profile = {"id": 1, "inn": "323308082612", "displayName": "Test User", "phone": "79991234567"}
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, _token_body("T1", "R1", profile=profile))
            result = api.auth_by_phone("+7 999 123 45 67", "CH", "123456")

        self.assertEqual(result.profile.display_name, "Test User")
        self.assertEqual(api.get_inn(), "323308082612")
        self.assertEqual(api.get_auth_state().access_token, "T1")
        self.assertTrue(_sent_url(mock_req).endswith("/v1/auth/challenge/sms/verify"))
        body = _sent_body(mock_req)
        self.assertEqual((body["phone"], body["code"], body["challengeToken"]), ("79991234567", "123456", "CH"))


class TestSessionAccessors(unittest.TestCase):

    def test_set_tokens_round_trip(self):
        api = _make_api()
        api.set_tokens("A", "R", INN)
        state = api.get_auth_state()
        self.assertEqual((state.access_token, state.refresh_token, state.inn), ("A", "R", INN))

    def test_set_tokens_keeps_existing_refresh_and_inn(self):
        api = _make_api()
        api.set_tokens("A", "R", INN)
        api.set_tokens("B")
        state = api.get_auth_state()
        self.assertEqual((state.access_token, state.refresh_token, state.inn), ("B", "R", INN))

    def test_set_inn(self):
        api = _make_api()
        api.set_inn("7700000000")
        self.assertEqual(api.get_inn(), "7700000000")

    def test_configured_tokens_seed_session(self):
        api = _make_api(inn=INN, access_token="A", refresh_token="R")
        state = api.get_auth_state()
        self.assertEqual((state.access_token, state.refresh_token, state.inn), ("A", "R", INN))

    def test_logout_forgets_tokens(self):
        api = _make_api()
        api.set_tokens("A", "R", INN)
        api.logout()
        self.assertIs(api.tokens.status, AuthStatus.UNAUTHENTICATED)
        self.assertEqual(api.get_inn(), INN)

    def test_device_id_configurable_and_stable(self):
        api = _make_api(device_id="dev-1")
        with patch.object(api._runtime._session, "request") as mock_req:
            mock_req.return_value = _mock_response(200, _token_body())
            api.auth_by_inn(INN, "pw")
        self.assertEqual(_sent_body(mock_req)["deviceInfo"]["sourceDeviceId"], "dev-1")

    def test_generated_device_ids_differ(self):
        self.assertNotEqual(
            _make_api().tokens.device.source_device_id,
            _make_api().tokens.device.source_device_id,
        )


if __name__ == "__main__":
    unittest.main()
