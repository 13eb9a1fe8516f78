"""
Tests for TOTP enrollment, login verification and the 2FA endpoints.
"""

import base64

import pyotp
import pytest

from auth.session import read_session
from config import config
from kv import kv_store
from services import two_factor_service

from conftest import USER_EMAIL, make_client


def _pending_secret(email=USER_EMAIL):
    return kv_store.client.get(f"2fa:secret:temp:{email}")


def test_generate_qr_code_is_png_data_url():
    data_url = two_factor_service.generate_qr_code(USER_EMAIL, pyotp.random_base32())
    prefix = "data:image/png;base64,"
    assert data_url.startswith(prefix)
    assert base64.b64decode(data_url[len(prefix):]).startswith(b"\x89PNG")


def test_start_enrollment_keeps_secret_for_five_minutes():
    result = two_factor_service.start_enrollment(USER_EMAIL)
    assert _pending_secret() == result["secret"]
    assert 0 < kv_store.client.ttl(f"2fa:secret:temp:{USER_EMAIL}") <= 300
    assert not two_factor_service.is_enabled(USER_EMAIL)


def test_confirm_enrollment_with_valid_code():
    secret = two_factor_service.start_enrollment(USER_EMAIL)["secret"]
    assert two_factor_service.confirm_enrollment(USER_EMAIL, pyotp.TOTP(secret).now())
    assert two_factor_service.is_enabled(USER_EMAIL)
    assert _pending_secret() is None
    assert kv_store.client.get(f"2fa:secret:{USER_EMAIL}") == secret


def test_confirm_enrollment_with_wrong_code():
    two_factor_service.start_enrollment(USER_EMAIL)
    secret = _pending_secret()
    wrong = "000000" if pyotp.TOTP(secret).now() != "000000" else "111111"
    assert two_factor_service.confirm_enrollment(USER_EMAIL, wrong) is False
    assert _pending_secret() is not None


def test_confirm_enrollment_without_pending_secret():
    with pytest.raises(two_factor_service.EnrollmentExpired):
        two_factor_service.confirm_enrollment(USER_EMAIL, "123456")


def test_verify_totp_token_edge_cases():
    secret = pyotp.random_base32()
    assert two_factor_service.verify_totp_token(secret, pyotp.TOTP(secret).now())
    assert not two_factor_service.verify_totp_token(secret, "")
    assert not two_factor_service.verify_totp_token(None, "123456")


def test_disable_clears_everything():
    secret = two_factor_service.start_enrollment(USER_EMAIL)["secret"]
    two_factor_service.confirm_enrollment(USER_EMAIL, pyotp.TOTP(secret).now())
    two_factor_service.disable(USER_EMAIL)
    assert not two_factor_service.is_enabled(USER_EMAIL)
    assert not two_factor_service.verify_login_code(USER_EMAIL, pyotp.TOTP(secret).now())


# --- Endpoints ---

def test_enrollment_flow(user_client):
    generated = user_client.post("/api/auth/2fa/generate").json()
    assert generated["qrCodeDataURL"].startswith("data:image/png;base64,")

    code = pyotp.TOTP(generated["secret"]).now()
    assert user_client.post("/api/auth/2fa/verify", json={"token": code}).json() == {"success": True}
    assert user_client.get("/api/auth/2fa/status").json() == {"isEnabled": True}

    assert user_client.post("/api/auth/2fa/disable").json() == {"success": True}
    assert user_client.get("/api/auth/2fa/status").json() == {"isEnabled": False}


def test_verify_without_generate(user_client):
    response = user_client.post("/api/auth/2fa/verify", json={"token": "123456"})
    assert response.status_code == 400
    assert "expired" in response.json()["message"]


def test_verify_wrong_code(user_client):
    user_client.post("/api/auth/2fa/generate")
    secret = _pending_secret()
    wrong = "000000" if pyotp.TOTP(secret).now() != "000000" else "111111"
    response = user_client.post("/api/auth/2fa/verify", json={"token": wrong})
    assert response.status_code == 400


def test_code_length_is_validated(user_client):
    assert user_client.post("/api/auth/2fa/verify", json={"token": "12"}).status_code == 422


def test_endpoints_require_session(anon_client):
    assert anon_client.post("/api/auth/2fa/generate").status_code == 401
    assert anon_client.get("/api/auth/2fa/status").status_code == 401


def test_second_login_step_upgrades_session():
    secret = two_factor_service.start_enrollment(USER_EMAIL)["secret"]
    two_factor_service.confirm_enrollment(USER_EMAIL, pyotp.TOTP(secret).now())

    client = make_client(USER_EMAIL, "USER", two_factor_required=True)
    assert client.get("/api/favorites").status_code == 401

    response = client.post("/api/auth/2fa/authenticate", json={"token": pyotp.TOTP(secret).now()})
    assert response.status_code == 200
    assert response.json()["user"]["twoFactorRequired"] is False

    session = read_session(response.cookies.get(config.SESSION_COOKIE_NAME))
    assert session.email == USER_EMAIL
    assert not session.two_factor_required


def test_second_login_step_rejects_wrong_code():
    secret = two_factor_service.start_enrollment(USER_EMAIL)["secret"]
    two_factor_service.confirm_enrollment(USER_EMAIL, pyotp.TOTP(secret).now())
    wrong = "000000" if pyotp.TOTP(secret).now() != "000000" else "111111"

    client = make_client(USER_EMAIL, "USER", two_factor_required=True)
    response = client.post("/api/auth/2fa/authenticate", json={"token": wrong})
    assert response.status_code == 401


def test_second_login_step_without_session(anon_client):
    assert anon_client.post("/api/auth/2fa/authenticate", json={"token": "123456"}).status_code == 401
