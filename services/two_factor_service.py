import base64
import logging
from io import BytesIO
from typing import Dict, Optional

import pyotp
import qrcode

from kv import kv_store

logger = logging.getLogger("zee_index.two_factor")

ISSUER_NAME = "Zee Index"
TEMP_SECRET_TTL = 300


def _temp_key(email: str) -> str:
    return f"2fa:secret:temp:{email}"


def _secret_key(email: str) -> str:
    return f"2fa:secret:{email}"


def _enabled_key(email: str) -> str:
    return f"2fa:enabled:{email}"


def generate_qr_code(email: str, secret: str) -> str:
    """PNG QR code of the provisioning URI, as a data URL."""
    totp_uri = pyotp.totp.TOTP(secret).provisioning_uri(name=email, issuer_name=ISSUER_NAME)

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(totp_uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def start_enrollment(email: str) -> Dict[str, str]:
    """New secret, held for a few minutes until the user confirms a code."""
    secret = pyotp.random_base32()
    kv_store.client.set(_temp_key(email), secret, ex=TEMP_SECRET_TTL)
    return {"secret": secret, "qrCodeDataURL": generate_qr_code(email, secret)}


def verify_totp_token(secret: str, token: str) -> bool:
    if not secret or not token:
        return False
    return pyotp.TOTP(secret).verify(str(token).strip(), valid_window=1)


class EnrollmentExpired(Exception):
    pass


def confirm_enrollment(email: str, token: str) -> bool:
    """
    Activate 2FA when ``token`` matches the pending secret.

    Raises:
        EnrollmentExpired: no pending secret (never generated or timed out).
    """
    secret = kv_store.client.get(_temp_key(email))
    if not secret:
        raise EnrollmentExpired()
    if not verify_totp_token(secret, token):
        return False

    pipe = kv_store.client.pipeline()
    pipe.set(_secret_key(email), secret)
    pipe.set(_enabled_key(email), "1")
    pipe.delete(_temp_key(email))
    pipe.execute()
    return True


def disable(email: str) -> None:
    kv_store.client.delete(_secret_key(email), _enabled_key(email), _temp_key(email))


def is_enabled(email: Optional[str]) -> bool:
    if not email:
        return False
    return bool(kv_store.client.get(_enabled_key(email)))


def verify_login_code(email: str, token: str) -> bool:
    secret = kv_store.client.get(_secret_key(email))
    return verify_totp_token(secret, token)
