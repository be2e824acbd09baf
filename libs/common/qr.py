"""
QR payload signing, public codes and QR image rendering.
"""
import hashlib
import hmac
import json
import os
import secrets
from io import BytesIO
from typing import Any, Dict

import qrcode

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_APP_URL = "https://corbez.com"


def _qr_secret() -> str:
    # development fallback; production must set QR_SECRET
    return os.getenv("QR_SECRET") or "corbez-qr-secret-change-in-production"


def app_url() -> str:
    return (os.getenv("APP_URL") or DEFAULT_APP_URL).rstrip("/")


def _canonical(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(data: Dict[str, Any]) -> str:
    """HMAC-SHA256 of the canonical JSON, truncated to 16 hex chars."""
    digest = hmac.new(_qr_secret().encode("utf-8"), _canonical(data), hashlib.sha256).hexdigest()
    return digest[:16]


def verify_signature(data: Dict[str, Any], signature: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(data), signature)


def _random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_coupon_code() -> str:
    return _random_code(8)


def generate_invite_code() -> str:
    return f"{_random_code(4)}-{_random_code(4)}"


def generate_public_user_id() -> str:
    return f"CB-{_random_code(6)}"


def coupon_verification_url(code: str) -> str:
    return f"{app_url()}/verify/coupon/{code}"


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
