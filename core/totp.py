# core/totp.py
"""
TOTP secrets, provisioning URIs, QR images and backup codes.

Pure helpers with no storage access; the two_factor db_manager combines
them with the credential store.
"""
import base64
import hashlib
import hmac
import io
import re
import secrets
from datetime import datetime

import pyotp
import qrcode

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
SECRET_LENGTH = 32
BACKUP_CODE_BYTES = 4  # 8 hex characters

_TOTP_PATTERN = re.compile(r"^\d{6}$")


def normalize_totp_code(code: str) -> str | None:
    """Return the 6-digit string form of a TOTP candidate, or None."""
    candidate = re.sub(r"\s+", "", code or "")
    if not _TOTP_PATTERN.match(candidate):
        return None
    return candidate


def normalize_backup_code(code: str) -> str:
    return re.sub(r"[\s-]+", "", code or "").upper()


class TotpEngine:
    def __init__(
        self,
        issuer: str,
        backup_code_key: str,
        valid_window: int = 2,
        backup_code_count: int = 10,
    ) -> None:
        self.issuer = issuer
        self.valid_window = valid_window
        self.backup_code_count = backup_code_count
        self._backup_code_key = backup_code_key.encode("utf-8")

    # --- secrets & provisioning ---

    def generate_secret(self) -> str:
        return pyotp.random_base32(length=SECRET_LENGTH)

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
            name=account_name,
            issuer_name=self.issuer,
        )

    def qr_data_url(self, provisioning_uri: str) -> str:
        """Render the provisioning URI as a PNG data URL."""
        img = qrcode.make(provisioning_uri)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        encoded = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    # --- verification ---

    def verify_code(self, secret: str | None, code: str, at: datetime) -> bool:
        """
        Check a TOTP code within +/- valid_window time steps of ``at``.

        Codes stay valid for their whole window; reuse is not tracked.
        """
        if not secret:
            return False
        candidate = normalize_totp_code(code)
        if candidate is None:
            return False
        totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
        return totp.verify(candidate, for_time=at, valid_window=self.valid_window)

    def code_at(self, secret: str, at: datetime) -> str:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).at(at)

    # --- backup codes ---

    def generate_backup_codes(self) -> list[str]:
        """Return distinct 8-character uppercase alphanumeric codes."""
        codes: list[str] = []
        while len(codes) < self.backup_code_count:
            code = secrets.token_hex(BACKUP_CODE_BYTES).upper()
            if code not in codes:
                codes.append(code)
        return codes

    def hash_backup_code(self, user_id: int, code: str) -> str:
        """Keyed hash salted with the owner's id so equal codes never collide across users."""
        message = f"{user_id}:{normalize_backup_code(code)}".encode("utf-8")
        return hmac.new(self._backup_code_key, message, hashlib.sha256).hexdigest()
