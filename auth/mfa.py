"""
auth/mfa.py -- TOTP second factor and one-time backup codes.

TOTP (pyotp) uses the parameters every authenticator app defaults to:
HMAC-SHA1, 6 digits, 30 second step. verify_token() accepts the current
step and `window` steps either side (default 1, i.e. T-1, T, T+1) to absorb
clock drift between the phone and the server.

Security notes:
  Every candidate step is compared with hmac.compare_digest and the loop
  never exits early, so the response time does not reveal which step (if
  any) matched.

  Backup codes are 8 hex characters from secrets.token_hex(4). Only their
  SHA-256 digests are stored. match_backup_code() scans every stored digest
  in constant time; removing the matched digest is the store's job
  (UserStore.consume_backup_code is a compare-and-swap).

  Secrets and codes are never logged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from io import BytesIO

import pyotp
import qrcode

from auth.models import MFASetup

TOTP_DIGITS = 6
TOTP_PERIOD = 30


def normalise_backup_code(code: str) -> str:
    return code.strip().replace("-", "").upper()


class MFAEnrollment:
    """Secret generation, code verification and backup-code handling.

    Usage:
        mfa = MFAEnrollment(issuer="AuthCore")
        setup = mfa.generate_secret("alice@example.com")
        ok = mfa.verify_token(setup.secret, "123456")
    """

    def __init__(self, issuer: str = "AuthCore", backup_code_count: int = 5, window: int = 1) -> None:
        self.issuer = issuer
        self.backup_code_count = backup_code_count
        self.window = window

    @staticmethod
    def totp(secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD)

    # ------------------------------------------------------------------
    # Enrolment
    # ------------------------------------------------------------------

    def generate_secret(self, label: str) -> MFASetup:
        """Create a new base32 secret, its otpauth:// URI, a QR code and backup codes."""
        secret = pyotp.random_base32()
        uri = self.provisioning_uri(secret, label)
        codes = self.generate_backup_codes()
        return MFASetup(
            secret=secret,
            provisioning_uri=uri,
            qr_code=self.qr_code(uri),
            backup_codes=codes,
            hashed_backup_codes=[self.hash_backup_code(c) for c in codes],
        )

    def provisioning_uri(self, secret: str, label: str) -> str:
        return self.totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)

    @staticmethod
    def qr_code(data: str) -> str:
        """Render `data` as a PNG QR code and return it as a data: URL."""
        qr = qrcode.QRCode(version=1, box_size=10, border=4)
        qr.add_data(data)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode()}"

    # ------------------------------------------------------------------
    # TOTP
    # ------------------------------------------------------------------

    def verify_token(self, secret: str | None, code: str | None, at: float | None = None) -> bool:
        """Return True if `code` is valid for `secret` within the drift window.

        Malformed input (empty secret, non-numeric or wrong-length code,
        invalid base32) is a plain False, never an exception.
        """
        if not secret or not code:
            return False
        code = code.strip().replace(" ", "")
        if len(code) != TOTP_DIGITS or not (code.isascii() and code.isdigit()):
            return False

        totp = self.totp(secret)
        now = int(time.time() if at is None else at)
        matched = False
        for step in range(-self.window, self.window + 1):
            try:
                candidate = totp.at(now, counter_offset=step)
            except ValueError:
                # binascii.Error: the secret is not base32
                return False
            # no early exit: every step costs the same
            matched |= hmac.compare_digest(candidate, code)
        return matched

    # ------------------------------------------------------------------
    # Backup codes
    # ------------------------------------------------------------------

    def generate_backup_codes(self) -> list[str]:
        return [secrets.token_hex(4).upper() for _ in range(self.backup_code_count)]

    @staticmethod
    def hash_backup_code(code: str) -> str:
        return hashlib.sha256(normalise_backup_code(code).encode("utf-8")).hexdigest()

    def match_backup_code(self, code: str | None, hashes: list[str]) -> str | None:
        """Return the stored digest that matches `code`, or None.

        Compares against every digest so timing does not depend on position.
        """
        if not code:
            return None
        candidate = self.hash_backup_code(code)
        found = None
        for stored in hashes:
            if hmac.compare_digest(stored, candidate):
                found = stored
        return found
