"""
tests/test_mfa.py -- Unit tests for MFAEnrollment (TOTP + backup codes).

Coverage:
  - RFC 6238 reference vector (SHA-1, 8 digits) through pyotp
  - Drift window: T-1, T, T+1 accepted; T-2, T+2 rejected
  - Malformed input is False, never an exception
  - Secret / provisioning URI / QR code shape
  - Backup codes: hashed with SHA-256, case-insensitive match, no plaintext kept
"""

from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from auth.mfa import TOTP_PERIOD, MFAEnrollment

SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
T = 1_700_000_000  # an arbitrary fixed instant, mid-step


def _code(at: int) -> str:
    return pyotp.TOTP(SECRET).at(at)


class TestGenerator:
    def test_rfc6238_sha1_reference_vector(self) -> None:
        """RFC 6238 Appendix B: secret "12345678901234567890", T=59 -> 94287082 (8 digits)."""
        secret = base64.b32encode(b"12345678901234567890").decode()
        assert pyotp.TOTP(secret, digits=8).at(59) == "94287082"
        assert pyotp.TOTP(secret, digits=8).at(1111111109) == "07081804"

    def test_enrollment_uses_six_digit_thirty_second_codes(self) -> None:
        totp = MFAEnrollment.totp(SECRET)
        assert totp.digits == 6
        assert totp.interval == TOTP_PERIOD
        assert totp.at(T) == _code(T)


class TestVerifyWindow:
    @pytest.mark.parametrize("steps", [-1, 0, 1])
    def test_adjacent_steps_accepted(self, steps: int) -> None:
        mfa = MFAEnrollment()
        code = _code(T + steps * TOTP_PERIOD)
        assert mfa.verify_token(SECRET, code, at=T)

    @pytest.mark.parametrize("steps", [-2, 2])
    def test_two_steps_away_rejected(self, steps: int) -> None:
        mfa = MFAEnrollment()
        code = _code(T + steps * TOTP_PERIOD)
        # Guard against the 1-in-10^6 chance the far code equals a near one.
        near = {_code(T + s * TOTP_PERIOD) for s in (-1, 0, 1)}
        if code in near:
            pytest.skip("code collision between steps")
        assert not mfa.verify_token(SECRET, code, at=T)

    def test_wider_window_accepts_two_steps(self) -> None:
        mfa = MFAEnrollment(window=2)
        assert mfa.verify_token(SECRET, _code(T + 2 * TOTP_PERIOD), at=T)

    def test_code_with_spaces_accepted(self) -> None:
        mfa = MFAEnrollment()
        code = _code(T)
        assert mfa.verify_token(SECRET, f"{code[:3]} {code[3:]}", at=T)

    def test_verify_without_explicit_time_uses_now(self) -> None:
        mfa = MFAEnrollment()
        assert mfa.verify_token(SECRET, pyotp.TOTP(SECRET).now())


class TestVerifyMalformed:
    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 34 5", "١٢٣٤٥٦"])
    def test_bad_codes_are_false(self, code: str) -> None:
        assert MFAEnrollment().verify_token(SECRET, code, at=T) is False

    def test_missing_secret_is_false(self) -> None:
        assert MFAEnrollment().verify_token(None, "123456", at=T) is False

    def test_invalid_secret_is_false(self) -> None:
        assert MFAEnrollment().verify_token("!!!!", "123456", at=T) is False


class TestGenerateSecret:
    def test_setup_shape(self) -> None:
        mfa = MFAEnrollment(issuer="AuthCore", backup_code_count=5)
        setup = mfa.generate_secret("alice@example.com")

        # 160-bit secret -> 32 base32 characters, no padding
        assert len(setup.secret) == 32
        assert len(base64.b32decode(setup.secret)) == 20

        uri = urlparse(setup.provisioning_uri)
        assert uri.scheme == "otpauth"
        assert uri.netloc == "totp"
        assert uri.path == "/AuthCore:alice%40example.com"
        params = parse_qs(uri.query)
        assert params["secret"] == [setup.secret]
        assert params["issuer"] == ["AuthCore"]

        assert setup.qr_code.startswith("data:image/png;base64,")

    def test_backup_codes_are_hashed(self) -> None:
        mfa = MFAEnrollment(backup_code_count=5)
        setup = mfa.generate_secret("bob@example.com")
        assert len(setup.backup_codes) == 5
        assert len(set(setup.backup_codes)) == 5
        for code, digest in zip(setup.backup_codes, setup.hashed_backup_codes):
            assert len(code) == 8
            assert digest == hashlib.sha256(code.encode()).hexdigest()
            assert code not in digest

    def test_each_setup_uses_a_new_secret(self) -> None:
        mfa = MFAEnrollment()
        assert mfa.generate_secret("a@example.com").secret != mfa.generate_secret("a@example.com").secret


class TestBackupCodeMatching:
    def test_match_returns_stored_digest(self) -> None:
        mfa = MFAEnrollment()
        hashes = [mfa.hash_backup_code(c) for c in ["AAAA1111", "BBBB2222"]]
        assert mfa.match_backup_code("BBBB2222", hashes) == hashes[1]

    def test_match_is_case_insensitive_and_trims(self) -> None:
        mfa = MFAEnrollment()
        hashes = [mfa.hash_backup_code("ABCD1234")]
        assert mfa.match_backup_code("  abcd1234 ", hashes) == hashes[0]

    def test_no_match(self) -> None:
        mfa = MFAEnrollment()
        assert mfa.match_backup_code("FFFF0000", [mfa.hash_backup_code("ABCD1234")]) is None
        assert mfa.match_backup_code("", [mfa.hash_backup_code("ABCD1234")]) is None
        assert mfa.match_backup_code("ABCD1234", []) is None
