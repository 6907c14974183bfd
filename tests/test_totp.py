import base64
import re
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from core.totp import TotpEngine, normalize_backup_code, normalize_totp_code

NOW = datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return TotpEngine(issuer="GUARDIAN 3PL Platform", backup_code_key="test-key")


@pytest.fixture
def secret(engine):
    return engine.generate_secret()


def test_secret_is_base32(engine, secret):
    assert len(secret) == 32
    assert re.fullmatch(r"[A-Z2-7]+", secret)
    assert engine.generate_secret() != secret


def test_provisioning_uri_names_issuer_and_account(engine, secret):
    uri = engine.provisioning_uri(secret, "alice@x.com")
    assert uri.startswith("otpauth://totp/")
    assert f"secret={secret}" in uri
    assert "issuer=GUARDIAN" in uri
    assert "alice%40x.com" in uri


def test_qr_data_url_is_png(engine, secret):
    data_url = engine.qr_data_url(engine.provisioning_uri(secret, "alice@x.com"))
    prefix = "data:image/png;base64,"
    assert data_url.startswith(prefix)
    png = base64.b64decode(data_url[len(prefix):])
    assert png[:8] == b"\x89PNG\r\n\x1a\n"


def test_current_code_verifies(engine, secret):
    code = pyotp.TOTP(secret).at(NOW)
    assert engine.verify_code(secret, code, NOW)
    assert engine.code_at(secret, NOW) == code


@pytest.mark.parametrize("offset_seconds", [-60, -30, 30, 60])
def test_codes_within_two_steps_are_accepted(engine, secret, offset_seconds):
    code = engine.code_at(secret, NOW + timedelta(seconds=offset_seconds))
    assert engine.verify_code(secret, code, NOW)


@pytest.mark.parametrize("offset_seconds", [-90, 90])
def test_codes_outside_window_are_rejected(engine, secret, offset_seconds):
    code = engine.code_at(secret, NOW + timedelta(seconds=offset_seconds))
    if code == engine.code_at(secret, NOW):
        pytest.skip("code collision across time steps")
    assert not engine.verify_code(secret, code, NOW)


def test_totp_code_is_reusable_within_its_window(engine, secret):
    code = engine.code_at(secret, NOW)
    assert engine.verify_code(secret, code, NOW)
    assert engine.verify_code(secret, code, NOW + timedelta(seconds=10))


def test_verify_rejects_malformed_codes_and_missing_secret(engine, secret):
    assert not engine.verify_code(secret, "12345", NOW)
    assert not engine.verify_code(secret, "abcdef", NOW)
    assert not engine.verify_code(secret, "", NOW)
    assert not engine.verify_code(None, engine.code_at(secret, NOW), NOW)


def test_normalize_totp_code():
    assert normalize_totp_code("123 456") == "123456"
    assert normalize_totp_code("1234567") is None
    assert normalize_totp_code("") is None


def test_backup_codes_are_distinct_eight_char_alphanumerics(engine):
    codes = engine.generate_backup_codes()
    assert len(codes) == 10
    assert len(set(codes)) == 10
    for code in codes:
        assert re.fullmatch(r"[0-9A-F]{8}", code)


def test_backup_code_count_is_configurable():
    engine = TotpEngine(issuer="x", backup_code_key="k", backup_code_count=3)
    assert len(engine.generate_backup_codes()) == 3


def test_backup_code_hash_is_keyed_per_user(engine):
    digest = engine.hash_backup_code(1, "ABCD1234")
    assert digest != "ABCD1234"
    assert len(digest) == 64
    assert engine.hash_backup_code(1, "ABCD1234") == digest
    assert engine.hash_backup_code(2, "ABCD1234") != digest
    other_key = TotpEngine(issuer="x", backup_code_key="another-key")
    assert other_key.hash_backup_code(1, "ABCD1234") != digest


def test_backup_code_hash_ignores_case_and_separators(engine):
    assert normalize_backup_code(" abcd-1234 ") == "ABCD1234"
    assert engine.hash_backup_code(1, "abcd-1234") == engine.hash_backup_code(1, "ABCD1234")
