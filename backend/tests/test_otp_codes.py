"""
Tests for OTP code generation, hashing and constant-time comparison
"""
import statistics
import time

import pytest

from phoneauth.core.otp_codes import generate_otp_code, hash_otp_code, verify_otp_code


def test_generate_otp_code_is_six_digits():
    for _ in range(200):
        code = generate_otp_code()
        assert len(code) == 6
        assert code.isdigit()


def test_generate_otp_code_zero_pads(monkeypatch):
    monkeypatch.setattr("phoneauth.core.otp_codes.secrets.randbelow", lambda n: 42)
    assert generate_otp_code() == "000042"


def test_hash_is_not_the_code_and_is_deterministic():
    code_hash = hash_otp_code("123456")
    assert "123456" not in code_hash
    assert len(code_hash) == 64
    assert code_hash == hash_otp_code("123456")
    assert code_hash != hash_otp_code("123457")


def test_hash_depends_on_secret():
    assert hash_otp_code("123456", secret="a" * 16) != hash_otp_code("123456", secret="b" * 16)


def test_hash_requires_long_enough_secret():
    with pytest.raises(ValueError):
        hash_otp_code("123456", secret="short")
    with pytest.raises(ValueError):
        hash_otp_code("123456", secret="")


def test_verify_otp_code():
    code_hash = hash_otp_code("654321")
    assert verify_otp_code("654321", code_hash) is True
    assert verify_otp_code("654320", code_hash) is False


def test_verify_otp_code_handles_malformed_hash():
    assert verify_otp_code("654321", "") is False
    assert verify_otp_code("654321", "zz" * 32) is False
    assert verify_otp_code("654321", "ab") is False


def _median_verify_time(candidate: str, code_hash: str, samples: int = 2000) -> float:
    timings = []
    for _ in range(samples):
        start = time.perf_counter()
        verify_otp_code(candidate, code_hash)
        timings.append(time.perf_counter() - start)
    return statistics.median(timings)


def test_verify_time_does_not_track_matching_prefix():
    """
    Statistical check: a wrong code sharing five leading digits with the
    real one should not take measurably longer than one sharing none.
    The bound is loose on purpose; this guards against a naive
    character-by-character comparison, not against scheduler noise.
    """
    code_hash = hash_otp_code("123456")
    no_prefix = _median_verify_time("900000", code_hash)
    long_prefix = _median_verify_time("123450", code_hash)

    ratio = long_prefix / no_prefix
    assert 0.5 < ratio < 2.0
