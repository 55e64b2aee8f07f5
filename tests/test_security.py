"""Tests for security module."""

import pytest

from lbcfg import security
from lbcfg.security import (
    check_rate_limit,
    is_authorized,
    is_uuid,
    mask,
    normalize_phone_number,
    sanitize_input,
)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    security._reset_rate_limits()
    yield
    security._reset_rate_limits()


# --- sanitize_input tests ---

def test_sanitize_input_strips_control_chars():
    """Control characters should be removed."""
    result = sanitize_input("lbcfg\x00 status\x01 sf test lita")
    assert result == "lbcfg status sf test lita"


def test_sanitize_input_preserves_newlines():
    """Newlines and tabs should be preserved."""
    result = sanitize_input("hello\nworld\ttab")
    assert "\n" in result
    assert "\t" in result


def test_sanitize_input_enforces_length_limit():
    """Input over 1000 chars should be truncated."""
    assert len(sanitize_input("a" * 5000)) == security.MAX_INPUT_LENGTH


def test_sanitize_input_removes_bidi_chars():
    """Unicode bidi override characters should be removed."""
    assert sanitize_input("drain\u202e app01") == "drain app01"


# --- normalize_phone_number tests ---

def test_normalize_phone_preserves_plus():
    """E.164 numbers are left alone."""
    assert normalize_phone_number("+12125551234") == "+12125551234"


def test_normalize_phone_strips_formatting():
    """Spaces, dashes and parentheses are removed."""
    assert normalize_phone_number("1 (212) 555-1234") == "+12125551234"


# --- is_uuid tests ---

def test_is_uuid_recognizes_valid_uuid():
    """Signal UUIDs are recognized."""
    assert is_uuid("abc12345-def6-7890-abcd-ef1234567890") is True


def test_is_uuid_rejects_phone_number():
    """Phone numbers are not UUIDs."""
    assert is_uuid("+12125551234") is False


# --- is_authorized tests ---

def test_is_authorized_allows_uuid_sender():
    """A listed UUID is allowed."""
    uuid = "abc12345-def6-7890-abcd-ef1234567890"
    assert is_authorized(uuid, [uuid]) is True


def test_is_authorized_normalizes_numbers():
    """Formatting differences in numbers don't matter."""
    assert is_authorized("+1 212 555 1234", ["+12125551234"]) is True


def test_is_authorized_rejects_unknown():
    """Unlisted numbers and UUIDs are refused."""
    assert is_authorized("+19995550000", ["+12125551234"]) is False
    assert is_authorized("abc12345-def6-7890-abcd-ef1234567890", ["+12125551234"]) is False


def test_is_authorized_empty_allow_list():
    """An empty allow-list refuses everyone."""
    assert is_authorized("+12125551234", []) is False


# --- rate limiting ---

def test_rate_limit_blocks_after_max_requests():
    """The limit is per sender."""
    sender = "+12125551234"
    for _ in range(security.RATE_LIMIT_MAX_REQUESTS):
        assert check_rate_limit(sender) is True
    assert check_rate_limit(sender) is False
    assert check_rate_limit("+19995550000") is True


def test_rate_limit_window_expires(monkeypatch):
    """Requests are allowed again once the window passes."""
    sender = "+12125551234"
    now = [1000.0]
    monkeypatch.setattr(security.time, "time", lambda: now[0])
    for _ in range(security.RATE_LIMIT_MAX_REQUESTS):
        check_rate_limit(sender)
    assert check_rate_limit(sender) is False
    now[0] += security.RATE_LIMIT_WINDOW + 1
    assert check_rate_limit(sender) is True


def test_mask_keeps_last_four():
    """mask() keeps the last four characters."""
    assert mask("+12125551234") == "...1234"
