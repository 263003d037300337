"""Tests for rate limit key construction."""

import pytest

from authguard.app.services.rate_limit import (
    Algorithm,
    IdentityKind,
    build_key,
    normalize_identity,
)


class TestBuildKey:
    """Tests for build_key."""

    def test_key_format(self):
        """Key is algorithm, scope, identity kind and value joined by colons."""
        key = build_key(
            Algorithm.FIXED,
            "SignUpService.InitiateSignUp",
            IdentityKind.EMAIL,
            "user@example.com",
        )
        assert key == "fixed:SignUpService.InitiateSignUp:email:user@example.com"

    def test_key_without_scope(self):
        """Empty or missing scope drops the scope segment."""
        assert build_key(Algorithm.SLIDING, None, IdentityKind.USER_ID, "42") == "sliding:user:42"
        assert build_key(Algorithm.SLIDING, "  ", IdentityKind.USER_ID, "42") == "sliding:user:42"

    def test_accepts_plain_strings(self):
        """Enum values can be passed as strings."""
        assert build_key("sliding", "SignIn", "ip", "10.0.0.1") == "sliding:SignIn:ip:10.0.0.1"

    def test_email_normalization_collides(self):
        """Case and surrounding whitespace do not create separate buckets."""
        a = build_key(Algorithm.FIXED, "ResendCode", IdentityKind.EMAIL, "Test@Example.com")
        b = build_key(Algorithm.FIXED, "ResendCode", IdentityKind.EMAIL, "test@example.com ")
        assert a == b

    def test_deterministic(self):
        """Identical inputs always give identical keys."""
        args = (Algorithm.FIXED, "SignIn", IdentityKind.IP, "192.168.1.1")
        assert build_key(*args) == build_key(*args)

    def test_algorithms_do_not_share_keys(self):
        fixed = build_key(Algorithm.FIXED, "SignIn", IdentityKind.IP, "1.2.3.4")
        sliding = build_key(Algorithm.SLIDING, "SignIn", IdentityKind.IP, "1.2.3.4")
        assert fixed != sliding

    def test_scopes_do_not_share_keys(self):
        a = build_key(Algorithm.FIXED, "SignIn", IdentityKind.EMAIL, "a@example.com")
        b = build_key(Algorithm.FIXED, "SignUp", IdentityKind.EMAIL, "a@example.com")
        assert a != b

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError):
            build_key("leaky_bucket", "SignIn", IdentityKind.IP, "1.2.3.4")


class TestNormalizeIdentity:
    """Tests for identity normalization."""

    def test_email_lowercased_and_trimmed(self):
        assert normalize_identity(IdentityKind.EMAIL, "  User@Example.COM ") == "user@example.com"

    def test_user_id_case_preserved(self):
        """User ids are opaque and keep their case."""
        assert normalize_identity(IdentityKind.USER_ID, " AbC-123 ") == "AbC-123"

    def test_ipv6_lowercased(self):
        assert normalize_identity(IdentityKind.IP, "2001:DB8::1") == "2001:db8::1"
