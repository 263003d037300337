"""Rate limit key utilities."""

from .models import Algorithm, IdentityKind


def normalize_identity(identity_kind: IdentityKind, identity_value: str) -> str:
    """
    Normalize an identity value before it becomes part of a key.
    - Strip surrounding whitespace from every kind.
    - Lower-case emails so case variations share one bucket.
    - Lower-case IPs so IPv6 textual forms collide.
    """
    value = identity_value.strip()
    if identity_kind in (IdentityKind.EMAIL, IdentityKind.IP):
        value = value.lower()
    return value


def build_key(
    algorithm: Algorithm,
    scope: str | None,
    identity_kind: IdentityKind,
    identity_value: str,
) -> str:
    """
    Build the composite store key for a rate limit check.
    Format: {algorithm}:{scope}:{identity_kind}:{identity_value}
    The scope segment is dropped when scope is empty.
    """
    algorithm = Algorithm(algorithm)
    identity_kind = IdentityKind(identity_kind)
    normalized = normalize_identity(identity_kind, identity_value)
    scope = (scope or "").strip()

    if not scope:
        return f"{algorithm.value}:{identity_kind.value}:{normalized}"
    return f"{algorithm.value}:{scope}:{identity_kind.value}:{normalized}"
