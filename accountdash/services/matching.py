"""
Domain match heuristic.

Backends store domains in a canonical or prefixed form ("www.a.com",
"https://a.com") that rarely equals what the user typed, so two names match
when they are equal or either contains the other after normalization.
False positives only cause an earlier success notification; entitlements
always come from the backend snapshot.
"""

from collections.abc import Iterable


def normalize_domain(value: str) -> str:
    """Trim and lowercase a domain name."""
    return value.strip().lower()


def domains_match(typed: str, reported: str) -> bool:
    """Return True if a user-typed domain corresponds to a backend key."""
    a = normalize_domain(typed)
    b = normalize_domain(reported)
    return a == b or a in b or b in a


def count_matched(expected: Iterable[str], keys: Iterable[str]) -> int:
    """Count expected domains that match at least one reported key."""
    reported = list(keys)
    return sum(1 for domain in expected if any(domains_match(domain, key) for key in reported))
