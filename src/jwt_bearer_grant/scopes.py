"""Scope and audience matching strategies.

This module decides which requested scopes and audiences may be granted.

Scope strategies have the shape ``(registered, requested) -> bool`` and are
asked once per requested scope. Audience strategies have the shape
``(haystack, needles) -> None`` and raise InvalidRequest on the first
needle that does not match.

Security Notes
--------------
All strategies are fail-closed: an empty registered set matches nothing,
and unparsable audiences are rejected rather than ignored.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import cast
from urllib.parse import urlsplit

from .errors import InvalidRequest, InvalidScope
from .protocols import ScopeStrategy


def parse_scope_string(raw: object) -> list[str]:
    """Split a space-delimited scope value, preserving order and dropping repeats.

    Accepts a string (``"read write"``) or a sequence of strings. Non-string
    items and unexpected types yield nothing.

    Examples:
        >>> parse_scope_string("read write read")
        ['read', 'write']
        >>> parse_scope_string(["read", 123, "write"])
        ['read', 'write']
    """
    if isinstance(raw, str):
        items: Iterable[object] = raw.split()
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = cast(Sequence[object], raw)
    else:
        return []

    seen: list[str] = []
    for item in items:
        if isinstance(item, str) and item and item not in seen:
            seen.append(item)
    return seen


def join_scopes(scopes: Iterable[str]) -> str:
    return " ".join(scopes)


# ============================================================================
# Scope strategies
# ============================================================================


def exact_scope_strategy(registered: Sequence[str], requested: str) -> bool:
    """``requested`` must equal one of the registered scopes."""
    return requested in registered


def hierarchic_scope_strategy(registered: Sequence[str], requested: str) -> bool:
    """Dot-separated scopes grant their descendants.

    ``photos`` grants ``photos`` and ``photos.read``, but ``photos.read``
    does not grant ``photos``.
    """
    needle_parts = requested.split(".")
    for scope in registered:
        if scope == requested:
            return True
        if len(scope) > len(requested):
            continue
        scope_parts = scope.split(".")
        if len(scope_parts) < len(needle_parts) and needle_parts[: len(scope_parts)] == scope_parts:
            return True
    return False


def wildcard_scope_strategy(registered: Sequence[str], requested: str) -> bool:
    """``*`` matches exactly one non-empty dot-separated segment.

    A trailing ``*`` also matches any number of further segments, so
    ``photos.*`` grants ``photos.read`` and ``photos.read.own``.
    """
    needle_parts = requested.split(".")
    for scope in registered:
        scope_parts = scope.split(".")
        if len(scope_parts) > len(needle_parts):
            continue

        matched = True
        last = len(scope_parts) - 1
        for i, part in enumerate(scope_parts):
            if i == last and len(scope_parts) != len(needle_parts) and part != "*":
                matched = False
                break
            if part == "*" and needle_parts[i]:
                continue
            if part != needle_parts[i]:
                matched = False
                break
        if matched:
            return True
    return False


# ============================================================================
# Audience strategies
# ============================================================================


def exact_audience_matching_strategy(haystack: Sequence[str], needles: Sequence[str]) -> None:
    """Every needle must equal a haystack entry.

    Raises:
        InvalidRequest: A needle is not in the haystack.
    """
    for needle in needles:
        if needle not in haystack:
            raise InvalidRequest(f"Requested audience \"{needle}\" has not been whitelisted.")


def default_audience_matching_strategy(haystack: Sequence[str], needles: Sequence[str]) -> None:
    """Every needle must be a URL under one of the haystack URLs.

    Scheme and host must be equal. The needle path must equal the allowed
    path (ignoring a trailing slash) or be a sub-path of it.

    Raises:
        InvalidRequest: A needle or haystack entry cannot be parsed, or a
            needle matches no haystack entry.
    """
    for needle in needles:
        try:
            n = urlsplit(needle)
        except ValueError as e:
            raise InvalidRequest(
                f'Unable to parse requested audience "{needle}".', debug=str(e)
            ) from e

        found = False
        for allowed in haystack:
            try:
                h = urlsplit(allowed)
            except ValueError as e:
                raise InvalidRequest(
                    f'Unable to parse whitelisted audience "{allowed}".', debug=str(e)
                ) from e

            if n.scheme != h.scheme or n.netloc != h.netloc:
                continue

            allowed_path = h.path.rstrip("/")
            if (
                n.path == h.path
                or n.path == allowed_path
                or n.path.startswith(allowed_path + "/")
            ):
                found = True
                break

        if not found:
            raise InvalidRequest(f'Requested audience "{needle}" has not been whitelisted.')


# ============================================================================
# Authorizer
# ============================================================================


class ScopeAuthorizer:
    """Checks requested scopes against the scopes registered for a key.

    Args:
        strategy: Scope matching strategy.

    Examples:
        >>> authz = ScopeAuthorizer(exact_scope_strategy)
        >>> authz.authorize(["read"], ["read"], issuer="i", subject="s")
        >>> authz.authorize(["read"], ["write"], issuer="i", subject="s")
        Traceback (most recent call last):
        ...
        jwt_bearer_grant.errors.InvalidScope: ...
    """

    def __init__(self, strategy: ScopeStrategy) -> None:
        self._strategy = strategy

    def authorize(
        self,
        registered: Sequence[str],
        requested: Sequence[str],
        *,
        issuer: str,
        subject: str,
    ) -> None:
        """Raise InvalidScope for the first requested scope not covered.

        An empty ``requested`` always passes.
        """
        for scope in requested:
            if not self._strategy(registered, scope):
                raise InvalidScope(
                    f'The public key registered for issuer "{issuer}" and subject '
                    f'"{subject}" is not allowed to request scope "{scope}".'
                )
