"""Public key resolution for assertions.

Resolves the registered public key that signed an assertion, addressed by
the unverified (issuer, subject) pair plus the optional ``kid`` header.

Resolution Strategy
-------------------
1) ``kid`` present
    - Fetch exactly one key from storage under (issuer, subject, kid).
    - Verify the signature with it.

2) ``kid`` absent
    - Fetch every key registered under (issuer, subject).
    - Trial-verify the assertion against each key, in the order storage
      returned them. The first key that verifies wins.
    - Cost is O(number of registered keys) signature checks.

3) Failure
    - A storage error, an unknown key, or a signature no registered key
      verifies all raise InvalidGrant with the same "no public JWK" hint.
      Storage and library detail goes to ``debug`` and the log, never the
      hint.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .context import check
from .errors import InvalidGrant, ServerError

if TYPE_CHECKING:
    from jwt import PyJWK

    from .assertion import SignedAssertion
    from .context import RequestContext
    from .protocols import Claims, KeyStorage

logger = logging.getLogger(__name__)


def _key_not_found(issuer: str, subject: str, debug: str | None = None) -> InvalidGrant:
    return InvalidGrant(
        f'No public JWK was registered for issuer "{issuer}" and subject "{subject}", and '
        'public key is required to check signature of JWT in "assertion" request parameter.',
        debug=debug,
    )


class KeyResolver:
    """Finds the registered key that signed an assertion.

    Parameters
    ----------
    storage : KeyStorage
        Registry of trusted keys.

    algorithms : Sequence[str]
        Signing algorithms allowed during verification.
    """

    def __init__(self, storage: KeyStorage, algorithms: Sequence[str]) -> None:
        self._storage = storage
        self._algorithms = tuple(algorithms)

    def resolve(
        self,
        ctx: RequestContext | None,
        assertion: SignedAssertion,
        issuer: str,
        subject: str,
    ) -> tuple[PyJWK, Claims]:
        """Return the key that verifies this assertion and the verified payload.

        Args:
            ctx: Request context.
            assertion: Parsed, not yet verified, assertion.
            issuer: Unverified ``iss`` claim.
            subject: Unverified ``sub`` claim.

        Raises:
            InvalidGrant: No registered key verifies the signature.
            ServerError: The request was cancelled.
        """
        key_id = assertion.key_id

        if key_id:
            check(ctx)
            try:
                key = self._storage.get_public_key(ctx, issuer, subject, key_id)
            except ServerError:
                raise
            except Exception as e:
                logger.debug(
                    "no key for iss=%s sub=%s kid=%s: %s", issuer, subject, key_id, e
                )
                raise _key_not_found(issuer, subject, debug=str(e)) from e

            check(ctx)
            try:
                return key, assertion.verify(key, self._algorithms)
            except InvalidGrant as e:
                logger.debug(
                    "key kid=%s did not verify assertion for iss=%s sub=%s: %s",
                    key_id,
                    issuer,
                    subject,
                    e.debug,
                )
                raise _key_not_found(issuer, subject, debug=e.debug) from e

        check(ctx)
        try:
            keys = self._storage.get_public_keys(ctx, issuer, subject)
        except ServerError:
            raise
        except Exception as e:
            logger.debug("key listing failed for iss=%s sub=%s: %s", issuer, subject, e)
            raise _key_not_found(issuer, subject, debug=str(e)) from e

        for key in keys:
            check(ctx)
            try:
                payload = assertion.verify(key, self._algorithms)
            except InvalidGrant:
                continue
            logger.debug(
                "assertion without kid matched key kid=%s for iss=%s sub=%s",
                key.key_id,
                issuer,
                subject,
            )
            return key, payload

        raise _key_not_found(issuer, subject)
