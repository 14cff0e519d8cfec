"""
JWT token validation for Entra ID (Azure AD) access tokens.

Validation is pure: given a token and one metadata snapshot it returns a
``ValidationOutcome`` and never performs I/O.
"""

import json
import logging
import time
from typing import Any, Collection, Dict, FrozenSet, Iterable, Optional, Set

from jose import jws, jwt
from jose.exceptions import JOSEError

from todolist_service.auth.metadata import OidcMetadata
from todolist_service.auth.outcome import (
    Authorized,
    ClaimSet,
    ErrorKind,
    Unauthorized,
    ValidationOutcome,
)
from todolist_service.config import Settings

logger = logging.getLogger(__name__)

TENANT_PLACEHOLDER = "{tenantid}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenValidator:
    """
    Validates Entra ID bearer tokens against a metadata snapshot.

    Performs, in order:
    - Structure check (header and payload decode)
    - Signing key lookup by 'kid' (or 'x5t')
    - Signature verification
    - Expiration and not-before validation with clock skew
    - Issuer validation (v1.0 and v2.0 forms)
    - Audience validation
    """

    def __init__(
        self,
        *,
        valid_issuers: Iterable[str] = (),
        algorithms: Iterable[str] = ("RS256",),
        clock_skew: int = 300,
        clock=time.time,
    ) -> None:
        self.valid_issuers: FrozenSet[str] = frozenset(valid_issuers)
        self.algorithms = list(algorithms)
        self.clock_skew = clock_skew
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenValidator":
        return cls(
            valid_issuers=settings.valid_issuers,
            algorithms=settings.algorithms_list,
            clock_skew=settings.clock_skew,
        )

    def validate(
        self,
        token: str,
        metadata: OidcMetadata,
        audiences: Collection[str],
        now: Optional[float] = None,
    ) -> ValidationOutcome:
        """
        Validate a raw bearer token.

        Args:
            token: The JWT token string (without the 'Bearer ' prefix)
            metadata: The metadata generation whose keys and issuer apply
            audiences: Accepted 'aud' values
            now: Current time as a UNIX timestamp; defaults to the clock

        Returns:
            Authorized with the verified claims, or Unauthorized with the reason
        """
        if now is None:
            now = self._clock()

        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JOSEError as e:
            return self._reject(ErrorKind.MALFORMED_TOKEN, "malformed token", str(e))

        kid = header.get("kid") or header.get("x5t")
        key = metadata.signing_keys.get(kid) if isinstance(kid, str) else None
        if key is None:
            return self._reject(
                ErrorKind.UNKNOWN_SIGNING_KEY,
                "unknown signing key",
                f"kid {kid!r} not in metadata generation {metadata.generation}",
            )

        try:
            payload = jws.verify(token, key.as_dict(), algorithms=self.algorithms)
        except JOSEError as e:
            return self._reject(ErrorKind.BAD_SIGNATURE, "bad signature", str(e))

        try:
            claims: Dict[str, Any] = json.loads(payload)
        except ValueError as e:
            return self._reject(ErrorKind.MALFORMED_TOKEN, "malformed token", str(e))

        rejection = (
            self._check_lifetime(claims, now)
            or self._check_issuer(claims, metadata)
            or self._check_audience(claims, audiences)
        )
        if rejection is not None:
            return rejection

        claim_set = ClaimSet(claims)
        logger.debug(f"Token validated for subject {claim_set.subject}")
        return Authorized(claim_set)

    def accepted_issuers(self, metadata: OidcMetadata, tenant_id: Optional[str]) -> Set[str]:
        """
        Issuers accepted for a token from ``tenant_id``.

        Multi-tenant metadata advertises an issuer containing '{tenantid}';
        it is resolved against the token's own tenant.
        """
        issuers = set(self.valid_issuers)
        issuer = metadata.issuer
        if TENANT_PLACEHOLDER in issuer:
            if not tenant_id:
                return issuers
            issuer = issuer.replace(TENANT_PLACEHOLDER, tenant_id)

        root = issuer.rstrip("/")
        if root.endswith("/v2.0"):
            root = root[: -len("/v2.0")]
        issuers.update({issuer, f"{root}/", f"{root}/v2.0"})
        return issuers

    def _check_lifetime(self, claims: Dict[str, Any], now: float) -> Optional[Unauthorized]:
        exp = claims.get("exp")
        if not _is_number(exp):
            return self._reject(ErrorKind.MALFORMED_TOKEN, "malformed token", "missing 'exp' claim")
        if now > exp + self.clock_skew:
            return self._reject(ErrorKind.EXPIRED, "expired", f"expired at {exp}")

        nbf = claims.get("nbf")
        if nbf is not None:
            if not _is_number(nbf):
                return self._reject(ErrorKind.MALFORMED_TOKEN, "malformed token", "invalid 'nbf' claim")
            if now + self.clock_skew < nbf:
                return self._reject(ErrorKind.EXPIRED, "expired", f"not valid before {nbf}")
        return None

    def _check_issuer(self, claims: Dict[str, Any], metadata: OidcMetadata) -> Optional[Unauthorized]:
        issuer = claims.get("iss")
        tenant_id = ClaimSet(claims).tenant_id
        if not isinstance(issuer, str) or issuer not in self.accepted_issuers(metadata, tenant_id):
            return self._reject(ErrorKind.ISSUER_MISMATCH, "issuer mismatch", f"iss={issuer!r}")
        return None

    def _check_audience(
        self, claims: Dict[str, Any], audiences: Collection[str]
    ) -> Optional[Unauthorized]:
        aud = claims.get("aud")
        token_audiences = [aud] if isinstance(aud, str) else aud
        if not isinstance(token_audiences, list) or not set(
            a for a in token_audiences if isinstance(a, str)
        ) & set(audiences):
            return self._reject(ErrorKind.AUDIENCE_MISMATCH, "audience mismatch", f"aud={aud!r}")
        return None

    @staticmethod
    def _reject(kind: ErrorKind, reason: str, detail: str) -> Unauthorized:
        logger.warning(f"JWT validation failed: {reason} ({detail})")
        return Unauthorized(kind, reason)
