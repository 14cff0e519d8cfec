"""
Validation outcomes and the verified claim set produced by the token gate.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Iterator, List, Optional, Union

SCOPE_CLAIM_URI = "http://schemas.microsoft.com/identity/claims/scope"
TENANT_CLAIM_URI = "http://schemas.microsoft.com/identity/claims/tenantid"


class ErrorKind(str, Enum):
    """Why a request was turned away."""

    MISSING_TOKEN = "missing_token"
    MALFORMED_TOKEN = "malformed_token"
    UNKNOWN_SIGNING_KEY = "unknown_signing_key"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    TENANT_NOT_ALLOWED = "tenant_not_allowed"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    METADATA_UNAVAILABLE = "metadata_unavailable"
    INTERNAL_ERROR = "internal_error"


class MetadataUnavailableError(Exception):
    """Raised when signing-key metadata cannot be fetched and no usable copy is cached."""
    pass


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [item for item in value if isinstance(item, str)]
    return []


class ClaimSet(Mapping):
    """
    Read-only view over the payload of a verified token.

    Claim lookups behave like a dict; the properties cover the claims the
    service and its policy care about.
    """

    __slots__ = ("_claims",)

    def __init__(self, claims: Mapping) -> None:
        self._claims = MappingProxyType(dict(claims))

    def __getitem__(self, key: str) -> Any:
        return self._claims[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"ClaimSet(sub={self.subject!r}, tid={self.tenant_id!r})"

    @property
    def subject(self) -> Optional[str]:
        """Immutable identifier of the caller; the owner key for stored items."""
        return self._claims.get("sub") or self._claims.get("oid")

    @property
    def tenant_id(self) -> Optional[str]:
        return self._claims.get("tid") or self._claims.get(TENANT_CLAIM_URI)

    @property
    def scopes(self) -> List[str]:
        # Delegated tokens carry space-separated scopes in 'scp'
        for name in ("scp", SCOPE_CLAIM_URI, "scope"):
            if name in self._claims:
                return _as_list(self._claims[name])
        return []

    @property
    def roles(self) -> List[str]:
        return _as_list(self._claims.get("roles"))

    @property
    def expires_at(self) -> Optional[datetime]:
        exp = self._claims.get("exp")
        if isinstance(exp, (int, float)):
            return datetime.fromtimestamp(exp, tz=timezone.utc)
        return None


@dataclass(frozen=True)
class Authorized:
    """The token is valid and the caller may proceed."""

    claims: ClaimSet


@dataclass(frozen=True)
class Rejection:
    """Base for outcomes that stop the request. Never carries claims."""

    kind: ErrorKind
    reason: str

    status_code: ClassVar[int] = 500
    challenge: ClassVar[bool] = False


@dataclass(frozen=True)
class Unauthorized(Rejection):
    status_code: ClassVar[int] = 401
    challenge: ClassVar[bool] = True


@dataclass(frozen=True)
class Forbidden(Rejection):
    status_code: ClassVar[int] = 403
    challenge: ClassVar[bool] = True


@dataclass(frozen=True)
class TransientError(Rejection):
    """Server-side failure; the client may retry later but cannot fix it."""

    status_code: ClassVar[int] = 500
    challenge: ClassVar[bool] = False


ValidationOutcome = Union[Authorized, Unauthorized, Forbidden, TransientError]
