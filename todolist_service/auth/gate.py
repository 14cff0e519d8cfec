"""
Request gate: checks the bearer token of every inbound request before it
reaches business logic.
"""

import logging
from typing import Any, Collection, Dict, Iterable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from todolist_service.auth.jwt_validator import TokenValidator
from todolist_service.auth.metadata_cache import MetadataCache
from todolist_service.auth.outcome import (
    Authorized,
    ErrorKind,
    MetadataUnavailableError,
    Rejection,
    TransientError,
    Unauthorized,
    ValidationOutcome,
)
from todolist_service.auth.policy import AuthorizationPolicy

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of an 'Authorization: Bearer <token>' header value, if any."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class RequestGate:
    """
    Runs metadata lookup, token validation and authorization for one request,
    stopping at the first failure.
    """

    def __init__(
        self,
        cache: MetadataCache,
        validator: TokenValidator,
        policy: AuthorizationPolicy,
        audiences: Collection[str],
    ) -> None:
        self.cache = cache
        self.validator = validator
        self.policy = policy
        self.audiences = frozenset(audiences)

    async def evaluate(self, authorization: Optional[str]) -> ValidationOutcome:
        """
        Decide whether a request carrying ``authorization`` may proceed.

        Never raises for bad input or identity provider failures; every
        failure is reported as an outcome.
        """
        token = extract_bearer_token(authorization)
        if token is None:
            logger.warning("No bearer token provided")
            return Unauthorized(ErrorKind.MISSING_TOKEN, "missing bearer token")

        try:
            return await self._evaluate_token(token)
        except MetadataUnavailableError as e:
            logger.error(f"Signing key metadata unavailable: {e}")
            return TransientError(ErrorKind.METADATA_UNAVAILABLE, "signing key metadata unavailable")
        except Exception:
            logger.exception("Unexpected error during token validation")
            return TransientError(ErrorKind.INTERNAL_ERROR, "token validation error")

    async def _evaluate_token(self, token: str) -> ValidationOutcome:
        metadata = await self.cache.get_metadata()
        outcome = self.validator.validate(token, metadata, self.audiences)

        # Keys may have rotated since the snapshot was taken
        if (
            isinstance(outcome, Unauthorized)
            and outcome.kind is ErrorKind.UNKNOWN_SIGNING_KEY
            and self.cache.request_refresh()
        ):
            refreshed = await self.cache.get_metadata()
            if refreshed.generation != metadata.generation:
                outcome = self.validator.validate(token, refreshed, self.audiences)

        if not isinstance(outcome, Authorized):
            return outcome
        return self.policy.authorize(outcome.claims)


class TokenValidationMiddleware(BaseHTTPMiddleware):
    """
    Starlette middleware wrapping ``RequestGate``.

    Authorized requests get the verified claims on ``request.state.claims``;
    everything else is answered here with 401, 403 or 500.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        gate: RequestGate,
        authority: str,
        resource_id: str,
        public_paths: Iterable[str] = (),
        debug: bool = False,
    ) -> None:
        super().__init__(app)
        self.gate = gate
        self.authority = authority
        self.resource_id = resource_id
        self.public_paths = frozenset(public_paths)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or request.url.path in self.public_paths:
            return await call_next(request)

        outcome = await self.gate.evaluate(request.headers.get("Authorization"))
        if isinstance(outcome, Authorized):
            request.state.claims = outcome.claims
            return await call_next(request)
        return self.build_error_response(outcome)

    def challenge(self, outcome: Rejection) -> str:
        """WWW-Authenticate value pointing the client at the tenant and resource."""
        value = f'Bearer authorization_uri="{self.authority}", resource_id="{self.resource_id}"'
        if self.debug:
            value += f', error_description="{outcome.reason}"'
        return value

    def build_error_response(self, outcome: Rejection) -> JSONResponse:
        if outcome.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
            content: Dict[str, Any] = {
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        elif outcome.status_code == status.HTTP_403_FORBIDDEN:
            content = {"error": "forbidden"}
        else:
            content = {"error": "unauthorized"}

        if self.debug:
            content["error_description"] = outcome.reason
            content["error_kind"] = outcome.kind.value

        headers = {"WWW-Authenticate": self.challenge(outcome)} if outcome.challenge else None
        return JSONResponse(status_code=outcome.status_code, content=content, headers=headers)
