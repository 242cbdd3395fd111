"""
Authentication Gate

Guards protected operations: pulls the bearer token out of the Authorization
header and verifies it. A missing credential and an invalid one are logged
differently but rejected identically.
"""

from typing import Optional

from .errors import Unauthenticated
from .models import SessionIdentity
from .tokens import TokenService
from .logging_config import get_logger, log_action


logger = get_logger("secure_bank.auth")


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a 'Bearer <token>' header, or None"""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) < 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class AuthenticationGate:
    """Verifies bearer credentials; never touches storage"""

    def __init__(self, tokens: TokenService):
        self.tokens = tokens

    def authenticate(self, authorization: Optional[str]) -> SessionIdentity:
        """Resolve an Authorization header to a verified identity"""
        token = parse_bearer_token(authorization)
        if token is None:
            log_action(logger, "info", "Request rejected: no bearer token",
                       action="authenticate", resource="auth",
                       extra={"reason": "missing"})
            raise Unauthenticated("No token provided")

        try:
            return self.tokens.verify(token)
        except Unauthenticated as e:
            log_action(logger, "info", f"Request rejected: {e.message}",
                       action="authenticate", resource="auth",
                       extra={"reason": "invalid"})
            raise
