"""
Session Tokens

Stateless bearer credentials signed with a process-wide secret. A token
carries the user id, email and issue time; validity is proven solely by its
signature and expiry, there is no server-side session table.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt

from .errors import Unauthenticated
from .models import SessionIdentity
from .logging_config import get_logger


logger = get_logger("secure_bank.tokens")

REQUIRED_CLAIMS = ["userId", "email", "iat", "exp"]


class TokenService:
    """Issues and verifies JWT session tokens"""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_hours: int = 24):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.expiry = timedelta(hours=expiry_hours)

    def issue(self, user_id: int, email: str, now: Optional[datetime] = None) -> str:
        """Sign a token for the given identity, valid for the configured expiry"""
        # NumericDate claims carry whole seconds
        issued_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        payload = {
            "userId": user_id,
            "email": email,
            "iat": issued_at,
            "exp": issued_at + self.expiry
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionIdentity:
        """Validate signature and expiry and return the embedded identity"""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": REQUIRED_CLAIMS}
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Token rejected: {e}")
            raise Unauthenticated("Invalid token")

        user_id = payload["userId"]
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(payload["email"], str):
            raise Unauthenticated("Invalid token")

        return SessionIdentity(
            user_id=user_id,
            email=payload["email"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc)
        )
