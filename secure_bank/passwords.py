"""
Password Hashing

Salted scrypt digests. Each digest embeds its cost parameters and a fresh
random salt, so two hashes of the same password never match textually and
cost parameters can be raised later without breaking stored hashes.
"""

import hashlib
import hmac
import secrets

from .logging_config import get_logger


logger = get_logger("secure_bank.passwords")

SCHEME = "scrypt"
KEY_LENGTH = 64


class PasswordHasher:
    """One-way salted hash and constant-time verify"""

    def __init__(self, n: int = 16384, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p
        # Throwaway digest so lookups of unknown users cost as much as real checks
        self._dummy_digest = self.hash(secrets.token_urlsafe(16))

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _derive(self, password: str, salt: str, n: int, r: int, p: int) -> str:
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=n, r=r, p=p,
            maxmem=128 * r * (n + p + 2) + 1024 * 1024,
            dklen=KEY_LENGTH
        ).hex()

    def hash(self, password: str) -> str:
        """Hash a password; errors from the KDF propagate to the caller"""
        salt = self._generate_salt()
        key = self._derive(password, salt, self.n, self.r, self.p)
        return f"{SCHEME}${self.n}${self.r}${self.p}${salt}${key}"

    def verify(self, password: str, digest: str) -> bool:
        """Check a password against a stored digest in constant time"""
        try:
            scheme, n, r, p, salt, expected = digest.split("$")
            if scheme != SCHEME:
                return False
            actual = self._derive(password, salt, int(n), int(r), int(p))
        except (AttributeError, ValueError):
            logger.warning("Stored password digest is malformed")
            return False
        return hmac.compare_digest(actual, expected)

    def dummy_verify(self, password: str) -> bool:
        """Spend a full verification on a digest no password can match"""
        self.verify(password, self._dummy_digest)
        return False
